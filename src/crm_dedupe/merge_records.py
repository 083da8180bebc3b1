from __future__ import annotations

import argparse
import logging
from typing import List, Optional

from .common import load_config, open_service
from .config_loader import DedupeAppConfig
from .errors import DedupeError, NotFoundError
from .logging_utils import configure_logging
from .models import SOURCE_DUPLICATE, SOURCE_PRIMARY, EntityType, MergeAudit
from .planner import describe_decision
from .service import DedupeService

logger = logging.getLogger(__name__)


def run(args: argparse.Namespace, config: Optional[DedupeAppConfig] = None) -> MergeAudit:
    config = config or load_config(args)
    entity_type = EntityType.parse(args.entity_type)
    service = open_service(config)
    try:
        return _merge(service, entity_type, args)
    finally:
        service.store.close()


def _merge(service: DedupeService, entity_type: EntityType, args: argparse.Namespace) -> MergeAudit:
    primary = service.store.get(entity_type, args.primary)
    duplicate = service.store.get(entity_type, args.duplicate)
    if primary is None or duplicate is None:
        missing = args.primary if primary is None else args.duplicate
        raise NotFoundError(f"{entity_type.value} {missing} not found", step="validate")

    decision = service.plan_merge(primary, duplicate)
    for field_name in getattr(args, "prefer_duplicate", None) or []:
        decision.override(field_name, SOURCE_DUPLICATE)
    for field_name in getattr(args, "prefer_primary", None) or []:
        decision.override(field_name, SOURCE_PRIMARY)

    print(describe_decision(decision, duplicate))
    audit = service.execute_merge(
        primary.id, duplicate.id, decision, actor=args.actor, entity_type=entity_type
    )
    print(f"Merged {duplicate.id} into {primary.id} (audit {audit.audit_id})")
    return audit


def main(argv: Optional[List[str]] = None):
    parser = argparse.ArgumentParser(
        description="Merge a duplicate contact or company into a primary record."
    )
    parser.add_argument("--config", type=str, default=None)
    parser.add_argument(
        "--database", type=str, default=None, help="SQLite file (or storage.database in --config)"
    )
    parser.add_argument(
        "--entity-type", type=str, required=True, choices=["contact", "company"]
    )
    parser.add_argument("--primary", type=str, required=True)
    parser.add_argument("--duplicate", type=str, required=True)
    parser.add_argument("--actor", type=str, required=True, help="User performing the merge")
    parser.add_argument(
        "--prefer-duplicate", nargs="*", default=None, help="Fields to take from the duplicate"
    )
    parser.add_argument(
        "--prefer-primary", nargs="*", default=None, help="Fields to keep from the primary"
    )
    parser.add_argument("--log-level", type=str, default=None, help="Override logging level")

    args = parser.parse_args(argv)
    config = load_config(args)
    configure_logging(config, level_override=args.log_level)
    try:
        run(args, config=config)
    except DedupeError as exc:
        logger.error("Merge failed: %s", exc)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
