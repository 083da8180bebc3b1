import argparse
import csv
import logging
import os
from typing import Any, Dict, List, Optional, Tuple

import pandas as pd

from crm_dedupe.common import load_config, open_service
from crm_dedupe.config_loader import DedupeAppConfig
from crm_dedupe.logging_utils import configure_logging
from crm_dedupe.models import Contact, EntityType, ScanResult

logger = logging.getLogger(__name__)

CLUSTER_COLUMNS = [
    "cluster_id",
    "match_type",
    "match_key",
    "similarity",
    "position",
    "record_id",
    "name",
    "email",
    "website",
    "completeness",
    "created_at",
]


def cluster_rows(result: ScanResult) -> List[Dict[str, Any]]:
    """One row per cluster member; position 0 is the suggested primary."""
    rows: List[Dict[str, Any]] = []
    for cluster_id, cluster in enumerate(result.clusters, start=1):
        for position, member in enumerate(cluster.members):
            rows.append(
                {
                    "cluster_id": cluster_id,
                    "match_type": cluster.kind,
                    "match_key": cluster.match_key,
                    "similarity": round(cluster.score, 4) if cluster.is_fuzzy else "",
                    "position": position,
                    "record_id": member.id,
                    "name": member.name,
                    "email": (member.email or "") if isinstance(member, Contact) else "",
                    "website": "" if isinstance(member, Contact) else (member.website or ""),
                    "completeness": member.completeness(),
                    "created_at": member.created_at or "",
                }
            )
    return rows


def summary_rows(result: ScanResult) -> List[Dict[str, Any]]:
    counts: Dict[str, Dict[str, int]] = {}
    for cluster in result.clusters:
        bucket = counts.setdefault(cluster.kind, {"clusters": 0, "records": 0})
        bucket["clusters"] += 1
        bucket["records"] += len(cluster)
    return [
        {"match_type": kind, "clusters": values["clusters"], "records": values["records"]}
        for kind, values in sorted(counts.items())
    ]


def build(
    args: argparse.Namespace, config: Optional[DedupeAppConfig] = None
) -> Tuple[pd.DataFrame, pd.DataFrame]:
    config = config or load_config(args)
    entity_type = EntityType.parse(getattr(args, "entity_type", None) or "contact")
    service = open_service(config)
    try:
        result = service.scan(
            entity_type,
            user_id=getattr(args, "user_id", None),
            threshold=config.dedupe.fuzzy_match_threshold,
        )
    finally:
        service.store.close()

    clusters_df = pd.DataFrame(cluster_rows(result), columns=CLUSTER_COLUMNS)
    summary_df = pd.DataFrame(summary_rows(result), columns=["match_type", "clusters", "records"])

    out_dir = str(getattr(args, "out_dir", None) or config.outputs.dir)
    os.makedirs(out_dir, exist_ok=True)
    out_clusters = os.path.join(out_dir, f"duplicate_clusters_{entity_type.value}.csv")
    clusters_df.to_csv(out_clusters, index=False, encoding="utf-8", quoting=csv.QUOTE_ALL)
    out_summary = os.path.join(out_dir, f"duplicate_summary_{entity_type.value}.csv")
    summary_df.to_csv(out_summary, index=False, encoding="utf-8", quoting=csv.QUOTE_ALL)

    logger.info("Wrote %d cluster rows for %s", len(clusters_df), entity_type.value)
    print(f"Saved: {out_clusters}")
    print(f"Saved: {out_summary}")
    return clusters_df, summary_df


def main():
    parser = argparse.ArgumentParser(
        description="Scan contacts or companies for duplicate clusters and write a review report."
    )
    parser.add_argument("--config", type=str, default=None)
    parser.add_argument(
        "--database", type=str, default=None, help="SQLite file (or storage.database in --config)"
    )
    parser.add_argument(
        "--entity-type", type=str, default="contact", choices=["contact", "company"]
    )
    parser.add_argument("--user-id", type=str, default=None, help="Restrict to one owner")
    parser.add_argument(
        "--threshold", type=float, default=None, help="Fuzzy threshold, 0-1 or 50-100"
    )
    parser.add_argument("--out-dir", type=str, default=None)
    parser.add_argument("--log-level", type=str, default=None, help="Override logging level")

    args = parser.parse_args()
    config = load_config(args)
    configure_logging(config, level_override=args.log_level)
    build(args, config=config)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
