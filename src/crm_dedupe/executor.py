from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Callable, Dict, Iterator, Optional, Union

from .errors import ConflictError, DedupeError, NotFoundError, PersistenceError, ValidationError
from .models import Entity, EntityType, MergeAudit, MergeDecision
from .normalization import contact_full_name
from .planner import resolve_merge_payload, validate_decision
from .store import DEPENDENT_REFERENCES, RecordStore, new_record_id, utc_now

logger = logging.getLogger(__name__)

STEP_VALIDATE = "validate"
STEP_APPLY_FIELDS = "apply_fields"
STEP_REWIRE = "rewire_dependents"
STEP_TAGS = "union_tags"
STEP_SOFT_DELETE = "soft_delete"
STEP_AUDIT = "audit"


@contextmanager
def merge_step(step: str) -> Iterator[None]:
    """Tag any failure raised inside ``step`` with the step name."""
    try:
        yield
    except DedupeError as exc:
        if exc.step is None:
            exc.step = step
        raise
    except Exception as exc:
        raise PersistenceError(str(exc) or exc.__class__.__name__, step=step) from exc


class MergeExecutor:
    """Applies a resolved merge decision to the primary record.

    Every write happens inside a single ``store.transaction()``: field update,
    dependent rewiring, tag union, soft delete and audit commit together or
    not at all. Nothing is retried.
    """

    def __init__(self, store: RecordStore, clock: Optional[Callable[[], datetime]] = None):
        self.store = store
        self.clock = clock or utc_now

    def _load_party(self, entity_type: EntityType, record_id: str, role: str) -> Entity:
        if not record_id:
            raise ValidationError(f"{role.capitalize()} id is required", step=STEP_VALIDATE)
        entity = self.store.get(entity_type, record_id)
        if entity is None:
            raise NotFoundError(
                f"{role.capitalize()} {entity_type.value} {record_id} not found", step=STEP_VALIDATE
            )
        return entity

    def validate(
        self,
        entity_type: EntityType,
        primary_id: str,
        duplicate_id: str,
        decision: MergeDecision,
    ) -> tuple[Entity, Entity]:
        if primary_id == duplicate_id:
            raise ValidationError("A record cannot be merged into itself", step=STEP_VALIDATE)
        if decision.entity_type is not entity_type:
            raise ValidationError(
                f"Decision is for {decision.entity_type.value}, not {entity_type.value}",
                step=STEP_VALIDATE,
            )
        with merge_step(STEP_VALIDATE):
            validate_decision(decision)
            primary = self._load_party(entity_type, primary_id, "primary")
            duplicate = self._load_party(entity_type, duplicate_id, "duplicate")
        for role, entity in (("primary", primary), ("duplicate", duplicate)):
            if entity.is_merged:
                raise ValidationError(
                    f"{role.capitalize()} {entity_type.value} {entity.id} is already merged",
                    step=STEP_VALIDATE,
                )
        return primary, duplicate

    def _recheck(
        self, entity_type: EntityType, primary_id: str, duplicate_id: str
    ) -> tuple[Entity, Entity]:
        primary = self._load_party(entity_type, primary_id, "primary")
        duplicate = self._load_party(entity_type, duplicate_id, "duplicate")
        merged = [entity.id for entity in (primary, duplicate) if entity.is_merged]
        if merged:
            raise ConflictError(
                f"{entity_type.value} {', '.join(merged)} was merged by a concurrent request",
                step=STEP_VALIDATE,
            )
        return primary, duplicate

    def _rewire_dependents(
        self, entity_type: EntityType, primary_id: str, duplicate_id: str
    ) -> Dict[str, int]:
        moved: Dict[str, int] = {}
        for table, column in DEPENDENT_REFERENCES[entity_type]:
            moved[f"{table}.{column}"] = self.store.reassign_references(
                table, column, duplicate_id, primary_id
            )
        return moved

    def _union_tags(self, entity_type: EntityType, primary_id: str, duplicate_id: str) -> int:
        existing = set(self.store.tag_ids(entity_type, primary_id))
        added = 0
        for tag_id in self.store.tag_ids(entity_type, duplicate_id):
            if tag_id in existing:
                continue
            self.store.add_tag(entity_type, primary_id, tag_id)
            existing.add(tag_id)
            added += 1
        return added

    def _timeline_entry(
        self, entity_type: EntityType, primary: Entity, duplicate: Entity, audit: MergeAudit
    ) -> Dict[str, Any]:
        resolved = audit.resolved_fields
        if entity_type is EntityType.CONTACT:
            label = contact_full_name(resolved.get("first_name"), resolved.get("last_name"))
        else:
            label = resolved.get("name") or duplicate.name or "Unknown"
        entry: Dict[str, Any] = {
            "type": "note",
            "title": f"{entity_type.label} Merged",
            "description": f"Merged with duplicate {entity_type.value}: {label}",
            "activity_date": audit.timestamp.isoformat(),
            "created_by": audit.actor,
            "user_id": primary.user_id or None,
        }
        reference_column = "contact_id" if entity_type is EntityType.CONTACT else "company_id"
        entry[reference_column] = primary.id
        return entry

    def execute_merge(
        self,
        primary_id: str,
        duplicate_id: str,
        decision: MergeDecision,
        entity_type: Union[str, EntityType],
        actor: str,
    ) -> MergeAudit:
        entity_type = EntityType.parse(entity_type)
        if not (actor or "").strip():
            raise ValidationError("An actor is required to merge records", step=STEP_VALIDATE)
        self.validate(entity_type, primary_id, duplicate_id, decision)

        with self.store.transaction():
            with merge_step(STEP_VALIDATE):
                primary, duplicate = self._recheck(entity_type, primary_id, duplicate_id)

            with merge_step(STEP_APPLY_FIELDS):
                payload = resolve_merge_payload(primary, duplicate, decision)
                self.store.update(entity_type, primary_id, payload)

            with merge_step(STEP_REWIRE):
                moved = self._rewire_dependents(entity_type, primary_id, duplicate_id)

            with merge_step(STEP_TAGS):
                tags_added = self._union_tags(entity_type, primary_id, duplicate_id)

            with merge_step(STEP_SOFT_DELETE):
                self.store.mark_merged(entity_type, duplicate_id)

            with merge_step(STEP_AUDIT):
                audit = MergeAudit(
                    audit_id=new_record_id(),
                    primary_id=primary_id,
                    duplicate_id=duplicate_id,
                    entity_type=entity_type,
                    timestamp=self.clock(),
                    actor=actor,
                    resolved_fields=payload,
                )
                self.store.insert_merge_audit(audit)
                self.store.insert_activity(
                    self._timeline_entry(entity_type, primary, duplicate, audit)
                )

        logger.info(
            "Merged %s %s into %s by %s (moved=%s, tags_added=%d)",
            entity_type.value,
            duplicate_id,
            primary_id,
            actor,
            moved,
            tags_added,
        )
        return audit
