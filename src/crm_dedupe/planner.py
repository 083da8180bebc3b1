from __future__ import annotations

from typing import AbstractSet, Any, Dict, Optional

from .errors import ValidationError
from .models import (
    MERGE_SOURCES,
    MERGEABLE_FIELDS,
    SOURCE_DUPLICATE,
    SOURCE_PRIMARY,
    SYSTEM_FIELDS,
    Entity,
    MergeDecision,
    entity_type_of,
    is_blank,
)


def choose_source(primary_value: Any, duplicate_value: Any) -> str:
    """Keep the populated side; on a tie keep the primary."""
    if not is_blank(primary_value) and is_blank(duplicate_value):
        return SOURCE_PRIMARY
    if is_blank(primary_value) and not is_blank(duplicate_value):
        return SOURCE_DUPLICATE
    return SOURCE_PRIMARY


def plan_merge(
    primary: Entity,
    duplicate: Entity,
    excluded_fields: AbstractSet[str] = SYSTEM_FIELDS,
) -> MergeDecision:
    entity_type = entity_type_of(primary)
    if entity_type_of(duplicate) is not entity_type:
        raise ValidationError(
            f"Cannot merge a {entity_type_of(duplicate).value} into a {entity_type.value}"
        )

    field_names = [
        name
        for name in primary.field_names()
        if name not in excluded_fields and name in MERGEABLE_FIELDS[entity_type]
    ]
    choices = {
        name: choose_source(primary.field_value(name), duplicate.field_value(name))
        for name in field_names
    }
    return MergeDecision(entity_type=entity_type, choices=choices)


def validate_decision(decision: MergeDecision) -> None:
    """Reject system or unknown fields, bad sources and incomplete decisions."""
    permitted = set(MERGEABLE_FIELDS[decision.entity_type])

    system = sorted(set(decision.choices) & SYSTEM_FIELDS)
    if system:
        raise ValidationError(f"System fields cannot be merged: {', '.join(system)}")

    unknown = sorted(set(decision.choices) - permitted)
    if unknown:
        raise ValidationError(
            f"Unknown {decision.entity_type.value} fields in merge decision: {', '.join(unknown)}"
        )

    invalid = sorted(
        name for name, source in decision.choices.items() if source not in MERGE_SOURCES
    )
    if invalid:
        raise ValidationError(
            f"Merge source must be 'primary' or 'duplicate' for: {', '.join(invalid)}"
        )

    missing = sorted(permitted - set(decision.choices))
    if missing:
        raise ValidationError(f"Merge decision is missing fields: {', '.join(missing)}")


def resolve_merge_payload(
    primary: Entity, duplicate: Entity, decision: MergeDecision
) -> Dict[str, Any]:
    """Build the primary's update payload from each field's chosen source."""
    validate_decision(decision)
    payload: Dict[str, Any] = {}
    for name, source in decision.choices.items():
        record = primary if source == SOURCE_PRIMARY else duplicate
        payload[name] = record.field_value(name)
    return payload


def describe_decision(decision: MergeDecision, duplicate: Optional[Entity] = None) -> str:
    taken = decision.fields_from(SOURCE_DUPLICATE)
    label = duplicate.name if duplicate is not None else "duplicate"
    if not taken:
        return f"Kept all primary values over {label}"
    return f"Took {', '.join(sorted(taken))} from {label}"
