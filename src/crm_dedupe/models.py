from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from .normalization import contact_full_name


class EntityType(str, Enum):
    CONTACT = "contact"
    COMPANY = "company"

    @classmethod
    def parse(cls, value: Union[str, "EntityType"]) -> "EntityType":
        if isinstance(value, cls):
            return value
        text = str(value or "").strip().lower()
        # accept table-style plurals coming from callers and the CLI
        if text in ("contacts", "companies"):
            text = "contact" if text == "contacts" else "company"
        return cls(text)

    @property
    def label(self) -> str:
        return self.value.capitalize()


SOURCE_PRIMARY = "primary"
SOURCE_DUPLICATE = "duplicate"
MERGE_SOURCES = (SOURCE_PRIMARY, SOURCE_DUPLICATE)

# identity, owner reference, creation timestamp, merge flag
SYSTEM_FIELDS = frozenset({"id", "user_id", "created_at", "is_merged"})


def _opt_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _opt_int(value: Any) -> Optional[int]:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return None


def _opt_float(value: Any) -> Optional[float]:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "t")
    return bool(value)


def is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    return False


class _RecordMixin:
    id: str
    is_merged: bool

    @classmethod
    def field_names(cls) -> Tuple[str, ...]:
        return tuple(f.name for f in fields(cls))  # type: ignore[arg-type]

    def field_value(self, name: str) -> Any:
        return getattr(self, name, None)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)  # type: ignore[call-overload]

    def replace(self, **changes: Any):
        return replace(self, **changes)  # type: ignore[type-var]

    def completeness(self) -> int:
        """Number of populated mergeable fields."""
        entity_type = EntityType.CONTACT if isinstance(self, Contact) else EntityType.COMPANY
        return sum(
            1 for name in MERGEABLE_FIELDS[entity_type] if not is_blank(self.field_value(name))
        )


@dataclass
class Contact(_RecordMixin):
    id: str = ""
    first_name: str = ""
    last_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    phone_number: Optional[str] = None
    company: Optional[str] = None
    company_id: Optional[str] = None
    job_title: Optional[str] = None
    company_website: Optional[str] = None
    company_headcount: Optional[int] = None
    country: Optional[str] = None
    state: Optional[str] = None
    notes: Optional[str] = None
    created_at: Optional[str] = None
    linkedin_url: Optional[str] = None
    lifecycle_stage: Optional[str] = None
    lead_source: Optional[str] = None
    last_contact_date: Optional[str] = None
    owner: Optional[str] = None
    user_id: str = ""
    is_merged: bool = False

    @property
    def name(self) -> str:
        return contact_full_name(self.first_name, self.last_name)

    @property
    def primary_phone(self) -> str:
        return self.phone or self.phone_number or ""

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "Contact":
        return cls(
            id=str(payload.get("id", "") or "").strip(),
            first_name=str(payload.get("first_name", "") or "").strip(),
            last_name=_opt_text(payload.get("last_name")),
            email=_opt_text(payload.get("email")),
            phone=_opt_text(payload.get("phone")),
            phone_number=_opt_text(payload.get("phone_number")),
            company=_opt_text(payload.get("company")),
            company_id=_opt_text(payload.get("company_id")),
            job_title=_opt_text(payload.get("job_title")),
            company_website=_opt_text(payload.get("company_website")),
            company_headcount=_opt_int(payload.get("company_headcount")),
            country=_opt_text(payload.get("country")),
            state=_opt_text(payload.get("state")),
            notes=_opt_text(payload.get("notes")),
            created_at=_opt_text(payload.get("created_at")),
            linkedin_url=_opt_text(payload.get("linkedin_url")),
            lifecycle_stage=_opt_text(payload.get("lifecycle_stage")),
            lead_source=_opt_text(payload.get("lead_source")),
            last_contact_date=_opt_text(payload.get("last_contact_date")),
            owner=_opt_text(payload.get("owner")),
            user_id=str(payload.get("user_id", "") or "").strip(),
            is_merged=_as_bool(payload.get("is_merged", False)),
        )


@dataclass
class Company(_RecordMixin):
    id: str = ""
    name: str = ""
    website: Optional[str] = None
    industry: Optional[str] = None
    employee_count: Optional[int] = None
    notes: Optional[str] = None
    created_at: Optional[str] = None
    linkedin_url: Optional[str] = None
    phone_number: Optional[str] = None
    annual_revenue: Optional[float] = None
    company_size: Optional[int] = None
    lifecycle_stage: Optional[str] = None
    lead_source: Optional[str] = None
    last_contact_date: Optional[str] = None
    owner: Optional[str] = None
    country: Optional[str] = None
    state: Optional[str] = None
    user_id: str = ""
    is_merged: bool = False

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "Company":
        return cls(
            id=str(payload.get("id", "") or "").strip(),
            name=str(payload.get("name", "") or "").strip(),
            website=_opt_text(payload.get("website")),
            industry=_opt_text(payload.get("industry")),
            employee_count=_opt_int(payload.get("employee_count")),
            notes=_opt_text(payload.get("notes")),
            created_at=_opt_text(payload.get("created_at")),
            linkedin_url=_opt_text(payload.get("linkedin_url")),
            phone_number=_opt_text(payload.get("phone_number")),
            annual_revenue=_opt_float(payload.get("annual_revenue")),
            company_size=_opt_int(payload.get("company_size")),
            lifecycle_stage=_opt_text(payload.get("lifecycle_stage")),
            lead_source=_opt_text(payload.get("lead_source")),
            last_contact_date=_opt_text(payload.get("last_contact_date")),
            owner=_opt_text(payload.get("owner")),
            country=_opt_text(payload.get("country")),
            state=_opt_text(payload.get("state")),
            user_id=str(payload.get("user_id", "") or "").strip(),
            is_merged=_as_bool(payload.get("is_merged", False)),
        )


Entity = Union[Contact, Company]

ENTITY_CLASSES = {
    EntityType.CONTACT: Contact,
    EntityType.COMPANY: Company,
}

MERGEABLE_FIELDS: Dict[EntityType, Tuple[str, ...]] = {
    entity_type: tuple(
        f.name for f in fields(cls) if f.name not in SYSTEM_FIELDS  # type: ignore[arg-type]
    )
    for entity_type, cls in ENTITY_CLASSES.items()
}


def entity_type_of(entity: Entity) -> EntityType:
    if isinstance(entity, Contact):
        return EntityType.CONTACT
    if isinstance(entity, Company):
        return EntityType.COMPANY
    raise TypeError(f"Unsupported entity type: {type(entity)!r}")


def ensure_entity(entity_type: EntityType, obj: Any) -> Entity:
    cls = ENTITY_CLASSES[entity_type]
    if isinstance(obj, cls):
        return obj
    if isinstance(obj, Mapping):
        return cls.from_mapping(obj)
    raise TypeError(f"Unsupported {entity_type.value} payload type: {type(obj)!r}")


@dataclass
class DuplicateCluster:
    match_key: str
    kind: str
    members: List[Entity] = field(default_factory=list)
    score: Optional[float] = None

    @property
    def record_ids(self) -> List[str]:
        return [member.id for member in self.members]

    @property
    def is_fuzzy(self) -> bool:
        return self.score is not None

    def __len__(self) -> int:
        return len(self.members)


@dataclass(frozen=True)
class FuzzyMatch:
    entity: Entity
    score: float


@dataclass
class CandidateCheck:
    exact_match: Optional[Entity] = None
    similar: List[FuzzyMatch] = field(default_factory=list)

    @property
    def has_duplicates(self) -> bool:
        return self.exact_match is not None or bool(self.similar)


@dataclass
class ScanResult:
    entity_type: EntityType
    exact: List[DuplicateCluster] = field(default_factory=list)
    fuzzy: List[DuplicateCluster] = field(default_factory=list)

    @property
    def clusters(self) -> List[DuplicateCluster]:
        return self.exact + self.fuzzy

    def record_ids(self) -> set[str]:
        return {record_id for cluster in self.clusters for record_id in cluster.record_ids}


@dataclass
class MergeDecision:
    entity_type: EntityType
    choices: Dict[str, str] = field(default_factory=dict)

    def source_for(self, field_name: str) -> str:
        return self.choices[field_name]

    def override(self, field_name: str, source: str) -> "MergeDecision":
        """Flip a single field; validated again before execution."""
        self.choices[field_name] = source
        return self

    def fields_from(self, source: str) -> List[str]:
        return [name for name, chosen in self.choices.items() if chosen == source]

    def to_dict(self) -> Dict[str, Any]:
        return {"entity_type": self.entity_type.value, "choices": dict(self.choices)}


@dataclass(frozen=True)
class MergeAudit:
    audit_id: str
    primary_id: str
    duplicate_id: str
    entity_type: EntityType
    timestamp: datetime
    actor: str
    resolved_fields: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "audit_id": self.audit_id,
            "primary_id": self.primary_id,
            "duplicate_id": self.duplicate_id,
            "entity_type": self.entity_type.value,
            "timestamp": self.timestamp.isoformat(),
            "actor": self.actor,
            "resolved_fields": dict(self.resolved_fields),
        }
