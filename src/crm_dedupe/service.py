"""Caller-facing entry points: pre-submission checks, bulk scans and merges."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, List, Mapping, Optional, Union

from .config_loader import DedupeConfig
from .duplicates import (
    find_exact_duplicates,
    find_fuzzy_matches,
    group_exact_duplicates,
    group_fuzzy_matches,
)
from .errors import PersistenceError
from .executor import MergeExecutor
from .models import (
    CandidateCheck,
    DuplicateCluster,
    Entity,
    EntityType,
    FuzzyMatch,
    MergeAudit,
    MergeDecision,
    ScanResult,
)
from .normalization import (
    contact_full_name,
    email_key,
    format_phone_e164_safe,
    normalize_email,
    normalize_name,
    normalize_website,
    safe_get,
    split_full_name,
)
from .planner import plan_merge
from .store import RecordStore

logger = logging.getLogger(__name__)


class DedupeService:
    def __init__(
        self,
        store: RecordStore,
        settings: Optional[DedupeConfig] = None,
        default_phone_country: str = "US",
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.settings = settings or DedupeConfig()
        self.default_phone_country = default_phone_country
        self.executor = MergeExecutor(store, clock=clock)

    @property
    def threshold(self) -> float:
        return self.settings.fuzzy_match_threshold

    def _phone_key(self, value: Optional[str]) -> str:
        return format_phone_e164_safe(value, self.default_phone_country)

    def _collection(self, entity_type: EntityType, user_id: Optional[str]) -> List[Entity]:
        return self.store.query(entity_type, user_id=user_id, include_merged=False)

    # -- pre-submission guard ---------------------------------------------

    def check_candidate(
        self,
        entity_type: Union[str, EntityType],
        fields: Mapping[str, Any],
        exclude_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> CandidateCheck:
        """Look for existing records matching a record about to be saved.

        Intake must not be blocked by storage outages, so a failed lookup is
        logged and reported as "no duplicate found".
        """
        entity_type = EntityType.parse(entity_type)
        try:
            collection = self._collection(entity_type, user_id)
        except PersistenceError as exc:
            logger.warning(
                "Duplicate check for %s skipped, storage unavailable: %s", entity_type.value, exc
            )
            return CandidateCheck()

        if entity_type is EntityType.CONTACT:
            return self._check_contact(collection, fields, exclude_id)
        return self._check_company(collection, fields, exclude_id)

    def _check_contact(
        self, collection: List[Entity], fields: Mapping[str, Any], exclude_id: Optional[str]
    ) -> CandidateCheck:
        result = CandidateCheck()
        email = email_key(safe_get(fields, "email"))
        if self.settings.block_exact_email_duplicates and email:
            matches = find_exact_duplicates(collection, "email", normalize_email, email, exclude_id)
            result.exact_match = matches[0] if matches else None

        if self.settings.warn_similar_contact_names:
            first, last = safe_get(fields, "first_name"), safe_get(fields, "last_name")
            if not first and not last:
                first, last = split_full_name(safe_get(fields, "name"))
            if first or last:
                name = contact_full_name(first, last)
                result.similar = self._without(
                    find_fuzzy_matches(collection, name, self.threshold, exclude_id),
                    result.exact_match,
                )
        return result

    def _check_company(
        self, collection: List[Entity], fields: Mapping[str, Any], exclude_id: Optional[str]
    ) -> CandidateCheck:
        result = CandidateCheck()
        name = safe_get(fields, "name")
        matches = find_exact_duplicates(collection, "name", normalize_name, name, exclude_id)
        if not matches:
            matches = find_exact_duplicates(
                collection, "website", normalize_website, safe_get(fields, "website"), exclude_id
            )
        result.exact_match = matches[0] if matches else None

        if self.settings.warn_similar_company_names and name:
            result.similar = self._without(
                find_fuzzy_matches(collection, name, self.threshold, exclude_id),
                result.exact_match,
            )
        return result

    @staticmethod
    def _without(matches: List[FuzzyMatch], entity: Optional[Entity]) -> List[FuzzyMatch]:
        if entity is None:
            return matches
        return [match for match in matches if match.entity.id != entity.id]

    # -- bulk review --------------------------------------------------------

    def scan(
        self,
        entity_type: Union[str, EntityType],
        user_id: Optional[str] = None,
        cancel: Any = None,
        threshold: Optional[float] = None,
    ) -> ScanResult:
        """Full-collection duplicate scan. Read-only; ``cancel.set()`` aborts it."""
        entity_type = EntityType.parse(entity_type)
        threshold = self.threshold if threshold is None else threshold
        collection = self._collection(entity_type, user_id)
        result = ScanResult(entity_type=entity_type)

        if entity_type is EntityType.CONTACT:
            result.exact.extend(
                group_exact_duplicates(collection, "email", normalize_email, cancel=cancel)
            )
            result.exact.extend(
                group_exact_duplicates(
                    collection, "primary_phone", self._phone_key, cancel=cancel
                )
            )
            if self.settings.scan_fuzzy_contacts:
                result.fuzzy = group_fuzzy_matches(collection, threshold, cancel=cancel)
        else:
            result.exact.extend(
                group_exact_duplicates(collection, "name", normalize_name, cancel=cancel)
            )
            result.exact.extend(
                group_exact_duplicates(collection, "website", normalize_website, cancel=cancel)
            )
            result.fuzzy = group_fuzzy_matches(collection, threshold, cancel=cancel)

        logger.info(
            "Scanned %d %s records: %d exact clusters, %d fuzzy clusters",
            len(collection),
            entity_type.value,
            len(result.exact),
            len(result.fuzzy),
        )
        return result

    # -- merging ------------------------------------------------------------

    def plan_merge(self, primary: Entity, duplicate: Entity) -> MergeDecision:
        return plan_merge(primary, duplicate)

    def suggest_merge(self, cluster: DuplicateCluster) -> Optional[MergeDecision]:
        """Pre-built plan merging the runner-up into the most complete member."""
        if not self.settings.auto_suggest_merge or len(cluster) < 2:
            return None
        return plan_merge(cluster.members[0], cluster.members[1])

    def execute_merge(
        self,
        primary_id: str,
        duplicate_id: str,
        decision: MergeDecision,
        actor: str,
        entity_type: Union[str, EntityType, None] = None,
    ) -> MergeAudit:
        return self.executor.execute_merge(
            primary_id,
            duplicate_id,
            decision,
            entity_type or decision.entity_type,
            actor,
        )

    def merge_history(
        self, entity_type: Union[str, EntityType], record_id: str
    ) -> List[MergeAudit]:
        return self.store.list_merge_audits(EntityType.parse(entity_type), record_id)

