from __future__ import annotations

import logging
from typing import Any, Optional

from .config_loader import DedupeAppConfig, load_app_config
from .duplicates import (
    find_exact_duplicates,
    find_fuzzy_matches,
    group_exact_duplicates,
    group_fuzzy_matches,
    order_by_completeness,
)
from .errors import (
    ConflictError,
    DedupeError,
    NotFoundError,
    PersistenceError,
    ScanCancelled,
    ValidationError,
)
from .executor import MergeExecutor
from .models import (
    CandidateCheck,
    Company,
    Contact,
    DuplicateCluster,
    EntityType,
    FuzzyMatch,
    MergeAudit,
    MergeDecision,
    ScanResult,
)
from .normalization import (
    normalize_company_name,
    normalize_email,
    normalize_name,
    normalize_phone,
    normalize_website,
    warn_missing,
)
from .planner import plan_merge, resolve_merge_payload, validate_decision
from .service import DedupeService
from .similarity import calculate_similarity, is_similar_name, levenshtein_distance
from .store import SqliteRecordStore

logger = logging.getLogger(__name__)

__all__ = [
    "CandidateCheck",
    "Company",
    "ConflictError",
    "Contact",
    "DedupeAppConfig",
    "DedupeError",
    "DedupeService",
    "DuplicateCluster",
    "EntityType",
    "FuzzyMatch",
    "MergeAudit",
    "MergeDecision",
    "MergeExecutor",
    "NotFoundError",
    "PersistenceError",
    "ScanCancelled",
    "ScanResult",
    "SqliteRecordStore",
    "ValidationError",
    "calculate_similarity",
    "find_exact_duplicates",
    "find_fuzzy_matches",
    "group_exact_duplicates",
    "group_fuzzy_matches",
    "is_similar_name",
    "levenshtein_distance",
    "load_config",
    "normalize_company_name",
    "normalize_email",
    "normalize_name",
    "normalize_phone",
    "normalize_website",
    "open_service",
    "order_by_completeness",
    "plan_merge",
    "resolve_merge_payload",
    "validate_decision",
]


def load_config(args: Any) -> DedupeAppConfig:
    return load_app_config(args)


def open_service(config: DedupeAppConfig, database: Optional[str] = None) -> DedupeService:
    """Open the configured store and wrap it in a service; a missing file is created."""
    path = database or config.storage.database
    if path == ":memory:":
        logger.warning("No database configured; using an empty in-memory store")
    else:
        warn_missing(path, "Database")
    store = SqliteRecordStore(path)
    return DedupeService(
        store,
        settings=config.dedupe,
        default_phone_country=config.normalization.default_phone_country,
    )
