from __future__ import annotations

import argparse
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yaml  # type: ignore[import-untyped]

from .similarity import DEFAULT_SIMILARITY_THRESHOLD


@dataclass
class StorageConfig:
    database: str = ":memory:"


@dataclass
class OutputsConfig:
    dir: Path


@dataclass
class NormalizationConfig:
    default_phone_country: str = "US"


@dataclass
class DedupeConfig:
    fuzzy_match_threshold: float = DEFAULT_SIMILARITY_THRESHOLD
    block_exact_email_duplicates: bool = True
    warn_similar_company_names: bool = True
    warn_similar_contact_names: bool = False
    scan_fuzzy_contacts: bool = False
    auto_suggest_merge: bool = False


@dataclass
class LoggingConfig:
    level: str = "WARNING"


@dataclass
class DedupeAppConfig:
    storage: StorageConfig
    outputs: OutputsConfig
    normalization: NormalizationConfig
    dedupe: DedupeConfig
    logging: LoggingConfig


def _load_yaml(path: Optional[str]) -> Dict[str, Any]:
    if not path:
        return {}
    with open(path, "r", encoding="utf-8") as handle:
        return yaml.safe_load(handle) or {}


def coerce_threshold(value: Any) -> float:
    """Accept a 0-1 fraction or a 50-100 style percentage."""
    threshold = float(value)
    if threshold > 1.0:
        threshold = threshold / 100.0
    if not 0.0 <= threshold <= 1.0:
        raise ValueError(f"Similarity threshold out of range: {value!r}")
    return threshold


def _flag(args: argparse.Namespace, name: str, section: Dict[str, Any], default: bool) -> bool:
    value = getattr(args, name, None)
    if value is None:
        return bool(section.get(name, default))
    return bool(value)


def load_app_config(args: argparse.Namespace) -> DedupeAppConfig:
    config_data = _load_yaml(getattr(args, "config", None))
    storage_cfg = config_data.get("storage", {}) or {}
    outputs_cfg = config_data.get("outputs", {}) or {}
    normalization_cfg = config_data.get("normalization", {}) or {}
    dedupe_cfg = config_data.get("dedupe", {}) or {}
    logging_cfg = config_data.get("logging", {}) or {}

    storage = StorageConfig(
        database=str(
            getattr(args, "database", None) or storage_cfg.get("database") or ":memory:"
        ),
    )

    outputs_dir = Path(getattr(args, "out_dir", None) or outputs_cfg.get("dir") or os.getcwd())
    outputs = OutputsConfig(dir=outputs_dir)

    normalization = NormalizationConfig(
        default_phone_country=getattr(args, "default_phone_country", None)
        or normalization_cfg.get("default_phone_country", "US"),
    )

    threshold = getattr(args, "threshold", None)
    if threshold is None:
        threshold = dedupe_cfg.get("fuzzy_match_threshold", DEFAULT_SIMILARITY_THRESHOLD)

    dedupe = DedupeConfig(
        fuzzy_match_threshold=coerce_threshold(threshold),
        block_exact_email_duplicates=_flag(
            args, "block_exact_email_duplicates", dedupe_cfg, True
        ),
        warn_similar_company_names=_flag(args, "warn_similar_company_names", dedupe_cfg, True),
        warn_similar_contact_names=_flag(args, "warn_similar_contact_names", dedupe_cfg, False),
        scan_fuzzy_contacts=_flag(args, "scan_fuzzy_contacts", dedupe_cfg, False),
        auto_suggest_merge=_flag(args, "auto_suggest_merge", dedupe_cfg, False),
    )

    arg_level = getattr(args, "log_level", None)
    effective_level = (arg_level or logging_cfg.get("level") or "WARNING").upper()
    logging_config = LoggingConfig(level=effective_level)

    return DedupeAppConfig(
        storage=storage,
        outputs=outputs,
        normalization=normalization,
        dedupe=dedupe,
        logging=logging_config,
    )
