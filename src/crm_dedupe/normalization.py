from __future__ import annotations

import logging
import os
import re
import unicodedata
from typing import Any, Optional

import phonenumbers
from email_validator import EmailNotValidError, validate_email

logger = logging.getLogger(__name__)

COMPANY_SUFFIXES = (
    "inc",
    "llc",
    "corp",
    "corporation",
    "ltd",
    "limited",
    "co",
    "company",
    "group",
    "holdings",
    "solutions",
    "systems",
    "services",
    "technologies",
    "tech",
)

_COMPANY_SUFFIX_PATTERNS = tuple(
    re.compile(rf"\s+{re.escape(suffix)}\.?$", re.IGNORECASE) for suffix in COMPANY_SUFFIXES
)
_WEBSITE_SCHEME = re.compile(r"^https?://")
_WEBSITE_WWW = re.compile(r"^www\.")
_PHONE_FORMATTING = re.compile(r"[\s\-().]")


def normalize_email(value: Optional[str]) -> str:
    if not value:
        return ""
    return value.strip().lower()


def normalize_name(value: Optional[str]) -> str:
    if not value:
        return ""
    return value.strip().lower()


def normalize_website(value: Optional[str]) -> str:
    """Drop scheme, a leading ``www.`` and one trailing slash."""
    if not value:
        return ""
    site = value.strip().lower()
    site = _WEBSITE_SCHEME.sub("", site)
    site = _WEBSITE_WWW.sub("", site)
    if site.endswith("/"):
        site = site[:-1]
    return site


def normalize_phone(value: Optional[str]) -> str:
    if not value:
        return ""
    return _PHONE_FORMATTING.sub("", value).strip()


def normalize_company_name(value: Optional[str]) -> str:
    """Name key for similarity grouping only; strips at most one corporate suffix.

    Exact-key matching must use :func:`normalize_name` instead.
    """
    normalized = normalize_name(value)
    for pattern in _COMPANY_SUFFIX_PATTERNS:
        if pattern.search(normalized):
            return pattern.sub("", normalized).strip()
    return normalized


def format_phone_e164_safe(value: Optional[str], default_country: str = "US") -> str:
    """E.164 key for phone matching, falling back to the stripped digits form."""
    s = (value or "").strip()
    if not s:
        return ""
    try:
        region = None if s.startswith("+") else default_country
        parsed = phonenumbers.parse(s, region)
        if phonenumbers.is_possible_number(parsed):
            return phonenumbers.format_number(parsed, phonenumbers.PhoneNumberFormat.E164)
    except phonenumbers.NumberParseException:
        logger.debug("phonenumbers.parse failed for %s", s)
    return normalize_phone(s)


def validate_email_safe(raw: Optional[str], check_deliverability: bool = False) -> str:
    candidate = (raw or "").strip()
    if not candidate:
        return ""
    try:
        result = validate_email(candidate, check_deliverability=check_deliverability)
    except EmailNotValidError:
        return ""
    return normalize_email(result.normalized)


def email_key(raw: Optional[str]) -> str:
    """Lookup key for a candidate email.

    Addresses email_validator accepts use its normalized form; anything it
    rejects (``.local`` domains, dotless intranet hosts) falls back to the
    plain normalized text so it still matches stored records.
    """
    return validate_email_safe(raw) or normalize_email(raw)


def contact_full_name(first_name: Optional[str], last_name: Optional[str]) -> str:
    first = (first_name or "").strip()
    last = (last_name or "").strip()
    if not first and not last:
        return "Unnamed Contact"
    if not last:
        return first
    return f"{first} {last}"


def contact_display_name(first_name: Optional[str], last_name: Optional[str]) -> str:
    """``Last, First`` form used for sorting."""
    first = (first_name or "").strip()
    last = (last_name or "").strip()
    if not first and not last:
        return "Unnamed Contact"
    if not last:
        return first
    return f"{last}, {first}"


def split_full_name(full_name: Optional[str]) -> tuple[str, str]:
    parts = (full_name or "").split()
    if not parts:
        return "", ""
    return parts[0], " ".join(parts[1:])


def sort_key(value: Optional[str]) -> str:
    s = (value or "").strip()
    if not s:
        return ""
    s = unicodedata.normalize("NFKD", s)
    s = "".join(ch for ch in s if not unicodedata.combining(ch))
    return re.sub(r"\s+", " ", s).lower()


def _coerce_to_string(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def safe_get(row: Any, key: str) -> str:
    try:
        return _coerce_to_string(row.get(key, ""))
    except (AttributeError, KeyError, TypeError):
        try:
            if hasattr(row, "__contains__") and key in row:
                return _coerce_to_string(row[key])
            return ""
        except (KeyError, TypeError, AttributeError):
            return ""


def warn_missing(path: Optional[str], label: str) -> bool:
    if not path or not os.path.exists(path):
        logger.warning("%s path missing: %s", label, path)
        return True
    return False
