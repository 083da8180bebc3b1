"""Exact-key and fuzzy duplicate detection over an in-memory record collection.

Callers hand in an already scoped collection (owner-filtered, ``is_merged``
false). Merged records are still skipped here so a stale collection can never
resurface them.

Fuzzy grouping is greedy first-match clustering: records are visited in
name order, each unprocessed record seeds a cluster and absorbs every later
unprocessed record scoring at or above the threshold against the seed.
Membership therefore depends on order and is not transitive; two members of one
cluster need not be similar to each other, only to the seed.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from typing import Any, Callable, Iterable, List, Optional, Sequence

from .errors import ScanCancelled
from .models import Contact, DuplicateCluster, Entity, FuzzyMatch
from .normalization import contact_display_name, sort_key
from .similarity import DEFAULT_SIMILARITY_THRESHOLD, calculate_similarity

logger = logging.getLogger(__name__)

Normalizer = Callable[[Optional[str]], str]

# how many outer iterations run between cancellation checks
_CANCEL_CHECK_INTERVAL = 64


def _check_cancelled(cancel: Any) -> None:
    if cancel is not None and cancel.is_set():
        raise ScanCancelled("Duplicate scan cancelled by caller")


def _active(collection: Iterable[Entity]) -> List[Entity]:
    return [member for member in collection if not member.is_merged]


def _key_of(member: Entity, key_field: str, normalize_fn: Normalizer) -> str:
    value = getattr(member, key_field, None)
    return normalize_fn(value if value is None else str(value))


def _name_order(member: Entity) -> str:
    # contacts sort "Last, First" like the review list
    if isinstance(member, Contact):
        return sort_key(contact_display_name(member.first_name, member.last_name))
    return sort_key(member.name)


def order_by_completeness(members: Sequence[Entity]) -> List[Entity]:
    """Most populated record first; ties keep their incoming order."""
    return sorted(members, key=lambda member: -member.completeness())


def find_exact_duplicates(
    collection: Iterable[Entity],
    key_field: str,
    normalize_fn: Normalizer,
    candidate: Optional[str],
    exclude_id: Optional[str] = None,
) -> List[Entity]:
    target = normalize_fn(candidate)
    if not target:
        return []
    return [
        member
        for member in _active(collection)
        if member.id != exclude_id and _key_of(member, key_field, normalize_fn) == target
    ]


def find_fuzzy_matches(
    collection: Iterable[Entity],
    candidate_name: Optional[str],
    threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
    exclude_id: Optional[str] = None,
) -> List[FuzzyMatch]:
    if not (candidate_name or "").strip():
        return []
    results: List[FuzzyMatch] = []
    for member in _active(collection):
        if member.id == exclude_id:
            continue
        score = calculate_similarity(candidate_name, member.name)
        if score >= threshold:
            results.append(FuzzyMatch(entity=member, score=score))
    results.sort(key=lambda match: match.score, reverse=True)
    return results


def group_exact_duplicates(
    collection: Iterable[Entity],
    key_field: str,
    normalize_fn: Normalizer,
    cancel: Any = None,
) -> List[DuplicateCluster]:
    buckets: "OrderedDict[str, List[Entity]]" = OrderedDict()
    for index, member in enumerate(_active(collection)):
        if index % _CANCEL_CHECK_INTERVAL == 0:
            _check_cancelled(cancel)
        key = _key_of(member, key_field, normalize_fn)
        if not key:
            continue
        buckets.setdefault(key, []).append(member)

    clusters = [
        DuplicateCluster(
            match_key=key,
            kind=f"exact:{key_field}",
            members=order_by_completeness(members),
        )
        for key, members in buckets.items()
        if len(members) > 1
    ]
    logger.debug(
        "Exact grouping on %s: %d keys, %d clusters", key_field, len(buckets), len(clusters)
    )
    return clusters


def group_fuzzy_matches(
    collection: Iterable[Entity],
    threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
    cancel: Any = None,
) -> List[DuplicateCluster]:
    """Greedy O(n^2) clustering by name similarity; see module docstring.

    Members are visited by name ascending, contacts as "Last, First". Each
    cluster's score is the weakest seed-to-member similarity it contains.
    """
    members = sorted(_active(collection), key=_name_order)

    processed: set[str] = set()
    clusters: List[DuplicateCluster] = []
    for i, seed in enumerate(members):
        _check_cancelled(cancel)
        if seed.id in processed:
            continue
        similar: List[Entity] = [seed]
        weakest = 1.0
        for other in members[i + 1 :]:
            if other.id in processed:
                continue
            score = calculate_similarity(seed.name, other.name)
            if score >= threshold:
                similar.append(other)
                weakest = min(weakest, score)
                processed.add(other.id)
        if len(similar) > 1:
            processed.add(seed.id)
            clusters.append(
                DuplicateCluster(
                    match_key=seed.name,
                    kind="fuzzy",
                    members=order_by_completeness(similar),
                    score=weakest,
                )
            )

    clusters.sort(key=lambda cluster: cluster.score or 0.0, reverse=True)
    logger.debug("Fuzzy grouping at %.2f: %d clusters", threshold, len(clusters))
    return clusters

