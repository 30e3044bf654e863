"""Merge engine for aggregate statistics.

Pure functions shared by contributors and the coordinator.

Counts are summed exactly; the success rate is derived from the summed
counts, which equals the sample-weighted average of the two rates:

    rate' = (rate_a * T_a + rate_b * T_b) / (T_a + T_b)

Summing integers instead of re-deriving successes from a rounded rate keeps
merges exactly commutative and associative, with no small-sample rounding
bias.
"""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, Mapping

from tacsync.models.domain import (
    EMPTY_DOCUMENT,
    STAT_FAMILIES,
    AggregateDocument,
    AggregateEntry,
    TacticKey,
)


def merge(a: AggregateEntry, b: AggregateEntry) -> AggregateEntry:
    """Merge two entries for the same key.

    Args:
        a: First entry.
        b: Second entry.

    Returns:
        Entry with summed attempts and the sample-weighted success rate.

    Raises:
        ValueError: If the entries belong to different keys.
    """
    if a.key != b.key:
        raise ValueError(f"Cannot merge entries for different keys: {a.key} != {b.key}")

    if a.total_attempts + b.total_attempts == 0:
        return a

    return AggregateEntry(
        key=a.key,
        total_attempts=a.total_attempts + b.total_attempts,
        successful_attempts=a.successful_attempts + b.successful_attempts,
    )


def merge_entry_maps(
    a: Mapping[TacticKey, AggregateEntry],
    b: Mapping[TacticKey, AggregateEntry],
) -> dict[TacticKey, AggregateEntry]:
    """Union of two bucket maps, merging shared keys."""
    merged = dict(a)
    for key, entry in b.items():
        existing = merged.get(key)
        merged[key] = entry if existing is None else merge(existing, entry)
    return merged


def merge_documents(
    a: AggregateDocument,
    b: AggregateDocument,
    *,
    produced_at: datetime | None = None,
) -> AggregateDocument:
    """Merge two documents family by family.

    Keys present in only one document are carried unchanged. The result is a
    new value; neither input is modified. Metadata of the result is derived,
    not copied: document_id is cleared and contributor_count is left at 0
    (only the coordinator assigns it).

    Args:
        a: First document.
        b: Second document.
        produced_at: Timestamp for the result (defaults to the later input).

    Returns:
        Merged AggregateDocument.
    """
    if produced_at is None:
        stamps = [d.produced_at for d in (a, b) if d.produced_at is not None]
        produced_at = max(stamps) if stamps else None

    families = {name: merge_entry_maps(a.family(name), b.family(name)) for name in STAT_FAMILIES}
    return AggregateDocument(
        tactics=families["tactics"],
        behaviors=families["behaviors"],
        produced_at=produced_at,
    )


def merge_all(documents: Iterable[AggregateDocument]) -> AggregateDocument:
    """Fold any number of documents together (order-independent)."""
    result = EMPTY_DOCUMENT
    for document in documents:
        result = merge_documents(result, document)
    return result
