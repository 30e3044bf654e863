"""Serialization between AggregateDocument and its wire/file forms.

AggregateDocument <-> AggregateDocumentPayload <-> JSON text.
Entries are written in sorted key order so identical documents serialize
to identical bytes (stable diffs in the shared repository).
"""

from __future__ import annotations

import json

from pydantic import ValidationError

from tacsync.core.clock import as_utc
from tacsync.models.domain import (
    STAT_FAMILIES,
    AggregateDocument,
    AggregateEntry,
    TacticKey,
)
from tacsync.models.types import AggregateDocumentPayload, EntryPayload


class MalformedDocumentError(ValueError):
    """A received document could not be parsed or violates an invariant."""


def _entry_to_payload(entry: AggregateEntry) -> EntryPayload:
    return EntryPayload(
        tactic_id=entry.key.tactic_id,
        category=entry.key.category,
        total_attempts=entry.total_attempts,
        successful_attempts=entry.successful_attempts,
        success_rate=entry.success_rate,
    )


def _entry_from_payload(payload: EntryPayload) -> AggregateEntry:
    return AggregateEntry(
        key=TacticKey(tactic_id=payload.tactic_id, category=payload.category),
        total_attempts=payload.total_attempts,
        successful_attempts=payload.successful_attempts,
    )


def document_to_payload(document: AggregateDocument) -> AggregateDocumentPayload:
    """Convert a domain document to its pydantic payload."""
    families = {
        name: [_entry_to_payload(document.family(name)[key]) for key in sorted(document.family(name))]
        for name in STAT_FAMILIES
    }
    return AggregateDocumentPayload(
        tactics=families["tactics"],
        behaviors=families["behaviors"],
        produced_at=document.produced_at,
        contributor_count=document.contributor_count,
        document_id=document.document_id,
    )


def document_from_payload(payload: AggregateDocumentPayload) -> AggregateDocument:
    """Convert a validated payload to a domain document.

    Raises:
        MalformedDocumentError: If entries repeat a key or break an invariant.
    """
    try:
        return AggregateDocument.from_entries(
            tactics=[_entry_from_payload(p) for p in payload.tactics],
            behaviors=[_entry_from_payload(p) for p in payload.behaviors],
            produced_at=as_utc(payload.produced_at),
            contributor_count=payload.contributor_count,
            document_id=payload.document_id,
        )
    except ValueError as e:
        raise MalformedDocumentError(str(e)) from e


def dumps_document(document: AggregateDocument) -> str:
    """Serialize a document to JSON text."""
    return document_to_payload(document).model_dump_json(indent=2)


def loads_document(text: str | bytes) -> AggregateDocument:
    """Parse JSON text into a document.

    Raises:
        MalformedDocumentError: If the text is not a valid document.
    """
    try:
        payload = AggregateDocumentPayload.model_validate_json(text)
    except ValidationError as e:
        raise MalformedDocumentError(f"Invalid aggregate document: {e}") from e
    return document_from_payload(payload)


def dumps_family(document: AggregateDocument, family: str) -> str:
    """Serialize one family as a JSON list (repository file contract)."""
    entries = document.family(family)
    data = [_entry_to_payload(entries[key]).model_dump() for key in sorted(entries)]
    return json.dumps(data, indent=2, sort_keys=True) + "\n"


def loads_family(text: str) -> list[AggregateEntry]:
    """Parse a family file written by dumps_family.

    Raises:
        MalformedDocumentError: If the text is not a list of valid entries.
    """
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise MalformedDocumentError(f"Invalid JSON: {e}") from e
    if not isinstance(data, list):
        raise MalformedDocumentError("Family file must hold a JSON list")
    try:
        return [_entry_from_payload(EntryPayload.model_validate(item)) for item in data]
    except (ValidationError, ValueError) as e:
        raise MalformedDocumentError(f"Invalid entry: {e}") from e
