"""Tests for document serialization."""

import json
from datetime import datetime, timezone

import pytest

from tacsync.core.codec import (
    MalformedDocumentError,
    dumps_document,
    dumps_family,
    loads_document,
    loads_family,
)

class TestDocumentJson:
    """Test dumps_document / loads_document."""

    def test_round_trip_keeps_counts_and_metadata(self, make_document):
        """Counts, produced_at and document_id survive serialization."""
        produced = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)
        document = make_document(
            tactics=[("flank", "combat", 10, 9)],
            behaviors=[("kite", "zombie", 3, 1)],
            produced_at=produced,
            document_id="abc123",
        )

        restored = loads_document(dumps_document(document))

        assert restored == document

    def test_serialization_is_deterministic(self, make_document):
        """Entry order in the output does not depend on insertion order."""
        a = make_document(tactics=[("b", "x", 1, 1), ("a", "x", 2, 1)])
        b = make_document(tactics=[("a", "x", 2, 1), ("b", "x", 1, 1)])
        assert dumps_document(a) == dumps_document(b)

    def test_rate_written_for_readers(self, make_document):
        """Each entry carries its derived success_rate."""
        data = json.loads(dumps_document(make_document(tactics=[("flank", "combat", 4, 1)])))
        assert data["tactics"][0]["success_rate"] == 0.25

    def test_invalid_json_rejected(self):
        """Garbage raises MalformedDocumentError, a ValueError."""
        with pytest.raises(MalformedDocumentError):
            loads_document("{not json")
        assert issubclass(MalformedDocumentError, ValueError)

    def test_duplicate_keys_rejected(self):
        """Two entries for one key make the document malformed."""
        entry = {"tactic_id": "flank", "category": "combat", "total_attempts": 1, "successful_attempts": 1}
        with pytest.raises(MalformedDocumentError):
            loads_document(json.dumps({"tactics": [entry, entry]}))

    def test_broken_invariant_rejected(self):
        """successful_attempts > total_attempts is malformed."""
        entry = {"tactic_id": "flank", "category": "combat", "total_attempts": 1, "successful_attempts": 5}
        with pytest.raises(MalformedDocumentError):
            loads_document(json.dumps({"tactics": [entry]}))


class TestFamilyFiles:
    """Test the per-family repository file format."""

    def test_family_file_round_trip(self, make_document):
        """A family file parses back to the same entries."""
        document = make_document(tactics=[("flank", "combat", 10, 9), ("rush", "combat", 2, 0)])

        entries = loads_family(dumps_family(document, "tactics"))

        assert {e.key: e for e in entries} == dict(document.tactics)

    def test_family_file_is_a_list(self):
        """A JSON object is not a valid family file."""
        with pytest.raises(MalformedDocumentError):
            loads_family('{"tactics": []}')

    def test_family_file_bad_entry(self):
        """Missing fields are malformed."""
        with pytest.raises(MalformedDocumentError):
            loads_family('[{"tactic_id": "flank"}]')

    def test_empty_family(self, make_document):
        """An empty family writes an empty list."""
        text = dumps_family(make_document(tactics=[("flank", "combat", 1, 1)]), "behaviors")
        assert json.loads(text) == []
        assert loads_family(text) == []
