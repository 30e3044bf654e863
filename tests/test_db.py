"""Tests for coordinator persistence.

Invariants:
1. One row per round number
2. A contributor is counted once per round
3. A document id is applied at most once
4. A finalized round cannot be finalized again
"""

from datetime import datetime, timezone

import pytest
from sqlalchemy.exc import IntegrityError

from tacsync.core.identity import hash_contributor_token
from tacsync.db import repo
from tacsync.db.schema import AppliedContribution, Base, Round, RoundContributor

NOW = datetime(2024, 1, 1, tzinfo=timezone.utc)


class TestSchemaCreation:
    """Test that schema can be created without errors."""

    def test_all_tables_created(self, engine):
        """All required tables should exist after creation."""
        assert {"rounds", "round_contributors", "applied_contributions"}.issubset(
            Base.metadata.tables.keys()
        )


class TestUniqueness:
    """Unique constraints backing the round invariants."""

    def test_round_number_unique(self, session):
        """Two rows for the same round are rejected."""
        session.add(Round(round_number=1, started_at=NOW, aggregate_json="{}"))
        session.commit()
        session.add(Round(round_number=1, started_at=NOW, aggregate_json="{}"))
        with pytest.raises(IntegrityError):
            session.commit()

    def test_contributor_unique_per_round(self, session):
        """The same token hash cannot be stored twice for one round."""
        session.add(Round(round_number=1, started_at=NOW, aggregate_json="{}"))
        session.add(RoundContributor(round_number=1, token_hash="h"))
        session.commit()
        session.add(RoundContributor(round_number=1, token_hash="h"))
        with pytest.raises(IntegrityError):
            session.commit()

    def test_document_applied_once(self, session):
        """A document id has one applied row."""
        session.add(Round(round_number=1, started_at=NOW, aggregate_json="{}"))
        session.add(AppliedContribution(document_id="d", round_number=1))
        session.commit()
        session.add(AppliedContribution(document_id="d", round_number=1))
        with pytest.raises(IntegrityError):
            session.commit()


class TestRepo:
    """Test repository functions return domain entities."""

    def test_create_and_get_round(self, session, make_document):
        """A new round is open and empty."""
        repo.create_round(session, 1, NOW)

        entity = repo.get_round(session, 1)

        assert entity.status == "open"
        assert entity.aggregate.is_empty
        assert entity.started_at == NOW
        assert repo.get_open_round(session).round_number == 1
        assert repo.get_latest_finalized_round(session) is None

    def test_add_contributor_reports_new(self, session):
        """add_contributor is True only for the first sighting."""
        repo.create_round(session, 1, NOW)
        token_hash = hash_contributor_token("alice", 1)

        assert repo.add_contributor(session, 1, token_hash)
        assert not repo.add_contributor(session, 1, token_hash)
        assert repo.count_contributors(session, 1) == 1

    def test_finalize_round_twice_rejected(self, session, make_document):
        """Finalization happens exactly once."""
        repo.create_round(session, 1, NOW)
        snapshot = make_document(tactics=[("x", "combat", 1, 1)])
        repo.finalize_round(session, 1, NOW, snapshot)

        with pytest.raises(ValueError):
            repo.finalize_round(session, 1, NOW, snapshot)

        entity = repo.get_latest_finalized_round(session)
        assert entity.snapshot == snapshot
        assert entity.finalized_at == NOW

    def test_applied_lookup(self, session):
        """get_applied_round finds recorded document ids."""
        repo.create_round(session, 4, NOW)
        repo.record_applied(session, "doc-1", 4, NOW)

        assert repo.get_applied_round(session, "doc-1") == 4
        assert repo.get_applied_round(session, "doc-2") is None


class TestTokenHash:
    """Test contributor token hashing."""

    def test_hash_differs_per_round(self):
        """The same token cannot be linked across rounds."""
        assert hash_contributor_token("alice", 1) != hash_contributor_token("alice", 2)

    def test_empty_token_rejected(self):
        """Tokens must be non-empty."""
        with pytest.raises(ValueError):
            hash_contributor_token("", 1)
