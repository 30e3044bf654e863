"""Repository pattern for coordinator persistence.

Encapsulates all SQLAlchemy queries, keeping round logic pure.
Returns domain models (not SQLAlchemy entities) to external callers.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from tacsync.core.clock import as_utc
from tacsync.core.codec import dumps_document, loads_document
from tacsync.db.schema import AppliedContribution, Round, RoundContributor
from tacsync.models.domain import EMPTY_DOCUMENT, AggregateDocument, RoundEntity

if TYPE_CHECKING:
    from sqlalchemy.orm import Session as DbSession
else:
    DbSession = Session

# Re-export for external use
__all__ = ["DbSession"]


# ============================================================================
# Converters: SQLAlchemy -> Domain
# ============================================================================


def _round_to_entity(row: Round) -> RoundEntity:
    """Convert SQLAlchemy Round to domain entity."""
    return RoundEntity(
        round_number=row.round_number,
        status=row.status,
        started_at=as_utc(row.started_at),
        aggregate=loads_document(row.aggregate_json),
        contributor_count=row.contributor_count,
        contribution_count=row.contribution_count,
        finalized_at=as_utc(row.finalized_at),
        snapshot=loads_document(row.snapshot_json) if row.snapshot_json else None,
    )


# ============================================================================
# Round Operations
# ============================================================================


def create_round(session: DbSession, round_number: int, started_at: datetime) -> RoundEntity:
    """Open a new, empty round.

    Args:
        session: Database session.
        round_number: Number of the new round.
        started_at: Round start (deadline anchor).

    Returns:
        Created round entity.
    """
    row = Round(
        round_number=round_number,
        status="open",
        started_at=started_at,
        aggregate_json=dumps_document(EMPTY_DOCUMENT),
    )
    session.add(row)
    session.flush()
    return _round_to_entity(row)


def get_round(session: DbSession, round_number: int) -> RoundEntity | None:
    """Get a round by number."""
    row = session.get(Round, round_number)
    return _round_to_entity(row) if row else None


def get_open_round(session: DbSession) -> RoundEntity | None:
    """Get the open round (there is at most one)."""
    stmt = select(Round).where(Round.status == "open").order_by(Round.round_number.desc())
    row = session.execute(stmt).scalars().first()
    return _round_to_entity(row) if row else None


def get_latest_finalized_round(session: DbSession) -> RoundEntity | None:
    """Get the most recently finalized round."""
    stmt = (
        select(Round).where(Round.status == "finalized").order_by(Round.round_number.desc())
    )
    row = session.execute(stmt).scalars().first()
    return _round_to_entity(row) if row else None


def update_round_aggregate(
    session: DbSession,
    round_number: int,
    aggregate: AggregateDocument,
    contributor_count: int,
    contribution_count: int,
) -> None:
    """Store the merged aggregate and counters of an open round."""
    row = session.get(Round, round_number)
    if row is None:
        raise ValueError(f"Round {round_number} not found")
    row.aggregate_json = dumps_document(aggregate)
    row.contributor_count = contributor_count
    row.contribution_count = contribution_count


def finalize_round(
    session: DbSession,
    round_number: int,
    finalized_at: datetime,
    snapshot: AggregateDocument,
) -> None:
    """Freeze a round and store its global snapshot.

    Contributor token hashes for the round are deleted.
    """
    row = session.get(Round, round_number)
    if row is None:
        raise ValueError(f"Round {round_number} not found")
    if row.status != "open":
        raise ValueError(f"Round {round_number} is already {row.status}")
    row.status = "finalized"
    row.finalized_at = finalized_at
    row.snapshot_json = dumps_document(snapshot)
    session.execute(delete(RoundContributor).where(RoundContributor.round_number == round_number))


# ============================================================================
# Contributor Operations
# ============================================================================


def add_contributor(session: DbSession, round_number: int, token_hash: str) -> bool:
    """Register a contributor for a round.

    Returns:
        True if the contributor was not yet counted in this round.
    """
    stmt = select(RoundContributor).where(
        RoundContributor.round_number == round_number,
        RoundContributor.token_hash == token_hash,
    )
    if session.execute(stmt).scalars().first() is not None:
        return False
    session.add(RoundContributor(round_number=round_number, token_hash=token_hash))
    session.flush()
    return True


def count_contributors(session: DbSession, round_number: int) -> int:
    """Count distinct contributors registered for a round."""
    stmt = select(func.count()).select_from(RoundContributor).where(
        RoundContributor.round_number == round_number
    )
    return session.execute(stmt).scalar_one()


# ============================================================================
# Idempotency Operations
# ============================================================================


def get_applied_round(session: DbSession, document_id: str) -> int | None:
    """Round that already merged document_id, if any."""
    row = session.get(AppliedContribution, document_id)
    return row.round_number if row else None


def record_applied(
    session: DbSession, document_id: str, round_number: int, created_at: datetime
) -> None:
    """Remember that document_id was merged into round_number."""
    session.add(
        AppliedContribution(
            document_id=document_id, round_number=round_number, created_at=created_at
        )
    )
    session.flush()
