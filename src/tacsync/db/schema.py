"""Database schema for the round coordinator.

Unique constraints enforce the round invariants: one row per round number,
one row per (round, contributor), one row per applied document id.
"""

from datetime import datetime, timezone

from sqlalchemy import (
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class Round(Base):
    """A coordinator round.

    aggregate_json holds the merge of contributions received this round.
    snapshot_json holds the cumulative global document, set at finalize.
    """

    __tablename__ = "rounds"

    round_number: Mapped[int] = mapped_column(Integer, primary_key=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="open")
    started_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=lambda: datetime.now(timezone.utc)
    )
    finalized_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    contributor_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    contribution_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    aggregate_json: Mapped[str] = mapped_column(Text, nullable=False)
    snapshot_json: Mapped[str | None] = mapped_column(Text, nullable=True)


class RoundContributor(Base):
    """Distinct contributor seen in an open round.

    Only a hash of the opaque token is stored, and rows are deleted when the
    round finalizes.

    Invariant: UNIQUE(round_number, token_hash)
    """

    __tablename__ = "round_contributors"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    round_number: Mapped[int] = mapped_column(
        Integer, ForeignKey("rounds.round_number"), nullable=False
    )
    token_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    __table_args__ = (
        UniqueConstraint("round_number", "token_hash", name="uq_round_contributor"),
    )


class AppliedContribution(Base):
    """Document id already merged, for redelivery idempotency.

    Invariant: UNIQUE(document_id)
    """

    __tablename__ = "applied_contributions"

    document_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    round_number: Mapped[int] = mapped_column(
        Integer, ForeignKey("rounds.round_number"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=lambda: datetime.now(timezone.utc)
    )
