"""Domain models for tacsync.

Pure Python dataclasses representing the aggregation domain.
These models are independent of SQLAlchemy and pydantic and are used
throughout the application; receivers never mutate a value they were handed.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from types import MappingProxyType
from typing import Iterable, Literal, Mapping

# Neutral prior for buckets with no attempts (avoids biasing cold-start selection)
NEUTRAL_SUCCESS_RATE = 0.5

StatFamily = Literal["tactics", "behaviors"]
STAT_FAMILIES: tuple[StatFamily, ...] = ("tactics", "behaviors")


# ============================================================================
# Statistic Buckets
# ============================================================================


@dataclass(frozen=True, order=True)
class TacticKey:
    """Identifies a statistic bucket.

    Behaviors reuse the same shape: (behavior_id, mob_type).
    """

    tactic_id: str
    category: str

    def __post_init__(self) -> None:
        if not self.tactic_id:
            raise ValueError("tactic_id must be non-empty")
        if self.category is None:
            raise ValueError("category must not be None")


@dataclass(frozen=True)
class AggregateEntry:
    """Accumulated outcomes for one bucket.

    Counts are authoritative; success_rate is derived from them.

    Raises:
        ValueError: If counts are negative or successes exceed attempts.
    """

    key: TacticKey
    total_attempts: int = 0
    successful_attempts: int = 0

    def __post_init__(self) -> None:
        if self.total_attempts < 0 or self.successful_attempts < 0:
            raise ValueError(f"Negative counts for {self.key}")
        if self.successful_attempts > self.total_attempts:
            raise ValueError(
                f"successful_attempts={self.successful_attempts} > "
                f"total_attempts={self.total_attempts} for {self.key}"
            )

    @property
    def success_rate(self) -> float:
        if self.total_attempts == 0:
            return NEUTRAL_SUCCESS_RATE
        return self.successful_attempts / self.total_attempts

    def record(self, success: bool) -> AggregateEntry:
        """Return a copy with one more outcome recorded."""
        return replace(
            self,
            total_attempts=self.total_attempts + 1,
            successful_attempts=self.successful_attempts + (1 if success else 0),
        )


def _freeze(entries: Mapping[TacticKey, AggregateEntry] | None) -> Mapping[TacticKey, AggregateEntry]:
    return MappingProxyType(dict(entries or {}))


@dataclass(frozen=True)
class AggregateDocument:
    """Transferable aggregate: tactic and behavior buckets plus metadata.

    Attributes:
        tactics: TacticKey -> AggregateEntry for the tactic family.
        behaviors: Same shape for the behavior family.
        produced_at: When the producer built this value.
        contributor_count: Distinct contributors (coordinator-produced only).
        document_id: Idempotency key for uploads; None for derived views.
    """

    tactics: Mapping[TacticKey, AggregateEntry] = field(default_factory=dict)
    behaviors: Mapping[TacticKey, AggregateEntry] = field(default_factory=dict)
    produced_at: datetime | None = None
    contributor_count: int = 0
    document_id: str | None = None

    def __post_init__(self) -> None:
        for family in STAT_FAMILIES:
            entries = getattr(self, family)
            for key, entry in entries.items():
                if entry.key != key:
                    raise ValueError(f"Entry key {entry.key} filed under {key}")
            object.__setattr__(self, family, _freeze(entries))

    @classmethod
    def from_entries(
        cls,
        tactics: Iterable[AggregateEntry] = (),
        behaviors: Iterable[AggregateEntry] = (),
        **kwargs,
    ) -> AggregateDocument:
        """Build a document from entry iterables (keys must be unique)."""
        families = {}
        for name, entries in (("tactics", tactics), ("behaviors", behaviors)):
            mapping: dict[TacticKey, AggregateEntry] = {}
            for entry in entries:
                if entry.key in mapping:
                    raise ValueError(f"Duplicate key in {name}: {entry.key}")
                mapping[entry.key] = entry
            families[name] = mapping
        return cls(tactics=families["tactics"], behaviors=families["behaviors"], **kwargs)

    def family(self, name: StatFamily) -> Mapping[TacticKey, AggregateEntry]:
        if name not in STAT_FAMILIES:
            raise ValueError(f"Unknown statistic family: {name}")
        return getattr(self, name)

    @property
    def outcome_count(self) -> int:
        """Total recorded outcomes across both families."""
        return sum(e.total_attempts for e in self.tactics.values()) + sum(
            e.total_attempts for e in self.behaviors.values()
        )

    @property
    def is_empty(self) -> bool:
        return not self.tactics and not self.behaviors


EMPTY_DOCUMENT = AggregateDocument()


# ============================================================================
# Round Domain
# ============================================================================

RoundStatus = Literal["open", "finalized"]


@dataclass
class RoundEntity:
    """Domain model for a coordinator round.

    Contributor tokens are never part of this model; only their count.
    """

    round_number: int
    status: RoundStatus
    started_at: datetime
    aggregate: AggregateDocument
    contributor_count: int = 0
    contribution_count: int = 0
    finalized_at: datetime | None = None
    snapshot: AggregateDocument | None = None


@dataclass(frozen=True)
class FinalizedSnapshot:
    """Immutable global snapshot published when a round finalizes.

    document is cumulative: every finalized round folded together.
    round_aggregate holds only the contributions merged during this round.
    """

    round_number: int
    contributor_count: int
    finalized_at: datetime
    document: AggregateDocument
    round_aggregate: AggregateDocument


@dataclass(frozen=True)
class ContributionReceipt:
    """Result of a coordinator contribute() call."""

    round_number: int
    accepted: bool
    duplicate: bool = False
    finalized: bool = False


# ============================================================================
# Sync Domain
# ============================================================================


@dataclass
class SyncState:
    """Per-contributor transport state. Mutated only by the transport."""

    last_upload_at: datetime | None = None
    last_download_at: datetime | None = None
    consecutive_failures: int = 0
    enabled: bool = True
