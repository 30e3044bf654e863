"""Outcome recorder and snapshotter for one contributor.

Local state is kept in four layers:

- pending:  outcomes recorded since the last staging
- staged:   the batch currently being uploaded (frozen after its first
            I/O attempt so a retry resends identical content)
- awaiting: uploaded batches, keyed by the round/revision that accepted
            them, not yet visible in a downloaded global snapshot
- baseline: the newest global snapshot downloaded

Readers see merge_documents over all four. A contributor's own outcomes
are therefore counted exactly once: they leave `awaiting` only when a
global snapshot that already contains them replaces the baseline.
"""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass
from typing import Any

from tacsync.core.clock import Clock, utc_now
from tacsync.core.merge import merge_all, merge_documents
from tacsync.models.domain import (
    EMPTY_DOCUMENT,
    NEUTRAL_SUCCESS_RATE,
    STAT_FAMILIES,
    AggregateDocument,
    AggregateEntry,
    StatFamily,
    TacticKey,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StagedBatch:
    """A delta of local outcomes prepared for upload."""

    document: AggregateDocument
    attempted: bool = False

    @property
    def document_id(self) -> str:
        return self.document.document_id or ""

    @property
    def outcome_count(self) -> int:
        return self.document.outcome_count


class OutcomeRecorder:
    """Thread-safe accumulator of tactic and behavior outcomes.

    All mutations hold one lock, so concurrent record_outcome calls for the
    same key never lose updates.
    """

    def __init__(self, clock: Clock = utc_now):
        self._clock = clock
        self._lock = threading.Lock()
        self._pending: dict[str, dict[TacticKey, AggregateEntry]] = {f: {} for f in STAT_FAMILIES}
        self._staged: StagedBatch | None = None
        self._awaiting: dict[int, AggregateDocument] = {}
        self._baseline: AggregateDocument = EMPTY_DOCUMENT
        self._baseline_round: int | None = None
        self._contributed_points = 0
        self._downloaded_points = 0

    # ------------------------------------------------------------------
    # Accumulation (policy-facing)
    # ------------------------------------------------------------------

    def record_outcome(self, tactic_id: str, category: str, success: bool) -> None:
        """Record one tactic outcome."""
        self._record("tactics", TacticKey(tactic_id, category), success)

    def record_behavior_outcome(self, behavior_id: str, mob_type: str, success: bool) -> None:
        """Record one behavior outcome."""
        self._record("behaviors", TacticKey(behavior_id, mob_type), success)

    def _record(self, family: StatFamily, key: TacticKey, success: bool) -> None:
        with self._lock:
            bucket = self._pending[family]
            entry = bucket.get(key) or AggregateEntry(key=key)
            bucket[key] = entry.record(success)

    @property
    def new_outcomes(self) -> int:
        """Outcomes recorded since the last successful upload."""
        with self._lock:
            staged = self._staged.outcome_count if self._staged else 0
            return staged + self._pending_count()

    def _pending_count(self) -> int:
        return sum(e.total_attempts for bucket in self._pending.values() for e in bucket.values())

    def _pending_document(self) -> AggregateDocument:
        return AggregateDocument(tactics=self._pending["tactics"], behaviors=self._pending["behaviors"])

    # ------------------------------------------------------------------
    # Snapshotting (transport-facing)
    # ------------------------------------------------------------------

    def stage(self) -> StagedBatch | None:
        """Prepare the next upload batch.

        A batch that has already been attempted is returned unchanged.
        Otherwise pending outcomes are folded into the staged batch, which
        gets a fresh document_id.

        Returns:
            The batch to upload, or None if there is nothing to send.
        """
        with self._lock:
            if self._staged is not None and self._staged.attempted:
                return self._staged

            if self._pending_count() == 0:
                return self._staged

            document = self._pending_document()
            if self._staged is not None:
                document = merge_documents(self._staged.document, document)
            self._staged = StagedBatch(
                document=AggregateDocument(
                    tactics=document.tactics,
                    behaviors=document.behaviors,
                    produced_at=self._clock(),
                    document_id=uuid.uuid4().hex,
                )
            )
            self._pending = {f: {} for f in STAT_FAMILIES}
            return self._staged

    def mark_attempted(self, document_id: str) -> None:
        """Freeze the staged batch once it has been sent over the wire."""
        with self._lock:
            if self._staged is not None and self._staged.document_id == document_id:
                self._staged = StagedBatch(document=self._staged.document, attempted=True)

    def acknowledge(self, document_id: str, round_number: int) -> bool:
        """Mark the staged batch as accepted by round/revision round_number.

        Returns:
            True if the staged batch matched and was moved to awaiting.
        """
        with self._lock:
            if self._staged is None or self._staged.document_id != document_id:
                logger.debug(f"Ignoring acknowledgement for unknown batch {document_id}")
                return False

            batch = self._staged.document
            self._staged = None
            self._contributed_points += batch.outcome_count

            if self._baseline_round is not None and round_number <= self._baseline_round:
                # Baseline already includes this round; the batch is in it
                return True

            previous = self._awaiting.get(round_number)
            self._awaiting[round_number] = batch if previous is None else merge_documents(previous, batch)
            return True

    def absorb(self, document: AggregateDocument, round_number: int) -> bool:
        """Merge a downloaded global snapshot into the local view.

        Snapshots are cumulative and totally ordered by round_number, so a
        newer snapshot supersedes the old baseline, and awaiting batches
        accepted at or before round_number are now part of it. Own pending
        and staged outcomes are kept and merged on top.

        Returns:
            False if the snapshot is not newer than the current baseline.
        """
        with self._lock:
            if self._baseline_round is not None and round_number <= self._baseline_round:
                logger.debug(
                    f"Skipping snapshot {round_number}; already at {self._baseline_round}"
                )
                return False

            self._baseline = document
            self._baseline_round = round_number
            self._awaiting = {r: d for r, d in self._awaiting.items() if r > round_number}
            self._downloaded_points += document.outcome_count
            return True

    @property
    def baseline_round(self) -> int | None:
        with self._lock:
            return self._baseline_round

    # ------------------------------------------------------------------
    # Reads (policy-facing)
    # ------------------------------------------------------------------

    def view(self) -> AggregateDocument:
        """Merged local view: baseline + awaiting + staged + pending."""
        with self._lock:
            layers = [self._baseline, *self._awaiting.values()]
            if self._staged is not None:
                layers.append(self._staged.document)
            layers.append(self._pending_document())
        return merge_all(layers)

    def _lookup(self, family: StatFamily, key: TacticKey) -> AggregateEntry | None:
        with self._lock:
            parts = [self._baseline.family(family).get(key)]
            parts.extend(d.family(family).get(key) for d in self._awaiting.values())
            if self._staged is not None:
                parts.append(self._staged.document.family(family).get(key))
            parts.append(self._pending[family].get(key))
        found = [p for p in parts if p is not None]
        if not found:
            return None
        return AggregateEntry(
            key=key,
            total_attempts=sum(p.total_attempts for p in found),
            successful_attempts=sum(p.successful_attempts for p in found),
        )

    def entry(self, tactic_id: str, category: str) -> AggregateEntry | None:
        return self._lookup("tactics", TacticKey(tactic_id, category))

    def success_rate(self, tactic_id: str, category: str) -> float:
        """Merged success rate for a tactic (neutral prior if unseen)."""
        entry = self.entry(tactic_id, category)
        return entry.success_rate if entry else NEUTRAL_SUCCESS_RATE

    def behavior_success_rate(self, behavior_id: str, mob_type: str) -> float:
        """Merged success rate for a behavior (neutral prior if unseen)."""
        entry = self._lookup("behaviors", TacticKey(behavior_id, mob_type))
        return entry.success_rate if entry else NEUTRAL_SUCCESS_RATE

    def tactics_for_category(self, category: str) -> list[AggregateEntry]:
        """All known tactic buckets in a category, sorted by tactic id."""
        tactics = self.view().tactics
        return [tactics[k] for k in sorted(tactics) if k.category == category]

    def statistics(self) -> dict[str, Any]:
        """Counters for operators (no per-event data)."""
        view = self.view()
        with self._lock:
            staged = self._staged.outcome_count if self._staged else 0
            return {
                "tactics_count": len(view.tactics),
                "behaviors_count": len(view.behaviors),
                "new_outcomes": staged + self._pending_count(),
                "contributed_data_points": self._contributed_points,
                "downloaded_data_points": self._downloaded_points,
                "baseline_round": self._baseline_round,
                "awaiting_rounds": sorted(self._awaiting),
            }
