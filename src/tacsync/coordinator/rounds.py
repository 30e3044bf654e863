"""Round coordinator: the single authority that turns contributions into
immutable global snapshots.

Lifecycle of a round:

    OPEN --(distinct contributors >= threshold)--> FINALIZED
    OPEN --(now - started_at >= deadline, via tick)--> FINALIZED

Finalizing folds the round's aggregate into the previous global snapshot,
publishes the result and opens the next round in the same transaction.
The open round is never visible to snapshot readers.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import replace
from datetime import timedelta

from tacsync.coordinator.flight import FlightRecorder, RoundReport, report_round
from tacsync.core.clock import Clock, utc_now
from tacsync.core.identity import hash_contributor_token
from tacsync.core.merge import merge_documents
from tacsync.db import repo
from tacsync.db.repo import DbSession
from tacsync.db.session import SessionFactory, session_scope
from tacsync.models.domain import (
    EMPTY_DOCUMENT,
    AggregateDocument,
    ContributionReceipt,
    FinalizedSnapshot,
    RoundEntity,
)
from tacsync.models.types import CoordinatorStats

logger = logging.getLogger(__name__)

DEFAULT_CONTRIBUTOR_THRESHOLD = 10
DEFAULT_ROUND_DEADLINE = timedelta(minutes=10)


class RoundCoordinator:
    """Accepts contributions and finalizes rounds.

    Every state change runs under one lock and one database transaction, so
    contribute, tick and finalize are serialized no matter how many request
    threads call in.
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        contributor_threshold: int = DEFAULT_CONTRIBUTOR_THRESHOLD,
        round_deadline: timedelta = DEFAULT_ROUND_DEADLINE,
        clock: Clock = utc_now,
        flight_recorder: FlightRecorder | None = None,
    ):
        """Initialize coordinator.

        Args:
            session_factory: Callable returning a new Session.
            contributor_threshold: Distinct contributors that close a round early.
            round_deadline: Maximum lifetime of an open round.
            clock: Time source.
            flight_recorder: Optional best-effort sink for round reports.

        Raises:
            ValueError: If threshold < 1 or deadline is not positive.
        """
        if contributor_threshold < 1:
            raise ValueError("contributor_threshold must be >= 1")
        if round_deadline <= timedelta(0):
            raise ValueError("round_deadline must be positive")

        self._session_factory = session_factory
        self.contributor_threshold = contributor_threshold
        self.round_deadline = round_deadline
        self._clock = clock
        self._flight_recorder = flight_recorder
        self._lock = threading.Lock()
        self._latest: FinalizedSnapshot | None = None
        self._started = False

    # ------------------------------------------------------------------
    # Internals (caller holds the lock)
    # ------------------------------------------------------------------

    def _ensure_started(self, session: DbSession) -> RoundEntity:
        """Load persisted state once, then return the open round."""
        if not self._started:
            latest = repo.get_latest_finalized_round(session)
            if latest is not None:
                self._latest = snapshot_from_round(latest)
            self._started = True

        current = repo.get_open_round(session)
        if current is None:
            number = self._latest.round_number + 1 if self._latest else 1
            current = repo.create_round(session, number, self._clock())
            logger.info(f"Opened round {number}")
        return current

    def _finalize_locked(self, session: DbSession, current: RoundEntity) -> FinalizedSnapshot:
        now = self._clock()
        previous = self._latest.document if self._latest else EMPTY_DOCUMENT

        round_aggregate = replace(
            current.aggregate,
            produced_at=now,
            contributor_count=current.contributor_count,
            document_id=None,
        )
        cumulative = replace(
            merge_documents(previous, round_aggregate, produced_at=now),
            contributor_count=current.contributor_count,
        )

        repo.finalize_round(session, current.round_number, now, cumulative)
        repo.create_round(session, current.round_number + 1, now)

        return FinalizedSnapshot(
            round_number=current.round_number,
            contributor_count=current.contributor_count,
            finalized_at=now,
            document=cumulative,
            round_aggregate=round_aggregate,
        )

    def _publish(self, snapshot: FinalizedSnapshot) -> None:
        """Expose a committed snapshot and report it."""
        self._latest = snapshot
        logger.info(
            f"Finalized round {snapshot.round_number} with {snapshot.contributor_count} "
            f"contributors ({snapshot.round_aggregate.outcome_count} new data points)"
        )
        report_round(
            self._flight_recorder,
            RoundReport(
                round_number=snapshot.round_number,
                contributor_count=snapshot.contributor_count,
                timestamp=snapshot.finalized_at,
            ),
        )

    # ------------------------------------------------------------------
    # Public contract
    # ------------------------------------------------------------------

    def start(self) -> RoundEntity:
        """Resume persisted state and make sure a round is open."""
        with self._lock:
            with session_scope(self._session_factory) as session:
                return self._ensure_started(session)

    def contribute(self, contributor_token: str, document: AggregateDocument) -> ContributionReceipt:
        """Merge a contribution into the open round.

        A document whose document_id was already merged is acknowledged with
        the round that merged it and is not applied again.

        Args:
            contributor_token: Opaque token; only its per-round hash is stored.
            document: Contributed delta.

        Returns:
            ContributionReceipt with the round number the document landed in.
        """
        finalized = None
        with self._lock:
            with session_scope(self._session_factory) as session:
                current = self._ensure_started(session)

                if document.document_id:
                    applied_round = repo.get_applied_round(session, document.document_id)
                    if applied_round is not None:
                        logger.debug(
                            f"Duplicate contribution {document.document_id} (round {applied_round})"
                        )
                        return ContributionReceipt(
                            round_number=applied_round, accepted=True, duplicate=True
                        )

                if document.is_empty:
                    return ContributionReceipt(round_number=current.round_number, accepted=False)

                token_hash = hash_contributor_token(contributor_token, current.round_number)
                is_new = repo.add_contributor(session, current.round_number, token_hash)
                contributor_count = current.contributor_count + (1 if is_new else 0)
                aggregate = merge_documents(current.aggregate, document)

                repo.update_round_aggregate(
                    session,
                    current.round_number,
                    aggregate,
                    contributor_count=contributor_count,
                    contribution_count=current.contribution_count + 1,
                )
                if document.document_id:
                    repo.record_applied(
                        session, document.document_id, current.round_number, self._clock()
                    )

                if contributor_count >= self.contributor_threshold:
                    current = replace(
                        current,
                        aggregate=aggregate,
                        contributor_count=contributor_count,
                        contribution_count=current.contribution_count + 1,
                    )
                    finalized = self._finalize_locked(session, current)

            if finalized is not None:
                self._publish(finalized)

        return ContributionReceipt(
            round_number=current.round_number,
            accepted=True,
            finalized=finalized is not None,
        )

    def tick(self) -> FinalizedSnapshot | None:
        """Finalize the open round if its deadline has passed.

        Safe to call redundantly; a round finalizes at most once.

        Returns:
            The new snapshot, or None if the round is still within its deadline.
        """
        with self._lock:
            with session_scope(self._session_factory) as session:
                current = self._ensure_started(session)
                if self._clock() - current.started_at < self.round_deadline:
                    return None
                snapshot = self._finalize_locked(session, current)
            self._publish(snapshot)
            return snapshot

    def finalize(self) -> FinalizedSnapshot:
        """Finalize the open round now, whatever its contributor count."""
        with self._lock:
            with session_scope(self._session_factory) as session:
                current = self._ensure_started(session)
                snapshot = self._finalize_locked(session, current)
            self._publish(snapshot)
            return snapshot

    def snapshot(self) -> FinalizedSnapshot | None:
        """Most recently finalized snapshot, or None before the first finalize."""
        if not self._started:
            self.start()
        return self._latest

    def get_round(self, round_number: int) -> RoundEntity | None:
        """Any round by number (open rounds included; callers decide exposure)."""
        with self._lock:
            with session_scope(self._session_factory) as session:
                return repo.get_round(session, round_number)

    def current_round(self) -> RoundEntity:
        with self._lock:
            with session_scope(self._session_factory) as session:
                return self._ensure_started(session)

    def stats(self) -> CoordinatorStats:
        """Global counters: open round progress plus the published aggregate."""
        current = self.current_round()
        latest = self._latest
        document = latest.document if latest else EMPTY_DOCUMENT
        return CoordinatorStats(
            current_round=current.round_number,
            contributors_in_round=current.contributor_count,
            contributions_in_round=current.contribution_count,
            last_finalized_round=latest.round_number if latest else None,
            tactics_count=len(document.tactics),
            behaviors_count=len(document.behaviors),
            total_attempts=document.outcome_count,
        )


def snapshot_from_round(entity: RoundEntity) -> FinalizedSnapshot:
    """Rebuild a published snapshot from a finalized round row."""
    if entity.snapshot is None or entity.finalized_at is None:
        raise ValueError(f"Round {entity.round_number} has no snapshot")
    return FinalizedSnapshot(
        round_number=entity.round_number,
        contributor_count=entity.contributor_count,
        finalized_at=entity.finalized_at,
        document=entity.snapshot,
        round_aggregate=replace(entity.aggregate, contributor_count=entity.contributor_count),
    )
