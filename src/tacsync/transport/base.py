"""Base sync transport interface.

A transport moves AggregateDocuments between a contributor and the shared
aggregate. Concrete transports implement two narrow hooks:

- _send(document) -> UploadResult
- _fetch() -> DownloadResult

The base class owns everything both transports share: the enable flag,
independent upload/download intervals, the minimum-contribution gate and
exponential backoff after repeated failures. Hooks signal transient
problems by raising TransportError; they must not touch recorder state.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Literal

from tacsync.core.clock import Clock, utc_now
from tacsync.core.codec import MalformedDocumentError
from tacsync.models.domain import AggregateDocument, SyncState

logger = logging.getLogger(__name__)

# Failures tolerated before the interval starts doubling
DEFAULT_FAILURE_THRESHOLD = 3
# Cap on the doubling (2**6 = 64x the base interval)
DEFAULT_MAX_BACKOFF_EXPONENT = 6
# Outcomes a contributor must accumulate before an upload does any I/O
DEFAULT_MIN_CONTRIBUTIONS = 10

UploadStatus = Literal["sent", "skipped", "deferred", "failed"]
DownloadStatus = Literal["available", "unavailable", "deferred", "failed"]


class TransportError(Exception):
    """Transient failure: unreachable remote, timeout, rejected request."""


class WriteConflictError(TransportError):
    """A concurrent writer got there first; the whole cycle must be redone."""


@dataclass(frozen=True)
class TransportPolicy:
    """Rate limits and backoff for one transport kind."""

    upload_interval: timedelta
    download_interval: timedelta
    min_contributions: int = DEFAULT_MIN_CONTRIBUTIONS
    failure_threshold: int = DEFAULT_FAILURE_THRESHOLD
    max_backoff_exponent: int = DEFAULT_MAX_BACKOFF_EXPONENT
    timeout: float = 30.0

    def __post_init__(self) -> None:
        if self.min_contributions < 0:
            raise ValueError("min_contributions must be >= 0")
        if self.timeout <= 0:
            raise ValueError("timeout must be positive")


@dataclass(frozen=True)
class UploadResult:
    """Outcome of SyncTransport.upload().

    Attributes:
        status: sent | skipped (below threshold) | deferred (rate limited or
            disabled) | failed.
        round_number: Round (direct) or revision (repository) that accepted
            the document.
        snapshot: Cumulative document the remote holds after the upload, when
            the transport learns it as part of the write.
        detail: Human-readable reason for non-sent outcomes.
    """

    status: UploadStatus
    round_number: int | None = None
    snapshot: AggregateDocument | None = None
    detail: str | None = None

    @property
    def success(self) -> bool:
        return self.status != "failed"

    @property
    def performed_io(self) -> bool:
        return self.status in ("sent", "failed")


@dataclass(frozen=True)
class DownloadResult:
    """Outcome of SyncTransport.download()."""

    status: DownloadStatus
    document: AggregateDocument | None = None
    round_number: int | None = None
    contributor_count: int | None = None
    produced_at: datetime | None = None
    detail: str | None = None

    @property
    def available(self) -> bool:
        return self.status == "available" and self.document is not None


class SyncTransport(ABC):
    """Abstract base class for sync transports.

    Transports implement a narrow interface: upload(document), download().

    Per boundary rules, transports must NOT:
    - Mutate recorder state
    - Raise into the caller for transient failures
    """

    kind: str = "abstract"

    def __init__(self, policy: TransportPolicy, clock: Clock = utc_now, enabled: bool = True):
        self.policy = policy
        self.clock = clock
        self.state = SyncState(enabled=enabled)

    # ------------------------------------------------------------------
    # Backoff state machine
    # ------------------------------------------------------------------

    def backoff_factor(self) -> int:
        """Interval multiplier derived from consecutive failures."""
        excess = self.state.consecutive_failures - self.policy.failure_threshold
        if excess <= 0:
            return 1
        return 2 ** min(excess, self.policy.max_backoff_exponent)

    def effective_interval(self, base: timedelta) -> timedelta:
        return base * self.backoff_factor()

    def upload_due(self, now: datetime | None = None) -> bool:
        return self._due(self.state.last_upload_at, self.policy.upload_interval, now)

    def download_due(self, now: datetime | None = None) -> bool:
        return self._due(self.state.last_download_at, self.policy.download_interval, now)

    def _due(self, last: datetime | None, base: timedelta, now: datetime | None) -> bool:
        if last is None:
            return True
        now = now or self.clock()
        return now - last >= self.effective_interval(base)

    def _record_success(self) -> None:
        if self.state.consecutive_failures:
            logger.info(f"{self.kind} sync recovered after {self.state.consecutive_failures} failures")
        self.state.consecutive_failures = 0

    def _record_failure(self, reason: str) -> None:
        self.state.consecutive_failures += 1
        logger.warning(
            f"{self.kind} sync failed (attempt {self.state.consecutive_failures}): {reason}"
        )
        factor = self.backoff_factor()
        if factor > 1:
            logger.warning(f"Multiple {self.kind} sync failures, backing off x{factor}")

    # ------------------------------------------------------------------
    # Public contract
    # ------------------------------------------------------------------

    def upload(self, document: AggregateDocument, *, force: bool = False) -> UploadResult:
        """Push a local aggregate.

        Args:
            document: Local delta to contribute.
            force: Bypass the interval gate (final push on shutdown). The
                minimum-contribution gate still applies.

        Returns:
            UploadResult; never raises for transport problems.
        """
        if not self.state.enabled:
            return UploadResult(status="deferred", detail="sync disabled")

        if document.outcome_count < self.policy.min_contributions:
            logger.debug(
                f"Not enough local data to contribute ({document.outcome_count} < "
                f"{self.policy.min_contributions}), waiting for more"
            )
            return UploadResult(status="skipped", detail="below minimum contribution")

        now = self.clock()
        if not force and not self.upload_due(now):
            return UploadResult(status="deferred", detail="rate limited")

        self.state.last_upload_at = now
        try:
            result = self._send(document)
        except MalformedDocumentError as e:
            logger.warning(f"{self.kind} upload aborted, remote document unreadable: {e}")
            return UploadResult(status="failed", detail=str(e))
        except TransportError as e:
            self._record_failure(f"upload: {e}")
            return UploadResult(status="failed", detail=str(e))

        self._record_success()
        logger.info(f"Pushed {document.outcome_count} data points via {self.kind} transport")
        return result

    def download(self, *, force: bool = False) -> DownloadResult:
        """Pull the latest global aggregate.

        Returns:
            DownloadResult; "unavailable" leaves the caller's state untouched.
        """
        if not self.state.enabled:
            return DownloadResult(status="deferred", detail="sync disabled")

        now = self.clock()
        if not force and not self.download_due(now):
            return DownloadResult(status="deferred", detail="rate limited")

        self.state.last_download_at = now
        try:
            result = self._fetch()
        except MalformedDocumentError as e:
            logger.warning(f"{self.kind} download ignored, remote document unreadable: {e}")
            return DownloadResult(status="unavailable", detail=str(e))
        except TransportError as e:
            self._record_failure(f"download: {e}")
            return DownloadResult(status="failed", detail=str(e))

        self._record_success()
        return result

    def close(self) -> None:
        """Release transport resources."""

    @abstractmethod
    def _send(self, document: AggregateDocument) -> UploadResult:
        """Perform the upload I/O.

        Raises:
            TransportError: On transient failure.
            MalformedDocumentError: If a remote document must be read and is invalid.
        """

    @abstractmethod
    def _fetch(self) -> DownloadResult:
        """Perform the download I/O.

        Raises:
            TransportError: On transient failure.
            MalformedDocumentError: If the remote document is invalid.
        """
