"""Contributor facade: recorder + transport + periodic sync.

The decision policy only ever calls record_outcome() and the read methods;
nothing it calls performs I/O or raises because of the network. Sync runs
on a background Ticker and on shutdown.
"""

from __future__ import annotations

import logging
from typing import Any

from tacsync.config import SyncConfig
from tacsync.contributor.recorder import OutcomeRecorder
from tacsync.core.clock import Clock, utc_now
from tacsync.transport.base import DownloadResult, SyncTransport, UploadResult
from tacsync.worker.ticker import Ticker

logger = logging.getLogger(__name__)


def build_transport(config: SyncConfig, clock: Clock = utc_now) -> SyncTransport:
    """Create the transport selected by configuration.

    Raises:
        ValueError: If the configuration names an unknown transport.
    """
    if config.transport == "direct":
        from tacsync.transport.direct import DirectTransport, direct_policy

        policy = direct_policy(config.min_contributions, timeout=config.timeout or 30.0)
        return DirectTransport(
            endpoint=config.endpoint, policy=policy, clock=clock, enabled=config.enabled
        )

    if config.transport == "repository":
        from tacsync.transport.git import GitRepositoryStore
        from tacsync.transport.repository import RepositoryTransport, repository_policy

        policy = repository_policy(config.min_contributions, timeout=config.timeout or 60.0)
        store = GitRepositoryStore(
            repository_url=config.repository_url or "",
            checkout_dir=config.checkout_dir,
            branch=config.branch,
            timeout=policy.timeout,
        )
        return RepositoryTransport(store, policy=policy, clock=clock, enabled=config.enabled)

    raise ValueError(f"Unknown transport: {config.transport}")


class Contributor:
    """One participant in the federation."""

    def __init__(
        self,
        transport: SyncTransport,
        recorder: OutcomeRecorder | None = None,
        sync_interval: float = 60.0,
    ):
        self.transport = transport
        self.recorder = recorder or OutcomeRecorder(clock=transport.clock)
        self._ticker = Ticker(self.sync_once, sync_interval, name="tacsync-sync")
        self.last_upload: UploadResult | None = None
        self.last_download: DownloadResult | None = None

    @classmethod
    def from_config(cls, config: SyncConfig, clock: Clock = utc_now) -> Contributor:
        return cls(
            build_transport(config, clock=clock),
            sync_interval=config.sync_interval.total_seconds(),
        )

    @property
    def enabled(self) -> bool:
        return self.transport.state.enabled

    # ------------------------------------------------------------------
    # Policy-facing
    # ------------------------------------------------------------------

    def record_outcome(self, tactic_id: str, category: str, success: bool) -> None:
        """Record a tactic outcome. Never raises."""
        try:
            self.recorder.record_outcome(tactic_id, category, success)
        except ValueError as e:
            logger.warning(f"Dropped invalid outcome for {tactic_id!r}: {e}")

    def record_behavior_outcome(self, behavior_id: str, mob_type: str, success: bool) -> None:
        """Record a behavior outcome. Never raises."""
        try:
            self.recorder.record_behavior_outcome(behavior_id, mob_type, success)
        except ValueError as e:
            logger.warning(f"Dropped invalid behavior outcome for {behavior_id!r}: {e}")

    def success_rate(self, tactic_id: str, category: str) -> float:
        return self.recorder.success_rate(tactic_id, category)

    def behavior_success_rate(self, behavior_id: str, mob_type: str) -> float:
        return self.recorder.behavior_success_rate(behavior_id, mob_type)

    # ------------------------------------------------------------------
    # Sync
    # ------------------------------------------------------------------

    def push(self, force: bool = False) -> UploadResult:
        """Upload the staged batch (or stage a new one) once."""
        if not self.enabled:
            return UploadResult(status="deferred", detail="sync disabled")

        # An unattempted batch keeps growing until the transport accepts its size
        batch = self.recorder.stage()
        if batch is None:
            return UploadResult(status="skipped", detail="nothing to send")

        result = self.transport.upload(batch.document, force=force)
        if result.performed_io:
            self.recorder.mark_attempted(batch.document_id)
        if result.status == "sent" and result.round_number is not None:
            self.recorder.acknowledge(batch.document_id, result.round_number)
            if result.snapshot is not None:
                self.recorder.absorb(result.snapshot, result.round_number)
        self.last_upload = result
        return result

    def pull(self, force: bool = False) -> DownloadResult:
        """Download the latest global snapshot once."""
        result = self.transport.download(force=force)
        if result.available and result.round_number is not None:
            self.recorder.absorb(result.document, result.round_number)
        self.last_download = result
        return result

    def sync_once(self) -> tuple[UploadResult, DownloadResult]:
        """One sync cycle: upload if due, then download if due."""
        return self.push(), self.pull()

    def start(self) -> None:
        """Start periodic background sync (no-op when disabled)."""
        if not self.enabled:
            logger.info("Federated sync disabled - recording locally only")
            return
        self._ticker.start()
        logger.info(f"Federated sync started ({self.transport.kind} transport)")

    def shutdown(self) -> UploadResult:
        """Stop the timer and make a final upload that bypasses the interval."""
        self._ticker.stop()
        result = self.push(force=True)
        if result.status == "sent":
            logger.info("Final federated push completed")
        self.transport.close()
        return result

    def statistics(self) -> dict[str, Any]:
        """Operator-facing counters (no per-event data)."""
        stats = self.recorder.statistics()
        state = self.transport.state
        stats.update(
            {
                "enabled": state.enabled,
                "transport": self.transport.kind,
                "last_upload_at": state.last_upload_at,
                "last_download_at": state.last_download_at,
                "consecutive_failures": state.consecutive_failures,
            }
        )
        return stats
