"""Repository transport: pull -> merge -> write -> commit -> push.

The shared store is a versioned blob store with last-writer-wins per file
(a git remote in production). Three files are written and committed
together on every push:

- tactics.json    - tactic family entries
- behaviors.json  - behavior family entries
- metadata.json   - revision, last update, counts, recently applied ids

The store holds the cumulative global aggregate. Lost updates are
prevented without a central lock: a push rejected because another
contributor pushed first resets to the remote head and restarts the whole
cycle, so the other contributor's data is merged rather than overwritten.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import timedelta

from pydantic import ValidationError

from tacsync.core.clock import Clock, as_utc, utc_now
from tacsync.core.codec import MalformedDocumentError, dumps_family, loads_family
from tacsync.core.merge import merge_documents
from tacsync.models.domain import AggregateDocument
from tacsync.models.types import RepositoryMetadata
from tacsync.transport.base import (
    DEFAULT_MIN_CONTRIBUTIONS,
    DownloadResult,
    SyncTransport,
    TransportPolicy,
    UploadResult,
    WriteConflictError,
)

logger = logging.getLogger(__name__)

TACTICS_FILE = "tactics.json"
BEHAVIORS_FILE = "behaviors.json"
METADATA_FILE = "metadata.json"
AGGREGATE_FILES = [TACTICS_FILE, BEHAVIORS_FILE, METADATA_FILE]

# Pushes are expensive for the backing store; pulls are cheap and valuable
REPOSITORY_UPLOAD_INTERVAL = timedelta(minutes=5)
REPOSITORY_DOWNLOAD_INTERVAL = timedelta(minutes=2)

# Full pull-merge-push cycles attempted per upload before backing off
MAX_PUSH_ATTEMPTS = 3
# Applied document ids remembered in metadata.json for redelivery checks
APPLIED_HISTORY_LIMIT = 256


def repository_policy(
    min_contributions: int = DEFAULT_MIN_CONTRIBUTIONS,
    timeout: float = 60.0,
) -> TransportPolicy:
    """Default rate limits for the repository transport."""
    return TransportPolicy(
        upload_interval=REPOSITORY_UPLOAD_INTERVAL,
        download_interval=REPOSITORY_DOWNLOAD_INTERVAL,
        min_contributions=min_contributions,
        timeout=timeout,
    )


class RepositoryStore(ABC):
    """Local checkout of a shared, optimistically-concurrent blob store."""

    @abstractmethod
    def ensure_checkout(self) -> bool:
        """Perform the one-time full checkout.

        Returns:
            True if a checkout was created by this call.
        """

    @abstractmethod
    def pull(self) -> bool:
        """Bring the checkout to the remote head.

        When the remote has no history, local commits and files are
        discarded so the checkout is empty.

        Returns:
            False if the remote has no history yet.
        """

    @abstractmethod
    def read(self, name: str) -> str | None:
        """Read a file from the checkout (None if absent)."""

    @abstractmethod
    def write(self, files: dict[str, str]) -> None:
        """Write files into the checkout."""

    @abstractmethod
    def commit(self, message: str, names: list[str]) -> bool:
        """Commit the named files.

        Returns:
            False if there was nothing to commit.
        """

    @abstractmethod
    def push(self) -> None:
        """Publish local commits.

        Raises:
            WriteConflictError: If a concurrent writer pushed first.
            TransportError: On any other failure.
        """

    @abstractmethod
    def reset_to_remote(self) -> None:
        """Discard local commits and return to the remote head."""


class RepositoryTransport(SyncTransport):
    """Sync through a shared versioned repository."""

    kind = "repository"

    def __init__(
        self,
        store: RepositoryStore,
        policy: TransportPolicy | None = None,
        clock: Clock = utc_now,
        enabled: bool = True,
        max_push_attempts: int = MAX_PUSH_ATTEMPTS,
    ):
        super().__init__(policy or repository_policy(), clock=clock, enabled=enabled)
        self.store = store
        self.max_push_attempts = max_push_attempts

    def _read_remote(self) -> tuple[AggregateDocument, RepositoryMetadata]:
        """Load the aggregate files from the checkout.

        Raises:
            MalformedDocumentError: If any file is unreadable.
        """
        raw_metadata = self.store.read(METADATA_FILE)
        try:
            metadata = (
                RepositoryMetadata.model_validate_json(raw_metadata)
                if raw_metadata
                else RepositoryMetadata()
            )
        except ValidationError as e:
            raise MalformedDocumentError(f"Invalid {METADATA_FILE}: {e}") from e

        families = {}
        for name, filename in (("tactics", TACTICS_FILE), ("behaviors", BEHAVIORS_FILE)):
            text = self.store.read(filename)
            families[name] = loads_family(text) if text else []

        try:
            document = AggregateDocument.from_entries(
                tactics=families["tactics"],
                behaviors=families["behaviors"],
                produced_at=as_utc(metadata.last_update),
            )
        except ValueError as e:
            raise MalformedDocumentError(str(e)) from e
        return document, metadata

    def _sync_checkout(self) -> bool:
        self.store.ensure_checkout()
        return self.store.pull()

    def _send(self, document: AggregateDocument) -> UploadResult:
        for attempt in range(1, self.max_push_attempts + 1):
            fetched = self._sync_checkout()
            remote, metadata = self._read_remote()

            # Only remote history can prove a document was applied
            if fetched and document.document_id and document.document_id in metadata.applied_documents:
                logger.info(f"Document {document.document_id} already applied at revision {metadata.revision}")
                return UploadResult(status="sent", round_number=metadata.revision, snapshot=remote)

            now = self.clock()
            merged = merge_documents(remote, document, produced_at=now)
            applied = metadata.applied_documents
            if document.document_id:
                applied = (applied + [document.document_id])[-APPLIED_HISTORY_LIMIT:]
            new_metadata = RepositoryMetadata(
                revision=metadata.revision + 1,
                last_update=now,
                data_points=merged.outcome_count,
                tactics_count=len(merged.tactics),
                behaviors_count=len(merged.behaviors),
                applied_documents=applied,
            )

            self.store.write(
                {
                    TACTICS_FILE: dumps_family(merged, "tactics"),
                    BEHAVIORS_FILE: dumps_family(merged, "behaviors"),
                    METADATA_FILE: new_metadata.model_dump_json(indent=2) + "\n",
                }
            )
            self.store.commit(
                f"Federated update: {document.outcome_count} data points", AGGREGATE_FILES
            )

            try:
                self.store.push()
            except WriteConflictError as e:
                logger.info(
                    f"Push rejected by concurrent writer (attempt {attempt}/"
                    f"{self.max_push_attempts}), retrying full cycle: {e}"
                )
                self.store.reset_to_remote()
                continue

            return UploadResult(status="sent", round_number=new_metadata.revision, snapshot=merged)

        raise WriteConflictError(
            f"Push still conflicting after {self.max_push_attempts} full cycles"
        )

    def _fetch(self) -> DownloadResult:
        self._sync_checkout()
        document, metadata = self._read_remote()

        if metadata.revision == 0 and document.is_empty:
            return DownloadResult(status="unavailable", detail="shared repository is empty")

        logger.info(
            f"Pulled federated data at revision {metadata.revision} - "
            f"{len(document.tactics)} tactics, {len(document.behaviors)} behaviors"
        )
        return DownloadResult(
            status="available",
            document=document,
            round_number=metadata.revision,
            produced_at=as_utc(metadata.last_update),
        )


__all__ = [
    "AGGREGATE_FILES",
    "BEHAVIORS_FILE",
    "METADATA_FILE",
    "TACTICS_FILE",
    "RepositoryStore",
    "RepositoryTransport",
    "repository_policy",
]
