"""Sync transports between a contributor and the shared aggregate.

- base:       shared gating, backoff and result types
- repository: pull-merge-push against a shared versioned store
- git:        git CLI implementation of that store
- direct:     HTTP client for the round coordinator
"""

from tacsync.transport.base import (
    DownloadResult,
    SyncTransport,
    TransportError,
    TransportPolicy,
    UploadResult,
    WriteConflictError,
)

__all__ = [
    "DownloadResult",
    "SyncTransport",
    "TransportError",
    "TransportPolicy",
    "UploadResult",
    "WriteConflictError",
]
