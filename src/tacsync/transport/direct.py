"""Direct transport: upload to and download from a round coordinator over HTTP.

POST /api/contributions  - contribute a delta, get the accepting round back
GET  /api/snapshot       - latest finalized global snapshot, or "unavailable"
GET  /health             - liveness (ping)
"""

from __future__ import annotations

import logging
import uuid
from datetime import timedelta

import httpx
from pydantic import ValidationError

from tacsync.core.clock import Clock, as_utc, utc_now
from tacsync.core.codec import (
    MalformedDocumentError,
    document_from_payload,
    document_to_payload,
)
from tacsync.models.domain import AggregateDocument
from tacsync.models.types import ContributionRequest, ContributionResponse, SnapshotResponse
from tacsync.transport.base import (
    DEFAULT_MIN_CONTRIBUTIONS,
    DownloadResult,
    SyncTransport,
    TransportError,
    TransportPolicy,
    UploadResult,
)

logger = logging.getLogger(__name__)

DIRECT_UPLOAD_INTERVAL = timedelta(minutes=3)
DIRECT_DOWNLOAD_INTERVAL = timedelta(minutes=1)

CONNECT_TIMEOUT = 10.0
READ_TIMEOUT = 30.0

CONTRIBUTIONS_PATH = "/api/contributions"
SNAPSHOT_PATH = "/api/snapshot"
HEALTH_PATH = "/health"


def direct_policy(
    min_contributions: int = DEFAULT_MIN_CONTRIBUTIONS,
    timeout: float = READ_TIMEOUT,
) -> TransportPolicy:
    """Default rate limits for the direct transport."""
    return TransportPolicy(
        upload_interval=DIRECT_UPLOAD_INTERVAL,
        download_interval=DIRECT_DOWNLOAD_INTERVAL,
        min_contributions=min_contributions,
        timeout=timeout,
    )


class DirectTransport(SyncTransport):
    """Sync against a coordinator's HTTP API.

    The contributor token is random per process and carries no identity;
    the coordinator only uses it to count distinct contributors per round.
    """

    kind = "direct"

    def __init__(
        self,
        endpoint: str | None = None,
        policy: TransportPolicy | None = None,
        clock: Clock = utc_now,
        enabled: bool = True,
        client: httpx.Client | None = None,
        contributor_token: str | None = None,
    ):
        """Initialize transport.

        Args:
            endpoint: Coordinator base URL. Ignored when client is given.
            policy: Rate limits; defaults to direct_policy().
            clock: Time source.
            enabled: Master enable flag.
            client: Preconfigured HTTP client (tests pass a TestClient).
            contributor_token: Opaque token; generated if omitted.
        """
        policy = policy or direct_policy()
        super().__init__(policy, clock=clock, enabled=enabled)

        if client is None:
            if not endpoint:
                raise ValueError("endpoint is required for the direct transport")
            client = httpx.Client(
                base_url=endpoint,
                timeout=httpx.Timeout(policy.timeout, connect=CONNECT_TIMEOUT),
            )
            self._owns_client = True
        else:
            self._owns_client = False

        self.client = client
        self.contributor_token = contributor_token or uuid.uuid4().hex

    def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        """Issue a request, mapping every failure to TransportError."""
        try:
            response = self.client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise TransportError(f"{method} {path}: {e}") from e

        if not response.is_success:
            raise TransportError(f"{method} {path} returned HTTP {response.status_code}: {response.text[:200]}")
        return response

    def _send(self, document: AggregateDocument) -> UploadResult:
        body = ContributionRequest(
            contributor_token=self.contributor_token,
            document=document_to_payload(document),
        )
        response = self._request("POST", CONTRIBUTIONS_PATH, content=body.model_dump_json(),
                                 headers={"Content-Type": "application/json"})

        try:
            receipt = ContributionResponse.model_validate_json(response.content)
        except ValidationError as e:
            raise TransportError(f"Invalid contribution response: {e}") from e

        if not receipt.accepted:
            raise TransportError(f"Contribution rejected by round {receipt.round_number}")

        if receipt.duplicate:
            logger.debug(f"Coordinator already had document {document.document_id}")
        return UploadResult(status="sent", round_number=receipt.round_number)

    def _fetch(self) -> DownloadResult:
        response = self._request("GET", SNAPSHOT_PATH)

        try:
            body = SnapshotResponse.model_validate_json(response.content)
        except ValidationError as e:
            raise MalformedDocumentError(f"Invalid snapshot response: {e}") from e

        if body.status == "unavailable" or body.document is None or body.round_number is None:
            return DownloadResult(status="unavailable", detail="no finalized round yet")

        document = document_from_payload(body.document)
        logger.info(
            f"Downloaded round {body.round_number} snapshot - "
            f"{len(document.tactics)} tactics from {body.contributor_count} contributors"
        )
        return DownloadResult(
            status="available",
            document=document,
            round_number=body.round_number,
            contributor_count=body.contributor_count,
            produced_at=as_utc(body.finalized_at),
        )

    def ping(self) -> bool:
        """Check that the coordinator answers its health endpoint."""
        try:
            self._request("GET", HEALTH_PATH)
        except TransportError as e:
            logger.warning(f"Coordinator health check failed: {e}")
            return False
        return True

    def close(self) -> None:
        if self._owns_client:
            self.client.close()
