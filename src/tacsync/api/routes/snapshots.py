"""Snapshot API endpoints.

GET /api/snapshot             - Latest finalized global snapshot
GET /api/rounds/{round_number} - Snapshot of any finalized round
GET /api/stats                - Global statistics
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from tacsync.api.app import get_coordinator
from tacsync.coordinator.rounds import RoundCoordinator, snapshot_from_round
from tacsync.core.codec import document_to_payload
from tacsync.models.domain import FinalizedSnapshot
from tacsync.models.types import CoordinatorStats, SnapshotResponse

router = APIRouter()


def _snapshot_response(snapshot: FinalizedSnapshot) -> SnapshotResponse:
    return SnapshotResponse(
        status="available",
        round_number=snapshot.round_number,
        contributor_count=snapshot.contributor_count,
        finalized_at=snapshot.finalized_at,
        document=document_to_payload(snapshot.document),
    )


@router.get("/snapshot", response_model=SnapshotResponse)
def get_snapshot(
    coordinator: RoundCoordinator = Depends(get_coordinator),
) -> SnapshotResponse:
    """Get the most recently finalized snapshot.

    Returns status "unavailable" (not an error) before the first round
    finalizes.
    """
    snapshot = coordinator.snapshot()
    if snapshot is None:
        return SnapshotResponse(status="unavailable")
    return _snapshot_response(snapshot)


@router.get("/rounds/{round_number}", response_model=SnapshotResponse)
def get_round_snapshot(
    round_number: int,
    coordinator: RoundCoordinator = Depends(get_coordinator),
) -> SnapshotResponse:
    """Get the snapshot published by a finalized round.

    Raises:
        HTTPException: 404 if the round does not exist or is still open.
    """
    round_entity = coordinator.get_round(round_number)
    if round_entity is None or round_entity.status != "finalized":
        raise HTTPException(status_code=404, detail=f"Finalized round not found: {round_number}")
    return _snapshot_response(snapshot_from_round(round_entity))


@router.get("/stats", response_model=CoordinatorStats)
def get_stats(
    coordinator: RoundCoordinator = Depends(get_coordinator),
) -> CoordinatorStats:
    """Get global aggregation statistics."""
    return coordinator.stats()
