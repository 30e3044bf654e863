"""Contributions API endpoint.

POST /api/contributions - Merge a contributor's delta into the open round
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from tacsync.api.app import get_coordinator
from tacsync.coordinator.rounds import RoundCoordinator
from tacsync.core.codec import MalformedDocumentError, document_from_payload
from tacsync.models.types import ContributionRequest, ContributionResponse

router = APIRouter()


@router.post("/contributions", response_model=ContributionResponse)
def submit_contribution(
    request: ContributionRequest,
    coordinator: RoundCoordinator = Depends(get_coordinator),
) -> ContributionResponse:
    """Submit a contribution.

    Args:
        request: Contributor token and aggregate document.
        coordinator: Round coordinator (injected).

    Returns:
        ContributionResponse with the round the document landed in.

    Raises:
        HTTPException: 422 if the document breaks an invariant,
            409 if the contribution cannot be accepted.
    """
    try:
        document = document_from_payload(request.document)
    except MalformedDocumentError as e:
        raise HTTPException(status_code=422, detail=str(e))

    receipt = coordinator.contribute(request.contributor_token, document)
    if not receipt.accepted:
        raise HTTPException(
            status_code=409,
            detail=f"Contribution not accepted by round {receipt.round_number}",
        )

    return ContributionResponse(
        accepted=True,
        round_number=receipt.round_number,
        duplicate=receipt.duplicate,
    )
