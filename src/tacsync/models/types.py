"""Pydantic models for the tacsync wire formats.

Shared by the coordinator API, the direct transport and the repository
file contract. Changes here change the wire contract for every contributor.
"""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field, model_validator

# Tolerance when checking a reported success_rate against its counts
RATE_TOLERANCE = 1e-6


class EntryPayload(BaseModel):
    """One statistic bucket on the wire."""

    tactic_id: str = Field(min_length=1)
    category: str
    total_attempts: int = Field(ge=0)
    successful_attempts: int = Field(ge=0)
    success_rate: float | None = None

    @model_validator(mode="after")
    def _check_counts(self) -> "EntryPayload":
        if self.successful_attempts > self.total_attempts:
            raise ValueError("successful_attempts exceeds total_attempts")
        if self.success_rate is not None and self.total_attempts > 0:
            expected = self.successful_attempts / self.total_attempts
            if abs(expected - self.success_rate) > RATE_TOLERANCE:
                raise ValueError(
                    f"success_rate={self.success_rate} inconsistent with counts ({expected})"
                )
        return self


class AggregateDocumentPayload(BaseModel):
    """Serialized AggregateDocument."""

    tactics: list[EntryPayload] = Field(default_factory=list)
    behaviors: list[EntryPayload] = Field(default_factory=list)
    produced_at: datetime | None = None
    contributor_count: int = Field(default=0, ge=0)
    document_id: str | None = Field(default=None, max_length=64)


class ContributionRequest(BaseModel):
    """Upload body for POST /api/contributions."""

    contributor_token: str = Field(min_length=1, max_length=128)
    document: AggregateDocumentPayload


class ContributionResponse(BaseModel):
    """Upload response: acceptance plus the round it landed in."""

    accepted: bool
    round_number: int
    duplicate: bool = False


class SnapshotResponse(BaseModel):
    """Download response for GET /api/snapshot and GET /api/rounds/{n}."""

    status: Literal["available", "unavailable"]
    round_number: int | None = None
    contributor_count: int | None = None
    finalized_at: datetime | None = None
    document: AggregateDocumentPayload | None = None


class CoordinatorStats(BaseModel):
    """Global statistics for GET /api/stats."""

    current_round: int
    contributors_in_round: int
    contributions_in_round: int
    last_finalized_round: int | None
    tactics_count: int
    behaviors_count: int
    total_attempts: int


class RepositoryMetadata(BaseModel):
    """metadata.json in the shared repository."""

    revision: int = Field(default=0, ge=0)
    last_update: datetime | None = None
    data_points: int = Field(default=0, ge=0)
    tactics_count: int = Field(default=0, ge=0)
    behaviors_count: int = Field(default=0, ge=0)
    applied_documents: list[str] = Field(default_factory=list)
