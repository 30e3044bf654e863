"""Flight recorder: append-only record of finalized rounds.

The coordinator reports {round_number, contributor_count, timestamp} after
each finalize. Reporting is best-effort; the coordinator never reads the
records back and a failing recorder never blocks finalization.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from pydantic import BaseModel

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RoundReport:
    """What a flight recorder learns about one finalized round."""

    round_number: int
    contributor_count: int
    timestamp: datetime


class RoundReportRecord(BaseModel):
    """On-disk form of a RoundReport."""

    round_number: int
    contributor_count: int
    timestamp: datetime


class FlightRecorder(ABC):
    """Sink for round reports."""

    @abstractmethod
    def record_round(self, report: RoundReport) -> None:
        """Persist one report. May raise; callers use report_round()."""


class JsonFlightRecorder(FlightRecorder):
    """Writes one JSON file per finalized round.

    Layout:
        {directory}/rounds/round-000001.json
    """

    def __init__(self, directory: Path):
        self.directory = Path(directory)

    def path_for(self, round_number: int) -> Path:
        return self.directory / "rounds" / f"round-{round_number:06d}.json"

    def record_round(self, report: RoundReport) -> None:
        path = self.path_for(report.round_number)
        path.parent.mkdir(parents=True, exist_ok=True)
        record = RoundReportRecord(
            round_number=report.round_number,
            contributor_count=report.contributor_count,
            timestamp=report.timestamp,
        )
        path.write_text(record.model_dump_json(indent=2) + "\n", encoding="utf-8")


def report_round(recorder: FlightRecorder | None, report: RoundReport) -> bool:
    """Hand a report to the recorder, logging and swallowing failures.

    Returns:
        True if the recorder accepted the report.
    """
    if recorder is None:
        return False
    try:
        recorder.record_round(report)
    except Exception:
        logger.exception(f"Flight recorder failed for round {report.round_number}")
        return False
    return True
