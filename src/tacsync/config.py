"""Startup configuration.

Read once from the environment; the core treats the result as constants.

Contributor side (SyncConfig):
    TACSYNC_ENABLED            true|false (default true)
    TACSYNC_TRANSPORT          repository|direct (default direct)
    TACSYNC_ENDPOINT           coordinator base URL (direct)
    TACSYNC_REPOSITORY_URL     shared repository (repository)
    TACSYNC_CHECKOUT_DIR       local checkout (default data/federated)
    TACSYNC_BRANCH             repository branch (default main)
    TACSYNC_SYNC_INTERVAL      seconds between sync attempts (default 60)
    TACSYNC_MIN_CONTRIBUTIONS  outcomes required before an upload (default 10)
    TACSYNC_TIMEOUT            per-request timeout in seconds

Coordinator side (CoordinatorConfig):
    TACSYNC_DB_PATH                (default data/tacsync.db)
    TACSYNC_CONTRIBUTOR_THRESHOLD  (default 10)
    TACSYNC_ROUND_DEADLINE         seconds (default 600)
    TACSYNC_TICK_INTERVAL          seconds (default 5)
    TACSYNC_FLIGHT_LOG_DIR         optional directory for round reports
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Literal, Mapping

from tacsync.transport.base import DEFAULT_MIN_CONTRIBUTIONS

TransportKind = Literal["repository", "direct"]

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def _get_bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    value = raw.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ValueError(f"{name} must be a boolean, got {raw!r}")


def _get_number(env: Mapping[str, str], name: str, default: float, minimum: float) -> float:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be a number, got {raw!r}") from e
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got {value}")
    return value


@dataclass(frozen=True)
class SyncConfig:
    """Contributor sync settings."""

    enabled: bool = True
    transport: TransportKind = "direct"
    endpoint: str | None = None
    repository_url: str | None = None
    checkout_dir: Path = Path("data/federated")
    branch: str = "main"
    sync_interval: timedelta = timedelta(seconds=60)
    min_contributions: int = DEFAULT_MIN_CONTRIBUTIONS
    timeout: float | None = None

    def __post_init__(self) -> None:
        if self.transport not in ("repository", "direct"):
            raise ValueError(f"Unknown transport: {self.transport}")
        if not self.enabled:
            return
        if self.transport == "direct" and not self.endpoint:
            raise ValueError("TACSYNC_ENDPOINT is required for the direct transport")
        if self.transport == "repository" and not self.repository_url:
            raise ValueError("TACSYNC_REPOSITORY_URL is required for the repository transport")

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> SyncConfig:
        """Load settings from environment variables.

        Raises:
            ValueError: If a variable is present but invalid.
        """
        env = os.environ if env is None else env
        timeout = env.get("TACSYNC_TIMEOUT")
        return cls(
            enabled=_get_bool(env, "TACSYNC_ENABLED", True),
            transport=env.get("TACSYNC_TRANSPORT", "direct").strip().lower(),
            endpoint=env.get("TACSYNC_ENDPOINT") or None,
            repository_url=env.get("TACSYNC_REPOSITORY_URL") or None,
            checkout_dir=Path(env.get("TACSYNC_CHECKOUT_DIR", "data/federated")),
            branch=env.get("TACSYNC_BRANCH", "main"),
            sync_interval=timedelta(seconds=_get_number(env, "TACSYNC_SYNC_INTERVAL", 60, 1)),
            min_contributions=int(
                _get_number(env, "TACSYNC_MIN_CONTRIBUTIONS", DEFAULT_MIN_CONTRIBUTIONS, 0)
            ),
            timeout=_get_number(env, "TACSYNC_TIMEOUT", 0, 0.001) if timeout else None,
        )


@dataclass(frozen=True)
class CoordinatorConfig:
    """Round coordinator settings."""

    db_path: Path = Path("data/tacsync.db")
    contributor_threshold: int = 10
    round_deadline: timedelta = timedelta(minutes=10)
    tick_interval: timedelta = timedelta(seconds=5)
    flight_log_dir: Path | None = None

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> CoordinatorConfig:
        """Load settings from environment variables.

        Raises:
            ValueError: If a variable is present but invalid.
        """
        env = os.environ if env is None else env
        flight_dir = env.get("TACSYNC_FLIGHT_LOG_DIR")
        return cls(
            db_path=Path(env.get("TACSYNC_DB_PATH", "data/tacsync.db")),
            contributor_threshold=int(_get_number(env, "TACSYNC_CONTRIBUTOR_THRESHOLD", 10, 1)),
            round_deadline=timedelta(seconds=_get_number(env, "TACSYNC_ROUND_DEADLINE", 600, 1)),
            tick_interval=timedelta(seconds=_get_number(env, "TACSYNC_TICK_INTERVAL", 5, 0.1)),
            flight_log_dir=Path(flight_dir) if flight_dir else None,
        )
