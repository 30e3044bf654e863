#!/usr/bin/env python3
"""Smoke test for a federation round.

Runs an in-process coordinator and three direct-transport contributors,
then checks that one round finalizes with every contributor's outcomes
counted exactly once.

Usage:
    python scripts/smoke_federation.py

Exit codes:
    0: All checks passed
    1: Some checks failed
"""

from __future__ import annotations

import logging
import sys
from datetime import timedelta
from pathlib import Path

# Add src to path for imports
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT / "src"))

from fastapi.testclient import TestClient  # noqa: E402

from tacsync.api.app import create_app  # noqa: E402
from tacsync.contributor.sync import Contributor  # noqa: E402
from tacsync.coordinator.rounds import RoundCoordinator  # noqa: E402
from tacsync.core.clock import ManualClock  # noqa: E402
from tacsync.db.session import create_memory_engine, session_factory  # noqa: E402
from tacsync.transport.base import TransportPolicy  # noqa: E402
from tacsync.transport.direct import DirectTransport  # noqa: E402

# (successes, failures) per contributor for tactic "x"
OUTCOMES = [(9, 1), (1, 0), (3, 3)]
POLICY = TransportPolicy(
    upload_interval=timedelta(minutes=3),
    download_interval=timedelta(minutes=1),
    min_contributions=1,
)


def build_federation(clock: ManualClock) -> tuple[RoundCoordinator, list[Contributor]]:
    """Coordinator with threshold len(OUTCOMES) plus one contributor per entry."""
    coordinator = RoundCoordinator(
        session_factory(create_memory_engine()),
        contributor_threshold=len(OUTCOMES),
        clock=clock,
    )
    client = TestClient(create_app(coordinator=coordinator))
    contributors = [
        Contributor(DirectTransport(policy=POLICY, clock=clock, client=client))
        for _ in OUTCOMES
    ]
    return coordinator, contributors


def check_round_finalized(coordinator: RoundCoordinator) -> bool:
    """Check that the threshold finalized round 1."""
    snapshot = coordinator.snapshot()
    if snapshot is None:
        print("FAIL: No finalized snapshot")
        return False
    print(f"OK: Round {snapshot.round_number} finalized with {snapshot.contributor_count} contributors")
    return snapshot.round_number == 1 and snapshot.contributor_count == len(OUTCOMES)


def check_counts(contributors: list[Contributor]) -> bool:
    """Check every contributor sees the exact global totals."""
    expected_total = sum(s + f for s, f in OUTCOMES)
    expected_rate = sum(s for s, _ in OUTCOMES) / expected_total

    all_ok = True
    for i, contributor in enumerate(contributors):
        entry = contributor.recorder.entry("x", "combat")
        if entry is None or entry.total_attempts != expected_total:
            print(f"    FAIL: contributor {i} sees {entry}")
            all_ok = False
        elif abs(entry.success_rate - expected_rate) > 1e-9:
            print(f"    FAIL: contributor {i} rate {entry.success_rate:.4f} != {expected_rate:.4f}")
            all_ok = False
        else:
            print(f"    OK: contributor {i} - {entry.total_attempts} attempts, rate {entry.success_rate:.3f}")
    return all_ok


def main() -> int:
    """Main entry point."""
    logging.basicConfig(level=logging.WARNING)
    print("=" * 60)
    print("tacsync Federation Smoke Test")
    print("=" * 60)

    checks_passed = 0
    checks_failed = 0

    clock = ManualClock()
    coordinator, contributors = build_federation(clock)

    for contributor, (successes, failures) in zip(contributors, OUTCOMES):
        for _ in range(successes):
            contributor.record_outcome("x", "combat", True)
        for _ in range(failures):
            contributor.record_outcome("x", "combat", False)

    # Check 1: Uploads
    print("\n[1/3] Uploading...")
    results = [contributor.push() for contributor in contributors]
    if all(r.status == "sent" for r in results):
        print(f"OK: {len(results)} uploads sent")
        checks_passed += 1
    else:
        print(f"FAIL: upload statuses {[r.status for r in results]}")
        checks_failed += 1

    # Check 2: Round finalized by threshold
    print("\n[2/3] Checking round...")
    if check_round_finalized(coordinator):
        checks_passed += 1
    else:
        checks_failed += 1

    # Check 3: Everyone converges on the same totals
    print("\n[3/3] Downloading and checking counts...")
    for contributor in contributors:
        contributor.pull()
    if check_counts(contributors):
        checks_passed += 1
    else:
        checks_failed += 1

    # Summary
    print("\n" + "=" * 60)
    if checks_failed == 0:
        print(f"RESULT: ALL PASSED ({checks_passed} checks)")
        print("=" * 60)
        return 0
    print(f"RESULT: {checks_passed} passed, {checks_failed} failed")
    print("=" * 60)
    return 1


if __name__ == "__main__":
    sys.exit(main())
