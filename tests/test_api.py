"""Tests for the coordinator HTTP API."""

from fastapi.testclient import TestClient

from tacsync.api.app import create_app
from tacsync.config import CoordinatorConfig


def _entry(tactic_id="x", total=1, successes=1):
    return {
        "tactic_id": tactic_id,
        "category": "combat",
        "total_attempts": total,
        "successful_attempts": successes,
    }


def _contribution(token, entries, document_id=None):
    return {
        "contributor_token": token,
        "document": {"tactics": entries, "behaviors": [], "document_id": document_id},
    }


def create_test_client(coordinator) -> TestClient:
    """Create app around an injected coordinator."""
    return TestClient(create_app(coordinator=coordinator))


class TestHealth:
    """Test health endpoint."""

    def test_health(self, coordinator):
        """GET /health returns ok."""
        client = create_test_client(coordinator)
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}


class TestContributions:
    """Test POST /api/contributions."""

    def test_contribution_accepted(self, coordinator):
        """A valid contribution lands in round 1."""
        client = create_test_client(coordinator)

        response = client.post("/api/contributions", json=_contribution("a", [_entry(total=10, successes=9)]))

        assert response.status_code == 200
        assert response.json() == {"accepted": True, "round_number": 1, "duplicate": False}

    def test_duplicate_flagged(self, coordinator):
        """Redelivering the same document_id is acknowledged as duplicate."""
        client = create_test_client(coordinator)
        body = _contribution("a", [_entry()], document_id="doc-1")

        client.post("/api/contributions", json=body)
        response = client.post("/api/contributions", json=body)

        assert response.status_code == 200
        assert response.json()["duplicate"] is True

    def test_invalid_counts_rejected(self, coordinator):
        """successful_attempts > total_attempts is a 422."""
        client = create_test_client(coordinator)
        response = client.post("/api/contributions", json=_contribution("a", [_entry(total=1, successes=2)]))
        assert response.status_code == 422

    def test_duplicate_keys_rejected(self, coordinator):
        """Two entries for one key are a 422."""
        client = create_test_client(coordinator)
        response = client.post("/api/contributions", json=_contribution("a", [_entry(), _entry()]))
        assert response.status_code == 422

    def test_empty_document_conflict(self, coordinator):
        """An empty contribution cannot be accepted."""
        client = create_test_client(coordinator)
        response = client.post("/api/contributions", json=_contribution("a", []))
        assert response.status_code == 409

    def test_missing_token_rejected(self, coordinator):
        """The contributor token is required."""
        client = create_test_client(coordinator)
        response = client.post("/api/contributions", json={"document": {"tactics": [_entry()]}})
        assert response.status_code == 422


class TestSnapshots:
    """Test snapshot, round history and stats endpoints."""

    def test_unavailable_before_first_round(self, coordinator):
        """GET /api/snapshot is explicit about having nothing yet."""
        client = create_test_client(coordinator)
        response = client.get("/api/snapshot")
        assert response.status_code == 200
        assert response.json()["status"] == "unavailable"
        assert response.json()["document"] is None

    def test_snapshot_after_threshold(self, coordinator):
        """Three contributors finalize round 1 and publish it."""
        client = create_test_client(coordinator)
        for token in ("a", "b", "c"):
            client.post("/api/contributions", json=_contribution(token, [_entry(total=2, successes=1)]))

        data = client.get("/api/snapshot").json()

        assert data["status"] == "available"
        assert data["round_number"] == 1
        assert data["contributor_count"] == 3
        assert data["document"]["tactics"][0]["total_attempts"] == 6
        assert data["document"]["tactics"][0]["success_rate"] == 0.5

    def test_round_history(self, coordinator):
        """Finalized rounds stay readable; open rounds are 404."""
        client = create_test_client(coordinator)
        for token in ("a", "b", "c"):
            client.post("/api/contributions", json=_contribution(token, [_entry()]))

        assert client.get("/api/rounds/1").json()["round_number"] == 1
        assert client.get("/api/rounds/2").status_code == 404
        assert client.get("/api/rounds/99").status_code == 404

    def test_stats(self, coordinator):
        """GET /api/stats reports the open round and published totals."""
        client = create_test_client(coordinator)
        client.post("/api/contributions", json=_contribution("a", [_entry(total=4, successes=2)]))

        data = client.get("/api/stats").json()

        assert data["current_round"] == 1
        assert data["contributors_in_round"] == 1
        assert data["last_finalized_round"] is None


class TestLifespan:
    """Test coordinator construction from configuration."""

    def test_app_builds_coordinator_from_config(self, tmp_path):
        """Without an injected coordinator, startup builds a persistent one."""
        config = CoordinatorConfig(db_path=tmp_path / "coordinator.db", contributor_threshold=1)
        app = create_app(config=config)

        with TestClient(app) as client:
            response = client.post("/api/contributions", json=_contribution("a", [_entry()]))
            assert response.status_code == 200
            assert client.get("/api/snapshot").json()["round_number"] == 1

        assert (tmp_path / "coordinator.db").exists()

    def test_no_coordinator_is_503(self):
        """Requests before startup has built a coordinator get 503."""
        client = TestClient(create_app(config=CoordinatorConfig()))
        assert client.get("/api/snapshot").status_code == 503
