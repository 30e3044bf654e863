"""Tests for the repository transport.

Tests validate:
1. Pull -> merge -> push writes all three files together
2. A push that loses a race redoes the whole cycle without losing data
3. Redelivered documents are not applied twice
4. Malformed remote files never corrupt the shared aggregate
"""

import json
import subprocess
from datetime import timedelta

import pytest

from tacsync.transport.base import TransportError, TransportPolicy, WriteConflictError
from tacsync.transport.git import GitRepositoryStore, check_git_available
from tacsync.transport.repository import (
    BEHAVIORS_FILE,
    METADATA_FILE,
    TACTICS_FILE,
    RepositoryStore,
    RepositoryTransport,
)
from tacsync.models.domain import TacticKey

KEY = TacticKey("flank", "combat")

POLICY = TransportPolicy(
    upload_interval=timedelta(minutes=5),
    download_interval=timedelta(minutes=2),
    min_contributions=1,
)


class SharedRemote:
    """In-memory remote with optimistic concurrency on a version number."""

    def __init__(self):
        self.files: dict[str, str] = {}
        self.version = 0
        self.pushes = 0


class MemoryStore(RepositoryStore):
    """Checkout of a SharedRemote.

    before_push runs once before the next push, to simulate a concurrent
    writer. fail_after_push makes the next successful push report an error.
    """

    def __init__(self, remote: SharedRemote):
        self.remote = remote
        self.files: dict[str, str] = {}
        self.base_version = 0
        self.committed = False
        self.before_push = None
        self.fail_after_push = False
        self.checkouts = 0

    def ensure_checkout(self):
        if self.checkouts:
            return False
        self.checkouts += 1
        return True

    def pull(self):
        self.files = dict(self.remote.files)
        self.base_version = self.remote.version
        self.committed = False
        return self.remote.version > 0

    def read(self, name):
        return self.files.get(name)

    def write(self, files):
        self.files.update(files)

    def commit(self, message, names):
        self.committed = True
        return True

    def push(self):
        hook, self.before_push = self.before_push, None
        if hook is not None:
            hook()
        if self.remote.version != self.base_version:
            raise WriteConflictError("rejected (fetch first)")
        self.remote.files = dict(self.files)
        self.remote.version += 1
        self.remote.pushes += 1
        self.base_version = self.remote.version
        if self.fail_after_push:
            self.fail_after_push = False
            raise TransportError("connection reset after push")

    def reset_to_remote(self):
        self.pull()


def _transport(remote, clock):
    return RepositoryTransport(MemoryStore(remote), policy=POLICY, clock=clock)


def _tactics(remote):
    return {(e["tactic_id"], e["category"]): e for e in json.loads(remote.files[TACTICS_FILE])}


class TestRepositoryUpload:
    """Test RepositoryTransport.upload()."""

    def test_first_push_creates_all_files(self, clock, make_document):
        """tactics, behaviors and metadata are written together."""
        remote = SharedRemote()
        transport = _transport(remote, clock)
        document = make_document(
            tactics=[("flank", "combat", 10, 9)],
            behaviors=[("kite", "zombie", 2, 1)],
            document_id="doc-1",
        )

        result = transport.upload(document)

        assert result.status == "sent"
        assert result.round_number == 1
        assert set(remote.files) == {TACTICS_FILE, BEHAVIORS_FILE, METADATA_FILE}
        metadata = json.loads(remote.files[METADATA_FILE])
        assert metadata["revision"] == 1
        assert metadata["data_points"] == 12
        assert metadata["applied_documents"] == ["doc-1"]

    def test_pushes_accumulate(self, clock, make_document):
        """Two contributors' pushes are merged, not overwritten."""
        remote = SharedRemote()
        a = _transport(remote, clock)
        b = _transport(remote, clock)

        a.upload(make_document(tactics=[("flank", "combat", 10, 9)], document_id="a-1"))
        b.upload(make_document(tactics=[("flank", "combat", 1, 1)], document_id="b-1"))

        entry = _tactics(remote)[("flank", "combat")]
        assert entry["total_attempts"] == 11
        assert entry["successful_attempts"] == 10

    def test_conflict_retries_full_cycle(self, clock, make_document):
        """A push rejected by a concurrent writer re-pulls and merges both."""
        remote = SharedRemote()
        a = _transport(remote, clock)
        b = _transport(remote, clock)
        a.store.before_push = lambda: b.upload(
            make_document(tactics=[("flank", "combat", 5, 5)], document_id="b-1")
        )

        result = a.upload(make_document(tactics=[("flank", "combat", 10, 0)], document_id="a-1"))

        assert result.status == "sent"
        assert result.round_number == 2
        assert remote.pushes == 2
        entry = _tactics(remote)[("flank", "combat")]
        assert entry["total_attempts"] == 15
        assert entry["successful_attempts"] == 5

    def test_retry_after_ambiguous_failure_not_applied_twice(self, clock, make_document):
        """The same document retried after a reported failure is deduplicated."""
        remote = SharedRemote()
        transport = _transport(remote, clock)
        document = make_document(tactics=[("flank", "combat", 10, 9)], document_id="a-1")
        transport.store.fail_after_push = True

        assert transport.upload(document).status == "failed"
        assert transport.state.consecutive_failures == 1

        clock.advance(minutes=5)
        retry = transport.upload(document)

        assert retry.status == "sent"
        assert remote.pushes == 1
        assert _tactics(remote)[("flank", "combat")]["total_attempts"] == 10
        assert retry.snapshot.tactics[KEY].total_attempts == 10

    def test_unpushed_local_metadata_is_not_a_duplicate(self, clock, make_document):
        """A document id seen only in unpushed local files is still sent."""
        remote = SharedRemote()

        class StaleCheckout(MemoryStore):
            def pull(self):
                # Keeps local files when the remote is empty
                self.base_version = self.remote.version
                return self.remote.version > 0

        store = StaleCheckout(remote)
        store.files = {
            METADATA_FILE: json.dumps({"revision": 1, "applied_documents": ["a-1"]}),
        }
        transport = RepositoryTransport(store, policy=POLICY, clock=clock)

        result = transport.upload(
            make_document(tactics=[("flank", "combat", 10, 9)], document_id="a-1")
        )

        assert result.status == "sent"
        assert remote.pushes == 1

    def test_persistent_conflict_is_a_failure(self, clock, make_document):
        """When every cycle loses the race the upload fails and backs off."""
        remote = SharedRemote()
        transport = RepositoryTransport(
            MemoryStore(remote), policy=POLICY, clock=clock, max_push_attempts=2
        )

        class AlwaysLoses(MemoryStore):
            def push(self):
                self.remote.version += 1
                raise WriteConflictError("rejected")

        transport.store = AlwaysLoses(remote)
        result = transport.upload(make_document(tactics=[("flank", "combat", 3, 3)]))

        assert result.status == "failed"
        assert transport.state.consecutive_failures == 1

    def test_malformed_remote_leaves_remote_untouched(self, clock, make_document):
        """An unreadable tactics.json aborts the upload without writing."""
        remote = SharedRemote()
        remote.files = {TACTICS_FILE: "{broken", METADATA_FILE: '{"revision": 3}'}
        remote.version = 3
        transport = _transport(remote, clock)

        result = transport.upload(make_document(tactics=[("flank", "combat", 3, 3)]))

        assert result.status == "failed"
        assert remote.files[TACTICS_FILE] == "{broken"
        assert transport.state.consecutive_failures == 0

    def test_snapshot_returned_with_upload(self, clock, make_document):
        """The merged cumulative document comes back with the result."""
        remote = SharedRemote()
        a = _transport(remote, clock)
        a.upload(make_document(tactics=[("flank", "combat", 4, 4)], document_id="a-1"))
        b = _transport(remote, clock)

        result = b.upload(make_document(tactics=[("rush", "combat", 2, 0)], document_id="b-1"))

        assert set(result.snapshot.tactics) == {KEY, TacticKey("rush", "combat")}


class TestRepositoryDownload:
    """Test RepositoryTransport.download()."""

    def test_empty_repository_unavailable(self, clock):
        """Nothing pushed yet: unavailable, not an error."""
        transport = _transport(SharedRemote(), clock)
        result = transport.download()
        assert result.status == "unavailable"
        assert transport.state.consecutive_failures == 0

    def test_download_after_push(self, clock, make_document):
        """A second contributor reads what the first pushed."""
        remote = SharedRemote()
        _transport(remote, clock).upload(
            make_document(tactics=[("flank", "combat", 10, 9)], behaviors=[("kite", "zombie", 1, 0)])
        )

        result = _transport(remote, clock).download()

        assert result.available
        assert result.round_number == 1
        assert result.document.tactics[KEY].success_rate == pytest.approx(0.9)
        assert len(result.document.behaviors) == 1

    def test_malformed_metadata_unavailable(self, clock):
        """An unreadable metadata.json is ignored, not counted as failure."""
        remote = SharedRemote()
        remote.files = {METADATA_FILE: '{"revision": "many"}'}
        remote.version = 1
        transport = _transport(remote, clock)

        assert transport.download().status == "unavailable"
        assert transport.state.consecutive_failures == 0


def _run_git(*args, cwd):
    subprocess.run(["git", *args], cwd=str(cwd), check=True, capture_output=True)


@pytest.mark.skipif(not check_git_available(), reason="git not available")
class TestGitRepositoryStore:
    """End-to-end tests against a local bare git repository."""

    @pytest.fixture
    def bare_repo(self, tmp_path):
        path = tmp_path / "shared.git"
        path.mkdir()
        _run_git("init", "--bare", cwd=path)
        return path

    def _git_transport(self, bare_repo, checkout, clock, store_cls=GitRepositoryStore):
        store = store_cls(str(bare_repo), checkout, branch="main")
        return RepositoryTransport(store, policy=POLICY, clock=clock)

    def test_push_then_download(self, bare_repo, tmp_path, clock, make_document):
        """One checkout pushes; another clones and reads the same aggregate."""
        writer = self._git_transport(bare_repo, tmp_path / "a", clock)
        reader = self._git_transport(bare_repo, tmp_path / "b", clock)

        assert reader.download().status == "unavailable"
        assert writer.upload(make_document(tactics=[("flank", "combat", 10, 9)])).status == "sent"

        result = reader.download(force=True)
        assert result.available
        assert result.round_number == 1
        assert result.document.tactics[KEY].total_attempts == 10

    def test_concurrent_push_is_merged(self, bare_repo, tmp_path, clock, make_document):
        """A rejected git push re-pulls and merges the other writer's data."""
        other = self._git_transport(bare_repo, tmp_path / "b", clock)

        class RacingStore(GitRepositoryStore):
            raced = False

            def push(self):
                if not RacingStore.raced:
                    RacingStore.raced = True
                    other.upload(make_document(tactics=[("flank", "combat", 5, 5)], document_id="b-1"))
                super().push()

        racer = self._git_transport(bare_repo, tmp_path / "a", clock, store_cls=RacingStore)
        racer.upload(make_document(tactics=[("flank", "combat", 1, 0)], document_id="a-1"))

        result = self._git_transport(bare_repo, tmp_path / "c", clock).download()
        assert result.round_number == 2
        assert result.document.tactics[KEY].total_attempts == 6
        assert result.document.tactics[KEY].successful_attempts == 5

    def _decline_pushes(self, bare_repo):
        hook = bare_repo / "hooks" / "pre-receive"
        hook.write_text("#!/bin/sh\nexit 1\n")
        hook.chmod(0o755)
        return hook

    def test_declined_first_push_is_a_failure(self, bare_repo, tmp_path, clock, make_document):
        """A push refused by the remote is never reported as sent."""
        self._decline_pushes(bare_repo)
        transport = self._git_transport(bare_repo, tmp_path / "a", clock)
        document = make_document(tactics=[("flank", "combat", 10, 9)], document_id="doc-1")

        result = transport.upload(document)
        retry = transport.upload(document, force=True)

        refs = subprocess.run(
            ["git", "for-each-ref"], cwd=str(bare_repo), capture_output=True, text=True, check=True
        )
        assert refs.stdout.strip() == ""
        assert result.status == "failed"
        assert retry.status == "failed"

    def test_hook_refusal_is_not_retried_as_conflict(self, bare_repo, tmp_path, clock, make_document):
        """A hook refusal fails after one push instead of cycling."""
        self._decline_pushes(bare_repo)

        class CountingStore(GitRepositoryStore):
            pushes = 0

            def push(self):
                CountingStore.pushes += 1
                super().push()

        transport = self._git_transport(bare_repo, tmp_path / "a", clock, store_cls=CountingStore)
        result = transport.upload(make_document(tactics=[("flank", "combat", 1, 1)]))

        assert result.status == "failed"
        assert CountingStore.pushes == 1

    def test_declined_push_is_sent_once_remote_accepts(
        self, bare_repo, tmp_path, clock, make_document
    ):
        """After a refused first push the checkout is emptied and the batch lands once."""
        hook = self._decline_pushes(bare_repo)
        transport = self._git_transport(bare_repo, tmp_path / "a", clock)
        document = make_document(tactics=[("flank", "combat", 10, 9)], document_id="doc-1")
        assert transport.upload(document).status == "failed"

        hook.unlink()
        other = self._git_transport(bare_repo, tmp_path / "b", clock)
        assert other.upload(make_document(tactics=[("flank", "combat", 2, 1)], document_id="doc-2")).status == "sent"

        retry = transport.upload(document, force=True)
        result = self._git_transport(bare_repo, tmp_path / "c", clock).download()

        assert retry.status == "sent"
        assert result.round_number == 2
        assert result.document.tactics[KEY].total_attempts == 12
        assert result.document.tactics[KEY].successful_attempts == 10

    def test_pull_from_empty_remote_discards_local_commit(self, bare_repo, tmp_path, clock):
        """Unpushed commits and files vanish while the remote has no branch."""
        checkout = tmp_path / "a"
        store = GitRepositoryStore(str(bare_repo), checkout, branch="main")
        store.ensure_checkout()
        store.write({METADATA_FILE: json.dumps({"revision": 1, "applied_documents": ["doc-1"]})})
        assert store.commit("local only", [METADATA_FILE])

        assert store.pull() is False
        assert store.read(METADATA_FILE) is None
        head = subprocess.run(["git", "rev-parse", "--verify", "--quiet", "HEAD"], cwd=str(checkout))
        assert head.returncode != 0
