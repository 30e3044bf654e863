"""Git-backed shared repository store.

Wraps the git CLI with one subprocess per command, captured output and a
bounded timeout.

The checkout only ever holds files this process writes, so "pull" is a
fetch followed by a hard reset to the remote head: there are no local
edits to preserve, and a commit whose push failed is discarded in favour
of a fresh pull-merge-push cycle.
"""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path

from tacsync.transport.base import TransportError, WriteConflictError
from tacsync.transport.repository import RepositoryStore

logger = logging.getLogger(__name__)

# Markers git prints when a push loses a race with another writer.
# "[remote rejected]" (hooks, permissions) is not one of them.
CONFLICT_MARKERS = ("[rejected]", "non-fast-forward", "fetch first")

COMMIT_IDENTITY = (
    "-c", "user.name=tacsync",
    "-c", "user.email=tacsync@localhost",
    "-c", "commit.gpgsign=false",
)


def check_git_available() -> bool:
    """Check if the git executable is available.

    Returns:
        True if `git --version` runs.
    """
    try:
        subprocess.run(["git", "--version"], capture_output=True, timeout=5)
        return True
    except (FileNotFoundError, subprocess.TimeoutExpired):
        return False


class GitRepositoryStore(RepositoryStore):
    """Shared store backed by a remote git repository."""

    def __init__(
        self,
        repository_url: str,
        checkout_dir: Path,
        branch: str = "main",
        timeout: float = 60.0,
    ):
        """Initialize store.

        Args:
            repository_url: Anything `git clone` accepts (URL or path).
            checkout_dir: Local working copy location.
            branch: Remote branch holding the aggregate files.
            timeout: Seconds allowed per git command.
        """
        if not repository_url:
            raise ValueError("repository_url is required")
        self.repository_url = repository_url
        self.checkout_dir = Path(checkout_dir)
        self.branch = branch
        self.timeout = timeout

    def _git(self, *args: str, cwd: Path | None = None) -> subprocess.CompletedProcess:
        """Run a git command.

        Raises:
            TransportError: If git is missing or the command times out.
        """
        try:
            return subprocess.run(
                ["git", *args],
                cwd=str(cwd or self.checkout_dir),
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise TransportError(f"git {args[0]} timed out after {self.timeout}s") from e
        except FileNotFoundError as e:
            raise TransportError("git executable not found") from e

    def _git_checked(self, *args: str, cwd: Path | None = None) -> subprocess.CompletedProcess:
        result = self._git(*args, cwd=cwd)
        if result.returncode != 0:
            raise TransportError(f"git {args[0]} failed: {result.stderr.strip()}")
        return result

    def ensure_checkout(self) -> bool:
        if (self.checkout_dir / ".git").exists():
            return False

        logger.info(f"First time setup - cloning shared repository into {self.checkout_dir}")
        self.checkout_dir.parent.mkdir(parents=True, exist_ok=True)
        self._git_checked(
            "clone", self.repository_url, str(self.checkout_dir), cwd=self.checkout_dir.parent
        )
        return True

    def _remote_has_branch(self) -> bool:
        result = self._git_checked("ls-remote", "--heads", "origin", self.branch)
        return bool(result.stdout.strip())

    def _reset_to_unborn(self) -> None:
        """Drop local history and files so the checkout matches an empty remote."""
        if self._git("rev-parse", "--verify", "--quiet", "HEAD").returncode == 0:
            self._git_checked("update-ref", "-d", "HEAD")
        self._git_checked("rm", "-r", "-q", "--cached", "--ignore-unmatch", ".")
        self._git_checked("clean", "-f", "-d", "-x", "-q")

    def pull(self) -> bool:
        if not self._remote_has_branch():
            self._reset_to_unborn()
            return False
        self._git_checked("fetch", "origin", self.branch)
        self._git_checked("reset", "--hard", "FETCH_HEAD")
        return True

    def read(self, name: str) -> str | None:
        path = self.checkout_dir / name
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def write(self, files: dict[str, str]) -> None:
        for name, content in files.items():
            (self.checkout_dir / name).write_text(content, encoding="utf-8")

    def commit(self, message: str, names: list[str]) -> bool:
        self._git_checked("add", "--", *names)
        result = self._git(*COMMIT_IDENTITY, "commit", "-m", message)
        if result.returncode != 0:
            output = f"{result.stdout}\n{result.stderr}"
            if "nothing to commit" in output or "no changes added" in output:
                logger.debug("No changes to commit")
                return False
            raise TransportError(f"git commit failed: {result.stderr.strip()}")
        return True

    def push(self) -> None:
        result = self._git("push", "origin", f"HEAD:refs/heads/{self.branch}")
        if result.returncode == 0:
            return
        stderr = result.stderr.strip()
        if any(marker in stderr for marker in CONFLICT_MARKERS):
            raise WriteConflictError(f"push rejected: {stderr}")
        raise TransportError(f"git push failed: {stderr}")

    def reset_to_remote(self) -> None:
        self.pull()
