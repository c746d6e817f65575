"""Repository operations used by the recovery protocol, backed by the git CLI."""

import logging
import os
import subprocess
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence, Union

from ..errors import redact
from ..platform import get_git_executable


FETCH_REFSPEC = "+refs/heads/*:refs/remotes/origin/*"


@dataclass
class CommandResult:
    """Outcome of one git invocation."""
    args: List[str]
    returncode: Optional[int]
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False

    @property
    def success(self) -> bool:
        return self.returncode == 0 and not self.timed_out


class RepositoryOperations(ABC):
    """
    The narrow set of working-copy mutations the reconciliation engine needs.

    Implementations must not raise for an ordinary command failure; they
    report it through the returned ``CommandResult``.
    """

    @abstractmethod
    def fetch(self, url: str) -> CommandResult:
        """Fetch every branch of ``url`` into refs/remotes/origin, pruning."""

    @abstractmethod
    def verify_ref(self, ref: str) -> CommandResult:
        """Succeeds only when ``ref`` resolves in the local repository."""

    @abstractmethod
    def checkout(self, branch: str) -> CommandResult:
        """Switch to an existing local branch."""

    @abstractmethod
    def checkout_new_tracking(self, branch: str, upstream: str) -> CommandResult:
        """Create ``branch`` from ``upstream`` and switch to it, tracking ``upstream`` when a remote allows it."""

    @abstractmethod
    def pull(self, url: str, branch: str) -> CommandResult:
        """Pull ``branch`` from ``url`` into the checked-out branch."""

    @abstractmethod
    def is_ancestor(self, ancestor: str, descendant: str) -> CommandResult:
        """Returncode 0 when ``ancestor`` is reachable from ``descendant``, 1 when not."""

    @abstractmethod
    def reset_hard(self, ref: str) -> CommandResult:
        """Point the checked-out branch and the work tree at ``ref``."""


class GitCommandOperations(RepositoryOperations):
    """Runs each operation as a ``git -C <repo>`` subprocess with a timeout."""

    def __init__(self, repo_path: Union[str, Path], timeout: float = 300.0, secrets: Sequence[str] = ()):
        self.repo_path = Path(repo_path)
        self.timeout = timeout
        self._secrets = tuple(s for s in secrets if s)
        self.logger = logging.getLogger('autopull.operations')

    def _run(self, *args: str) -> CommandResult:
        command = [get_git_executable(), "-C", str(self.repo_path), *args]
        display = redact(" ".join(command[3:]), *self._secrets)
        self.logger.debug(f"Running git {display}", extra={'operation': 'git'})

        env = dict(os.environ)
        # Never block on a credential prompt
        env["GIT_TERMINAL_PROMPT"] = "0"

        try:
            completed = subprocess.run(
                command,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                env=env
            )
        except subprocess.TimeoutExpired as e:
            self.logger.warning(f"git {display} timed out after {self.timeout}s", extra={'operation': 'git'})
            return CommandResult(
                args=command,
                returncode=None,
                stdout=_decode(e.stdout),
                stderr=_decode(e.stderr),
                timed_out=True
            )
        except FileNotFoundError as e:
            return CommandResult(args=command, returncode=None, stderr=f"git executable not found: {e}")

        result = CommandResult(
            args=command,
            returncode=completed.returncode,
            stdout=completed.stdout,
            stderr=completed.stderr
        )
        if not result.success:
            self.logger.debug(f"git {display} exited with {result.returncode}", extra={'operation': 'git'})
        return result

    def fetch(self, url: str) -> CommandResult:
        return self._run("fetch", "--prune", url, FETCH_REFSPEC)

    def verify_ref(self, ref: str) -> CommandResult:
        return self._run("rev-parse", "--verify", "--quiet", ref)

    def checkout(self, branch: str) -> CommandResult:
        return self._run("checkout", branch)

    def checkout_new_tracking(self, branch: str, upstream: str) -> CommandResult:
        result = self._run("checkout", "-b", branch, "--track", upstream)
        if result.success or "tracking information" not in result.stderr:
            return result

        # No remote registered for the upstream ref; pull names the URL anyway
        self.logger.info(
            f"Cannot track {upstream} without a configured remote, creating '{branch}' untracked",
            extra={'operation': 'git'}
        )
        return self._run("checkout", "-B", branch, "--no-track", upstream)

    def pull(self, url: str, branch: str) -> CommandResult:
        return self._run("pull", url, branch)

    def is_ancestor(self, ancestor: str, descendant: str) -> CommandResult:
        return self._run("merge-base", "--is-ancestor", ancestor, descendant)

    def reset_hard(self, ref: str) -> CommandResult:
        return self._run("reset", "--hard", ref)


def _decode(output) -> str:
    if output is None:
        return ""
    if isinstance(output, bytes):
        return output.decode("utf-8", errors="replace")
    return output
