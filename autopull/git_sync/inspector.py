"""Read-only inspection of the working copy head using GitPython."""

import logging
from pathlib import Path
from typing import Union

from git import Repo, InvalidGitRepositoryError, NoSuchPathError, GitCommandNotFound

from ..errors import LocalInspectionError, LocalInspectionErrorKind


class LocalCommitInspector:
    """Reads the commit id currently checked out in a working copy."""

    def __init__(self, repo_path: Union[str, Path]):
        self.repo_path = Path(repo_path)
        self.logger = logging.getLogger('autopull.inspector')

    def read_head(self) -> str:
        """
        Return the hex commit id at HEAD.

        Raises:
            LocalInspectionError: the path is not a working copy, HEAD points
                at nothing yet, or git is unavailable
        """
        try:
            repo = Repo(self.repo_path)
        except (InvalidGitRepositoryError, NoSuchPathError) as e:
            raise LocalInspectionError(
                LocalInspectionErrorKind.NOT_A_REPOSITORY,
                f"Not a git working copy: {self.repo_path}"
            ) from e
        except GitCommandNotFound as e:
            raise LocalInspectionError(
                LocalInspectionErrorKind.TOOL_UNAVAILABLE,
                f"git executable not available: {e}"
            ) from e

        try:
            commit_id = repo.head.commit.hexsha
        except ValueError as e:
            # Unborn branch: HEAD names a ref that has no commit yet
            raise LocalInspectionError(
                LocalInspectionErrorKind.NO_HEAD,
                f"Working copy has no commit at HEAD: {e}"
            ) from e
        finally:
            repo.close()

        self.logger.info(f"Local commit ID: {commit_id}", extra={'operation': 'read_local_head'})
        return commit_id
