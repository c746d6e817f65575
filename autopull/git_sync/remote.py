"""Remote branch head lookup against the Azure DevOps commits API."""

import logging
from dataclasses import dataclass, field
from typing import Optional
from urllib.parse import quote, urlsplit, urlunsplit

import httpx

from ..errors import RemoteQueryError, RemoteQueryErrorKind, redact


DEFAULT_API_HOST = "dev.azure.com"


@dataclass(frozen=True)
class RemoteDescriptor:
    """
    Where the tracked branch lives and how to authenticate against it.

    Build one with ``from_project`` (organization/project/repository
    identifiers) or ``from_urls`` (a fully formed commits query URL plus the
    git repository URL).
    """
    branch: str
    token: str = field(repr=False)
    query_url: str
    repository_url: str
    username: str = ""

    @classmethod
    def from_project(
        cls,
        organization: str,
        project: str,
        repository: str,
        branch: str,
        token: str,
        host: str = DEFAULT_API_HOST
    ) -> "RemoteDescriptor":
        base = f"https://{host}/{quote(organization)}/{quote(project)}"
        query_url = (
            f"{base}/_apis/git/repositories/{quote(repository)}/commits"
            f"?branchName={quote(branch)}"
            f"&searchCriteria.itemVersion.version={quote(branch)}"
            f"&searchCriteria.itemVersion.versionType=branch"
        )
        return cls(
            branch=branch,
            token=token,
            query_url=query_url,
            repository_url=f"{base}/_git/{quote(repository)}",
            username=organization
        )

    @classmethod
    def from_urls(
        cls,
        query_url: str,
        repository_url: str,
        branch: str,
        token: str,
        username: str = ""
    ) -> "RemoteDescriptor":
        return cls(
            branch=branch,
            token=token,
            query_url=query_url,
            repository_url=repository_url,
            username=username
        )

    @property
    def authenticated_url(self) -> str:
        """Repository URL carrying the token, for fetch and pull."""
        parts = urlsplit(self.repository_url)
        if parts.scheme not in ("http", "https") or not self.token:
            return self.repository_url
        host = parts.netloc.rsplit("@", 1)[-1]
        userinfo = f"{quote(self.username or 'autopull', safe='')}:{quote(self.token, safe='')}"
        return urlunsplit((parts.scheme, f"{userinfo}@{host}", parts.path, parts.query, parts.fragment))

    @property
    def tracking_ref(self) -> str:
        return f"origin/{self.branch}"


class RemoteCommitResolver:
    """Resolves the commit id at the head of the tracked branch."""

    def __init__(
        self,
        remote: RemoteDescriptor,
        timeout: float = 30.0,
        client: Optional[httpx.Client] = None
    ):
        self.remote = remote
        self.timeout = timeout
        self._client = client
        self.logger = logging.getLogger('autopull.remote')

    def _get_client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(timeout=httpx.Timeout(self.timeout))
        return self._client

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    def resolve_head(self) -> str:
        """
        Query the remote for the newest commit on the branch.

        Returns:
            The commit id reported first in the ``value`` array

        Raises:
            RemoteQueryError: network, timeout, authentication, unexpected
                status, malformed body or empty history
        """
        token = self.remote.token
        try:
            response = self._get_client().get(
                self.remote.query_url,
                auth=httpx.BasicAuth("", token),
                headers={"Accept": "application/json"},
                timeout=self.timeout
            )
        except httpx.TimeoutException as e:
            raise RemoteQueryError(
                RemoteQueryErrorKind.TIMEOUT,
                f"Remote query timed out after {self.timeout}s: {redact(str(e), token)}"
            ) from e
        except httpx.HTTPError as e:
            raise RemoteQueryError(
                RemoteQueryErrorKind.NETWORK,
                f"Remote query failed: {redact(str(e), token)}"
            ) from e

        self.logger.info("API request sent successfully.", extra={'operation': 'resolve_remote'})

        if response.status_code in (401, 403):
            raise RemoteQueryError(
                RemoteQueryErrorKind.AUTH,
                f"Remote rejected credentials (HTTP {response.status_code})",
                status_code=response.status_code
            )
        # Azure DevOps answers an expired token with a 203 sign-in page
        if response.status_code == 203:
            raise RemoteQueryError(
                RemoteQueryErrorKind.AUTH,
                "Remote redirected to a sign-in page (HTTP 203)",
                status_code=response.status_code
            )
        if response.status_code != 200:
            raise RemoteQueryError(
                RemoteQueryErrorKind.HTTP_STATUS,
                f"Remote query returned HTTP {response.status_code}",
                status_code=response.status_code
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise RemoteQueryError(
                RemoteQueryErrorKind.MALFORMED,
                f"Remote response is not JSON: {e}"
            ) from e

        commits = payload.get("value") if isinstance(payload, dict) else None
        if not isinstance(commits, list):
            raise RemoteQueryError(
                RemoteQueryErrorKind.MALFORMED,
                "Remote response has no 'value' array"
            )
        if not commits:
            raise RemoteQueryError(
                RemoteQueryErrorKind.EMPTY_HISTORY,
                f"Remote reported no commits on branch '{self.remote.branch}'"
            )

        head = commits[0]
        commit_id = head.get("commitId") if isinstance(head, dict) else None
        if not isinstance(commit_id, str) or not commit_id:
            raise RemoteQueryError(
                RemoteQueryErrorKind.MALFORMED,
                "First commit in remote response has no 'commitId'"
            )

        self.logger.info(f"Received latest commit from remote: {commit_id}", extra={'operation': 'resolve_remote'})
        return commit_id
