"""Operator guidance for each kind of reconciliation failure."""

from dataclasses import dataclass
from typing import Dict, List


@dataclass
class ErrorResolution:
    """Information about how to resolve a specific error."""
    user_message: str
    resolution_steps: List[str]


def build_error_strategies() -> Dict[str, ErrorResolution]:
    """Build resolution hints keyed by error code, with category fallbacks."""
    return {
        "REMOTE_NETWORK": ErrorResolution(
            user_message="Remote service unreachable",
            resolution_steps=[
                "Check the network connection of this host",
                "The next cycle will retry automatically"
            ]
        ),
        "REMOTE_TIMEOUT": ErrorResolution(
            user_message="Remote service did not answer in time",
            resolution_steps=[
                "Raise request_timeout_seconds if the service is slow",
                "The next cycle will retry automatically"
            ]
        ),
        "REMOTE_AUTH": ErrorResolution(
            user_message="Authentication failed - please check the access token",
            resolution_steps=[
                "Verify the token in config.toml has not expired",
                "Ensure the token grants Code (Read) access to the repository"
            ]
        ),
        "REMOTE_EMPTY_HISTORY": ErrorResolution(
            user_message="Remote branch reported no commits",
            resolution_steps=[
                "Verify target_branch exists on the remote",
                "Check the repository and project names in config.toml"
            ]
        ),
        "remote_query": ErrorResolution(
            user_message="Remote head lookup failed",
            resolution_steps=[
                "Check the organization, project and repository settings",
                "The next cycle will retry automatically"
            ]
        ),
        "local_inspection": ErrorResolution(
            user_message="Working copy could not be inspected",
            resolution_steps=[
                "Verify repo_path points at a git working copy",
                "Ensure git is installed and on PATH"
            ]
        ),
        "RECOVERY_HISTORY_REWRITTEN": ErrorResolution(
            user_message="Remote history no longer contains the local head",
            resolution_steps=[
                "The remote branch was force-pushed or rebased",
                "Reset the working copy manually or set on_history_rewrite = \"reset\""
            ]
        ),
        "recovery": ErrorResolution(
            user_message="Working copy synchronization did not complete",
            resolution_steps=[
                "Inspect the captured git output above",
                "Every stage is re-run from scratch on the next cycle"
            ]
        ),
    }
