"""Git working copy reconciliation for autopull."""

from .engine import (
    BranchState, Failed, HistoryRewritePolicy, Outcome, ReconciliationEngine,
    Synchronized, UpToDate
)
from .inspector import LocalCommitInspector
from .operations import CommandResult, GitCommandOperations, RepositoryOperations
from .remote import RemoteCommitResolver, RemoteDescriptor

__all__ = [
    'BranchState',
    'CommandResult',
    'Failed',
    'GitCommandOperations',
    'HistoryRewritePolicy',
    'LocalCommitInspector',
    'Outcome',
    'ReconciliationEngine',
    'RemoteCommitResolver',
    'RemoteDescriptor',
    'RepositoryOperations',
    'Synchronized',
    'UpToDate'
]
