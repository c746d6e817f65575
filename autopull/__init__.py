"""
autopull - keeps a local git working copy in step with one remote branch.

Polls the remote for the branch head and, whenever it differs from the
local head, fetches, resolves the branch and pulls.
"""

__version__ = "1.0.0"
__description__ = "Unattended synchronization of a git working copy with a remote branch"


def main(argv=None):
    from .agent import main as agent_main
    return agent_main(argv)


__all__ = ["main"]
