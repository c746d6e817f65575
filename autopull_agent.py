#!/usr/bin/env python3
"""
autopull agent

Keeps a local git working copy synchronized with a single branch of a
remote repository. Reads config.toml from the current directory.
"""

import sys

from autopull.agent import main


if __name__ == "__main__":
    sys.exit(main())
