"""gitland - land a feature branch: rebase, squash-merge, commit, clean up, push.

This package provides the `land` command-line tool and the workflow engine
behind it.

Exports:
    __version__: Package version string.
"""

from __future__ import annotations

__all__ = ["__version__"]

__version__ = "0.1.0"
