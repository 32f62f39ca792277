"""Git access for the land workflow.

This package provides:
    - VersionControl: the async capability interface the workflow depends on
    - AsyncRepo: implementation that shells out to git
    - InMemoryRepo: commit-graph fake used by the test-suite
"""

from __future__ import annotations

from .base import VersionControl
from .client import AsyncRepo
from .memory import InMemoryRepo

__all__ = [
    "AsyncRepo",
    "InMemoryRepo",
    "VersionControl",
]
