"""Core shared infrastructure for gitland.

This package contains foundational utilities:
    - config: Settings loading (file, environment, defaults)
    - console: Rich console output and logging
    - lock: Advisory marker for an in-progress land
    - result: Error handling patterns
"""

from __future__ import annotations

from . import config, console

__all__ = ["config", "console"]
