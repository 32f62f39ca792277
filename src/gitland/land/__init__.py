"""The land workflow: fetch, rebase, squash-merge, commit, clean up, push.

Exports:
    LandWorkflow: the state machine
    WorkflowConfig: immutable per-run configuration
    resolve_workflow_config(): build a WorkflowConfig from all config layers
"""

from __future__ import annotations

from .confirm import Confirmer, always, make_confirmer
from .engine import LandWorkflow
from .types import (
    LandOutcome,
    LandStatus,
    LandStep,
    WorkflowConfig,
    default_message,
    resolve_workflow_config,
)

__all__ = [
    "Confirmer",
    "LandOutcome",
    "LandStatus",
    "LandStep",
    "LandWorkflow",
    "WorkflowConfig",
    "always",
    "default_message",
    "make_confirmer",
    "resolve_workflow_config",
]
