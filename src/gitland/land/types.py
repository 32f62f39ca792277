"""Types shared by the land workflow and its CLI."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from gitland.core.config import (
    DEFAULT_LOCK_NAME,
    DEFAULT_REMOTE,
    DEFAULT_TARGET,
    REMOTE_CONFIG_KEY,
    TARGET_CONFIG_KEY,
    LandSettings,
)
from gitland.core.result import Err, GitError, Ok, Result, ValidationError
from gitland.git.base import VersionControl

logger = logging.getLogger(__name__)


def default_message(landing_branch: str) -> str:
    return f"Landed branch {landing_branch}"


class WorkflowConfig(BaseModel):
    """Everything one land needs to know, fixed before the first step runs."""

    model_config = ConfigDict(frozen=True)

    landing_branch: str = Field(min_length=1)
    target_branch: str = Field(default=DEFAULT_TARGET, min_length=1)
    remote: str = Field(default=DEFAULT_REMOTE, min_length=1)
    message: str = Field(min_length=1)
    push: bool = False
    verbose: bool = False
    paranoid: bool = False
    lock_name: str = DEFAULT_LOCK_NAME
    stale_lock_seconds: float = 3600.0
    force_lock: bool = False

    @property
    def is_self_landing(self) -> bool:
        return self.landing_branch == self.target_branch


class LandStep(str, Enum):
    CHECK_CLEANLINESS = "check-cleanliness"
    FAST_FORWARD_TARGET = "fast-forward-target"
    REBASE_LANDING = "rebase-landing"
    SQUASH_MERGE = "squash-merge"
    COMMIT_SQUASH = "commit-squash"
    DELETE_LANDING_BRANCH = "delete-landing-branch"
    PUSH = "push"


class LandStatus(str, Enum):
    LANDED = "landed"
    NOOP = "noop"
    FAILED = "failed"


@dataclass
class LandOutcome:
    status: LandStatus
    landing: str
    target: str
    failed_step: LandStep | None = None
    error: str | None = None
    commit: str | None = None
    restored_branch: str | None = None
    warnings: list[str] = field(default_factory=list)
    manual_commands: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.status is not LandStatus.FAILED

    @property
    def exit_code(self) -> int:
        return 0 if self.ok else 1


async def _repo_setting(repo: VersionControl, key: str) -> str | None:
    match await repo.config_get(key):
        case Ok(value):
            return value or None
        case Err(err):
            logger.debug("Ignoring unreadable git config %s: %s", key, err.message)
            return None


async def resolve_workflow_config(
    repo: VersionControl,
    settings: LandSettings,
    *,
    comment: str | None = None,
    branch: str | None = None,
    remote: str | None = None,
    target: str | None = None,
    push: bool = False,
    verbose: bool = False,
    paranoid: bool = False,
    force_lock: bool = False,
) -> Result[WorkflowConfig, GitError | ValidationError]:
    """Layer CLI overrides, settings, repository git config and defaults.

    The landing branch defaults to the currently checked-out branch.
    """
    if branch:
        landing = branch
    else:
        match await repo.current_branch():
            case Ok(current):
                landing = current
            case Err(err):
                return Err(
                    ValidationError(
                        "Cannot determine the branch to land; pass it explicitly",
                        context={"error": err.message},
                    )
                )

    resolved_remote = (
        remote
        or settings.remote
        or await _repo_setting(repo, REMOTE_CONFIG_KEY)
        or DEFAULT_REMOTE
    )
    resolved_target = (
        target
        or settings.target
        or await _repo_setting(repo, TARGET_CONFIG_KEY)
        or DEFAULT_TARGET
    )

    return Ok(
        WorkflowConfig(
            landing_branch=landing,
            target_branch=resolved_target,
            remote=resolved_remote,
            message=comment or default_message(landing),
            push=push,
            verbose=verbose,
            paranoid=paranoid,
            lock_name=settings.lock_name,
            stale_lock_seconds=settings.stale_lock_seconds,
            force_lock=force_lock,
        )
    )
