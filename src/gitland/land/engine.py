"""The land workflow.

A land runs these steps in order against a VersionControl:

    check-cleanliness      tree must be clean; checkout the landing branch
    fast-forward-target    checkout target, fetch, merge --ff-only
    rebase-landing         checkout landing, rebase onto target
    squash-merge           checkout target, checkpoint, merge --squash
    commit-squash          commit with the land message
    delete-landing-branch  branch -D landing (failure tolerated)
    push                   optional; push target and delete remote landing
                           branch (failure tolerated)

The first failure in steps 1-5 runs that step's own rollback (rebase --abort,
reset --hard to the checkpoint) and then returns to the branch that was
checked out when the land started, falling back to the target branch.
Nothing is retried. The advisory marker is held for the whole run.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from rich.console import Console
from rich.markup import escape

from gitland.core.console import console as default_console
from gitland.core.lock import LandLock
from gitland.core.result import (
    Err,
    GitError,
    GitLandError,
    LockHeldError,
    Ok,
    PreconditionError,
    Result,
    StepDeclinedError,
)
from gitland.git.base import VersionControl
from gitland.land.confirm import Confirmer, always
from gitland.land.types import LandOutcome, LandStatus, LandStep, WorkflowConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")


class LandWorkflow:
    """Runs one land of ``config.landing_branch`` onto ``config.target_branch``."""

    def __init__(
        self,
        repo: VersionControl,
        config: WorkflowConfig,
        *,
        confirm: Confirmer | None = None,
        console: Console | None = None,
    ) -> None:
        self._repo = repo
        self._config = config
        self._confirm = confirm or always(False)
        self._console = console or default_console
        self._start_branch: str | None = None
        self._checkpoint: str | None = None

    @property
    def config(self) -> WorkflowConfig:
        return self._config

    def _lock(self) -> LandLock:
        return LandLock(
            self._repo.path / self._config.lock_name,
            stale_after=self._config.stale_lock_seconds,
            force=self._config.force_lock,
        )

    def _outcome(self, status: LandStatus, **kwargs: object) -> LandOutcome:
        return LandOutcome(
            status=status,
            landing=self._config.landing_branch,
            target=self._config.target_branch,
            **kwargs,  # type: ignore[arg-type]
        )

    async def run(self) -> LandOutcome:
        cfg = self._config
        if cfg.is_self_landing:
            logger.debug("Landing branch %s is the target; nothing to do", cfg.landing_branch)
            return self._outcome(LandStatus.NOOP)

        lock = self._lock()
        try:
            with lock.hold(landing=cfg.landing_branch, target=cfg.target_branch):
                return await self._land()
        except LockHeldError as exc:
            return self._outcome(LandStatus.FAILED, error=str(exc))

    # ------------------------------------------------------------------
    # Operation helpers
    # ------------------------------------------------------------------

    async def _do(
        self, description: str, op: Callable[[], Awaitable[Result[T, GitError]]]
    ) -> Result[T, GitLandError]:
        """Run a forward (mutating) operation: narrate, gate, execute."""
        if self._config.verbose:
            self._console.print(f"[cyan]>[/cyan] {escape(description)}")
        if self._config.paranoid and not self._confirm(f"Run [bold]{escape(description)}[/bold]?"):
            logger.debug("Operator declined %s", description)
            return Err(StepDeclinedError(f"Declined: {description}"))
        return await op()

    async def _undo(
        self, description: str, op: Callable[[], Awaitable[Result[T, GitError]]]
    ) -> Result[T, GitError]:
        """Run a rollback operation. Rollbacks are narrated but never gated."""
        if self._config.verbose:
            self._console.print(f"[yellow]<[/yellow] {escape(description)}")
        result = await op()
        if isinstance(result, Err):
            logger.warning("Rollback '%s' failed: %s", description, result.error.message)
        return result

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def _check_cleanliness(self) -> Result[None, GitLandError]:
        match await self._repo.status_entries():
            case Err(err):
                return Err(err)
            case Ok(entries):
                pass

        dirty = [f"{code} {path}" for code, path in entries if path != self._config.lock_name]
        if dirty:
            return Err(
                PreconditionError(
                    "Working tree has uncommitted changes or untracked files",
                    context={"paths": dirty},
                )
            )

        landing = self._config.landing_branch
        if self._start_branch != landing:
            match await self._do(f"git checkout {landing}", lambda: self._repo.checkout(landing)):
                case Err(err):
                    return Err(err)
                case Ok(_):
                    pass
        return Ok(None)

    async def _fast_forward_target(self) -> Result[None, GitLandError]:
        cfg = self._config
        target, remote = cfg.target_branch, cfg.remote
        operations: list[tuple[str, Callable[[], Awaitable[Result[None, GitError]]]]] = [
            (f"git checkout {target}", lambda: self._repo.checkout(target)),
            (f"git fetch {remote} {target}", lambda: self._repo.fetch(remote, target)),
            (
                f"git merge --ff-only {remote}/{target}",
                lambda: self._repo.merge_ff_only(f"{remote}/{target}"),
            ),
        ]
        for description, op in operations:
            match await self._do(description, op):
                case Err(err):
                    return Err(err)
                case Ok(_):
                    pass
        return Ok(None)

    async def _rebase_landing(self) -> Result[None, GitLandError]:
        cfg = self._config
        landing, target = cfg.landing_branch, cfg.target_branch

        match await self._do(f"git checkout {landing}", lambda: self._repo.checkout(landing)):
            case Err(err):
                return Err(err)
            case Ok(_):
                pass

        match await self._do(f"git rebase {target}", lambda: self._repo.rebase(target)):
            case Ok(_):
                return Ok(None)
            case Err(err):
                await self._rollback_rebase()
                return Err(err)

    async def _rollback_rebase(self) -> None:
        match await self._repo.rebase_in_progress():
            case Ok(False):
                return
            case Ok(True):
                await self._undo("git rebase --abort", self._repo.rebase_abort)
            case Err(err):
                logger.warning("Could not tell whether a rebase is in progress: %s", err.message)
                await self._undo("git rebase --abort", self._repo.rebase_abort)

    async def _squash_merge(self) -> Result[None, GitLandError]:
        cfg = self._config
        landing, target = cfg.landing_branch, cfg.target_branch

        match await self._do(f"git checkout {target}", lambda: self._repo.checkout(target)):
            case Err(err):
                return Err(err)
            case Ok(_):
                pass

        match await self._repo.rev_parse("HEAD"):
            case Err(err):
                return Err(err)
            case Ok(sha):
                self._checkpoint = sha
                logger.debug("Checkpoint for %s is %s", target, sha)

        match await self._do(
            f"git merge --squash {landing}", lambda: self._repo.merge_squash(landing)
        ):
            case Ok(_):
                return Ok(None)
            case Err(err):
                await self._reset_to_checkpoint()
                return Err(err)

    async def _reset_to_checkpoint(self) -> None:
        checkpoint = self._checkpoint
        if checkpoint is None:
            return
        await self._undo(
            f"git reset --hard {checkpoint[:12]}", lambda: self._repo.reset_hard(checkpoint)
        )

    async def _commit_squash(self) -> Result[str, GitLandError]:
        message = self._config.message
        match await self._do(f'git commit -m "{message}"', lambda: self._repo.commit(message)):
            case Ok(sha):
                return Ok(sha)
            case Err(err):
                pass

        # Only discard the staged squash if no commit was actually created.
        match await self._repo.rev_parse("HEAD"):
            case Ok(head) if head == self._checkpoint:
                await self._reset_to_checkpoint()
            case Ok(head):
                logger.warning(
                    "HEAD moved to %s during a failed commit; leaving %s as is",
                    head,
                    self._config.target_branch,
                )
            case Err(head_err):
                logger.warning("Could not read HEAD after failed commit: %s", head_err.message)
        return Err(err)

    async def _delete_landing_branch(self, outcome: LandOutcome) -> None:
        landing = self._config.landing_branch
        match await self._do(
            f"git branch -D {landing}", lambda: self._repo.delete_branch(landing, force=True)
        ):
            case Ok(_):
                return
            case Err(err):
                outcome.warnings.append(f"Could not delete local branch {landing}: {err.message}")
                outcome.manual_commands.append(f"git branch -D {landing}")

    async def _push(self, outcome: LandOutcome) -> None:
        cfg = self._config
        remote, target, landing = cfg.remote, cfg.target_branch, cfg.landing_branch
        push_target = f"git push {remote} {target}"
        delete_remote = f"git push {remote} --delete {landing}"

        match await self._do(push_target, lambda: self._repo.push(remote, target)):
            case Err(err):
                outcome.warnings.append(f"Could not push {target} to {remote}: {err.message}")
                outcome.manual_commands.extend([push_target, delete_remote])
                return
            case Ok(_):
                pass

        match await self._do(delete_remote, lambda: self._repo.push_delete(remote, landing)):
            case Err(err):
                outcome.warnings.append(
                    f"Could not delete {landing} on {remote}: {err.message}"
                )
                outcome.manual_commands.append(delete_remote)
            case Ok(_):
                pass

    # ------------------------------------------------------------------
    # Orchestration
    # ------------------------------------------------------------------

    async def _land(self) -> LandOutcome:
        cfg = self._config

        match await self._repo.current_branch():
            case Err(err):
                # Detached HEAD: rollbacks fall back to the target branch.
                logger.warning(
                    "Not on a branch (%s); will restore to %s", err.message, cfg.target_branch
                )
                self._start_branch = None
            case Ok(start):
                self._start_branch = start

        match await self._check_cleanliness():
            case Err(err):
                return await self._abort(LandStep.CHECK_CLEANLINESS, err)
            case Ok(_):
                pass

        guarded: list[tuple[LandStep, Callable[[], Awaitable[Result[None, GitLandError]]]]] = [
            (LandStep.FAST_FORWARD_TARGET, self._fast_forward_target),
            (LandStep.REBASE_LANDING, self._rebase_landing),
            (LandStep.SQUASH_MERGE, self._squash_merge),
        ]
        for step, run_step in guarded:
            logger.debug("Entering %s", step.value)
            match await run_step():
                case Err(err):
                    return await self._abort(step, err)
                case Ok(_):
                    pass

        match await self._commit_squash():
            case Err(err):
                return await self._abort(LandStep.COMMIT_SQUASH, err)
            case Ok(sha):
                outcome = self._outcome(LandStatus.LANDED, commit=sha)

        # Nothing below can turn a landed branch into a failure.
        await self._delete_landing_branch(outcome)
        if cfg.push:
            await self._push(outcome)
        return outcome

    async def _abort(self, step: LandStep, error: GitLandError) -> LandOutcome:
        logger.debug("%s failed: %s", step.value, error)
        restored = await self._restore_branch()
        message = error.message
        if isinstance(error, PreconditionError) and error.paths:
            message = f"{message}:\n  " + "\n  ".join(error.paths)
        outcome = self._outcome(
            LandStatus.FAILED,
            failed_step=step,
            error=message,
            restored_branch=restored,
        )
        if restored is None:
            outcome.warnings.append(
                "Could not return to a known branch; inspect the repository by hand"
            )
        return outcome

    async def _restore_branch(self) -> str | None:
        """Return to the starting branch, else the target branch. None if both fail."""
        match await self._repo.current_branch():
            case Ok(current) if current == self._start_branch:
                return current
            case _:
                pass

        candidates = [self._start_branch, self._config.target_branch]
        for candidate in dict.fromkeys(c for c in candidates if c):
            description = f"git checkout {candidate}"
            match await self._undo(description, lambda: self._repo.checkout(candidate)):
                case Ok(_):
                    return candidate
                case Err(_):
                    continue
        return None


__all__ = ["LandWorkflow"]
