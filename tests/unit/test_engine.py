"""State-machine tests for LandWorkflow against the in-memory repository."""

from __future__ import annotations

import os
import socket
import time
from pathlib import Path
from typing import Any

import pytest
from rich.console import Console

from gitland.core.lock import LockRecord
from gitland.core.result import GitError, Ok, Result
from gitland.git.memory import InMemoryRepo
from gitland.land import (
    LandOutcome,
    LandStatus,
    LandStep,
    LandWorkflow,
    WorkflowConfig,
    always,
    default_message,
)

MARKER = ".land-in-progress"


def _feature_repo(root: Path) -> InMemoryRepo:
    root.mkdir(parents=True, exist_ok=True)
    repo = InMemoryRepo(root)
    repo.create_branch("feature")
    repo.commit_on("feature", "add widget")
    repo.commit_on("feature", "polish widget")
    repo.current = "feature"
    return repo


def _config(**overrides: Any) -> WorkflowConfig:
    values: dict[str, Any] = {
        "landing_branch": "feature",
        "target_branch": "main",
        "remote": "origin",
        "message": default_message("feature"),
    }
    values.update(overrides)
    return WorkflowConfig(**values)


async def _land(repo: InMemoryRepo, console: Console | None = None, **overrides: Any) -> LandOutcome:
    confirm = overrides.pop("confirm", None)
    workflow = LandWorkflow(repo, _config(**overrides), confirm=confirm, console=console)
    return await workflow.run()


def _snapshot(repo: InMemoryRepo) -> tuple[Any, ...]:
    return (
        repo.current,
        dict(repo.branches),
        dict(repo.remotes.get("origin", {})),
        list(repo.staged),
        repo._rebase is not None,
    )


class TestHappyPath:
    @pytest.mark.asyncio
    async def test_lands_feature_as_single_commit(self, tmp_path: Path) -> None:
        repo = _feature_repo(tmp_path)
        base = repo.tip("main")

        outcome = await _land(repo)

        assert outcome.status is LandStatus.LANDED
        assert outcome.exit_code == 0
        tip = repo.tip("main")
        assert outcome.commit == tip
        assert repo.message_of(tip) == "Landed branch feature"
        assert repo.commits[tip].parents == (base,)
        assert "feature" not in repo.branches
        assert repo.current == "main"
        assert outcome.warnings == []

    @pytest.mark.asyncio
    async def test_picks_up_upstream_commits_first(self, tmp_path: Path) -> None:
        repo = _feature_repo(tmp_path)
        upstream = repo.remote_commit("main", "someone else's change")

        outcome = await _land(repo)

        assert outcome.status is LandStatus.LANDED
        assert repo.commits[repo.tip("main")].parents == (upstream,)

    @pytest.mark.asyncio
    async def test_custom_message(self, tmp_path: Path) -> None:
        repo = _feature_repo(tmp_path)

        await _land(repo, message="Widget support (#42)")

        assert repo.message_of(repo.tip("main")) == "Widget support (#42)"

    @pytest.mark.asyncio
    async def test_lands_branch_other_than_current(self, tmp_path: Path) -> None:
        repo = _feature_repo(tmp_path)
        repo.current = "main"

        outcome = await _land(repo)

        assert outcome.status is LandStatus.LANDED
        assert ("checkout", ("feature",)) in repo.calls
        assert repo.current == "main"

    @pytest.mark.asyncio
    async def test_runs_git_steps_in_order(self, tmp_path: Path) -> None:
        repo = _feature_repo(tmp_path)

        await _land(repo)

        assert [op for op, _ in repo.mutations] == [
            "checkout",
            "fetch",
            "merge_ff_only",
            "checkout",
            "rebase",
            "checkout",
            "merge_squash",
            "commit",
            "delete_branch",
        ]

    @pytest.mark.asyncio
    async def test_detached_start_restores_to_target(self, tmp_path: Path) -> None:
        repo = _feature_repo(tmp_path)
        repo.fail("current_branch", "HEAD is detached")

        outcome = await _land(repo)

        assert outcome.status is LandStatus.LANDED


class TestGuards:
    @pytest.mark.asyncio
    async def test_self_landing_is_a_noop(self, tmp_path: Path) -> None:
        repo = _feature_repo(tmp_path)
        repo.current = "main"

        outcome = await _land(repo, landing_branch="main", message=default_message("main"))

        assert outcome.status is LandStatus.NOOP
        assert outcome.exit_code == 0
        assert repo.calls == []
        assert not (tmp_path / MARKER).exists()

    @pytest.mark.asyncio
    async def test_dirty_tree_aborts_before_touching_refs(self, tmp_path: Path) -> None:
        repo = _feature_repo(tmp_path)
        repo.worktree = [("M", "app.py"), ("??", "notes.txt")]

        outcome = await _land(repo)

        assert outcome.status is LandStatus.FAILED
        assert outcome.failed_step is LandStep.CHECK_CLEANLINESS
        assert repo.mutations == []
        assert "app.py" in (outcome.error or "")
        assert "notes.txt" in (outcome.error or "")

    @pytest.mark.asyncio
    async def test_marker_is_not_counted_as_untracked(self, tmp_path: Path) -> None:
        repo = _feature_repo(tmp_path)
        repo.worktree = [("??", MARKER)]

        outcome = await _land(repo)

        assert outcome.status is LandStatus.LANDED


class TestRollback:
    @pytest.mark.asyncio
    async def test_diverged_target_restores_starting_branch(self, tmp_path: Path) -> None:
        repo = _feature_repo(tmp_path)
        local_main = repo.commit_on("main", "local only")
        repo.remote_commit("main", "remote only")
        feature_tip = repo.tip("feature")

        outcome = await _land(repo)

        assert outcome.status is LandStatus.FAILED
        assert outcome.failed_step is LandStep.FAST_FORWARD_TARGET
        assert repo.current == "feature"
        assert outcome.restored_branch == "feature"
        assert repo.tip("main") == local_main
        assert repo.tip("feature") == feature_tip

    @pytest.mark.asyncio
    async def test_fast_forward_failure_returns_to_unrelated_start(self, tmp_path: Path) -> None:
        repo = _feature_repo(tmp_path)
        repo.create_branch("docs", "main")
        repo.current = "docs"
        repo.fail("fetch", "could not read from remote repository")

        outcome = await _land(repo)

        assert outcome.failed_step is LandStep.FAST_FORWARD_TARGET
        assert repo.current == "docs"

    @pytest.mark.asyncio
    async def test_rebase_conflict_is_aborted(self, tmp_path: Path) -> None:
        repo = _feature_repo(tmp_path)
        repo.remote_commit("main")
        before = repo.tip("feature")
        repo.fail("rebase", "CONFLICT (content): Merge conflict in widget.py")

        outcome = await _land(repo)

        assert outcome.status is LandStatus.FAILED
        assert outcome.failed_step is LandStep.REBASE_LANDING
        assert ("rebase_abort", ()) in repo.calls
        assert repo.tip("feature") == before
        assert (await repo.rebase_in_progress()) == Ok(False)
        assert repo.current == "feature"
        assert "CONFLICT" in (outcome.error or "")

    @pytest.mark.asyncio
    async def test_squash_conflict_resets_target_to_checkpoint(self, tmp_path: Path) -> None:
        repo = _feature_repo(tmp_path)
        upstream = repo.remote_commit("main")
        repo.fail("merge_squash", "CONFLICT (content): Merge conflict in widget.py")

        outcome = await _land(repo)

        assert outcome.status is LandStatus.FAILED
        assert outcome.failed_step is LandStep.SQUASH_MERGE
        assert repo.tip("main") == upstream
        assert ("reset_hard", (upstream,)) in repo.calls
        assert repo.staged == []
        assert repo.worktree == []
        assert repo.current == "feature"

    @pytest.mark.asyncio
    async def test_commit_failure_discards_staged_squash(self, tmp_path: Path) -> None:
        repo = _feature_repo(tmp_path)
        base = repo.tip("main")
        repo.fail("commit", "pre-commit hook failed")

        outcome = await _land(repo)

        assert outcome.failed_step is LandStep.COMMIT_SQUASH
        assert repo.tip("main") == base
        assert repo.staged == []
        assert "feature" in repo.branches
        assert repo.current == "feature"

    @pytest.mark.asyncio
    async def test_reports_when_no_branch_can_be_restored(self, tmp_path: Path) -> None:
        repo = _feature_repo(tmp_path)
        repo.fail("rebase", "CONFLICT")
        repo.fail("rebase_abort", "could not abort")

        outcome = await _land(repo)

        assert outcome.status is LandStatus.FAILED
        assert outcome.restored_branch is None
        assert any("known branch" in warning for warning in outcome.warnings)


class TestToleratedFailures:
    @pytest.mark.asyncio
    async def test_branch_delete_failure_still_lands(self, tmp_path: Path) -> None:
        repo = _feature_repo(tmp_path)
        repo.fail("delete_branch", "cannot lock ref 'refs/heads/feature'")

        outcome = await _land(repo)

        assert outcome.status is LandStatus.LANDED
        assert outcome.exit_code == 0
        assert repo.message_of(repo.tip("main")) == "Landed branch feature"
        assert outcome.manual_commands == ["git branch -D feature"]
        assert any("feature" in warning for warning in outcome.warnings)

    @pytest.mark.asyncio
    async def test_push_publishes_target_and_deletes_remote_branch(self, tmp_path: Path) -> None:
        repo = _feature_repo(tmp_path)
        repo.remotes["origin"]["feature"] = repo.tip("feature")

        outcome = await _land(repo, push=True)

        assert outcome.status is LandStatus.LANDED
        assert repo.remotes["origin"]["main"] == repo.tip("main")
        assert "feature" not in repo.remotes["origin"]

    @pytest.mark.asyncio
    async def test_push_failure_prints_manual_commands(self, tmp_path: Path) -> None:
        repo = _feature_repo(tmp_path)
        repo.fail("push", "Could not resolve host")

        outcome = await _land(repo, push=True)

        assert outcome.status is LandStatus.LANDED
        assert outcome.manual_commands == [
            "git push origin main",
            "git push origin --delete feature",
        ]
        assert ("push_delete", ("origin", "feature")) not in repo.calls

    @pytest.mark.asyncio
    async def test_remote_branch_delete_failure_is_tolerated(self, tmp_path: Path) -> None:
        repo = _feature_repo(tmp_path)

        outcome = await _land(repo, push=True)

        assert outcome.status is LandStatus.LANDED
        assert repo.remotes["origin"]["main"] == repo.tip("main")
        assert outcome.manual_commands == ["git push origin --delete feature"]

    @pytest.mark.asyncio
    async def test_no_push_without_flag(self, tmp_path: Path) -> None:
        repo = _feature_repo(tmp_path)

        await _land(repo)

        assert not any(op.startswith("push") for op, _ in repo.calls)


class _DeclineMatching:
    def __init__(self, needle: str) -> None:
        self.needle = needle
        self.questions: list[str] = []

    def __call__(self, question: str) -> bool:
        self.questions.append(question)
        return self.needle not in question


# (text of the prompt to decline, op whose natural failure it mirrors, push mode)
DECLINE_CASES = [
    ("git checkout main", "checkout", False),
    ("git fetch", "fetch", False),
    ("git merge --ff-only", "merge_ff_only", False),
    ("git rebase", "rebase", False),
    ("git merge --squash", "merge_squash", False),
    ("git commit", "commit", False),
    ("git branch -D", "delete_branch", False),
    ("git push origin main", "push", True),
]


class TestParanoidMode:
    @pytest.mark.asyncio
    async def test_accepting_every_prompt_lands(self, tmp_path: Path) -> None:
        repo = _feature_repo(tmp_path)
        confirm = _DeclineMatching("never-matches")

        outcome = await _land(repo, paranoid=True, confirm=confirm)

        assert outcome.status is LandStatus.LANDED
        assert len(confirm.questions) == 9
        assert any("git rebase main" in q for q in confirm.questions)

    @pytest.mark.asyncio
    async def test_default_answer_declines(self, tmp_path: Path) -> None:
        repo = _feature_repo(tmp_path)

        outcome = await _land(repo, paranoid=True, confirm=always(False))

        assert outcome.status is LandStatus.FAILED
        assert outcome.failed_step is LandStep.FAST_FORWARD_TARGET
        assert repo.mutations == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize(("needle", "op", "push"), DECLINE_CASES)
    async def test_decline_matches_natural_failure(
        self, tmp_path: Path, needle: str, op: str, push: bool
    ) -> None:
        declined_repo = _feature_repo(tmp_path / "declined")
        declined_repo.remote_commit("main")
        failed_repo = _feature_repo(tmp_path / "failed")
        failed_repo.remote_commit("main")
        failed_repo.fail(op, "simulated failure")

        declined = await _land(
            declined_repo, paranoid=True, push=push, confirm=_DeclineMatching(needle)
        )
        failed = await _land(failed_repo, push=push)

        assert declined.status is failed.status
        assert declined.failed_step is failed.failed_step
        assert declined.exit_code == failed.exit_code
        assert declined.manual_commands == failed.manual_commands
        assert _snapshot(declined_repo) == _snapshot(failed_repo)

    @pytest.mark.asyncio
    async def test_rollbacks_are_not_prompted(self, tmp_path: Path) -> None:
        repo = _feature_repo(tmp_path)
        repo.fail("merge_squash", "CONFLICT")
        confirm = _DeclineMatching("never-matches")

        await _land(repo, paranoid=True, confirm=confirm)

        assert not any("reset --hard" in q for q in confirm.questions)
        assert any(op == "reset_hard" for op, _ in repo.calls)


class TestNarration:
    @pytest.mark.asyncio
    async def test_verbose_prints_each_step(self, tmp_path: Path) -> None:
        repo = _feature_repo(tmp_path)
        console = Console(record=True, width=200)

        await _land(repo, console=console, verbose=True)

        text = console.export_text()
        assert "git fetch origin main" in text
        assert "git merge --squash feature" in text
        assert 'git commit -m "Landed branch feature"' in text

    @pytest.mark.asyncio
    async def test_quiet_by_default(self, tmp_path: Path) -> None:
        repo = _feature_repo(tmp_path)
        console = Console(record=True, width=200)

        await _land(repo, console=console)

        assert console.export_text() == ""

    @pytest.mark.asyncio
    async def test_bracketed_message_is_narrated_literally(self, tmp_path: Path) -> None:
        repo = _feature_repo(tmp_path)
        console = Console(record=True, width=200)

        outcome = await _land(repo, console=console, verbose=True, message="Fix [/] parsing")

        assert outcome.status is LandStatus.LANDED
        assert repo.message_of(repo.tip("main")) == "Fix [/] parsing"
        assert 'git commit -m "Fix [/] parsing"' in console.export_text()

    @pytest.mark.asyncio
    async def test_bracketed_message_survives_paranoid_prompt(self, tmp_path: Path) -> None:
        repo = _feature_repo(tmp_path)
        console = Console(record=True, width=200)

        def confirm(question: str) -> bool:
            console.print(question)
            return True

        outcome = await _land(
            repo, paranoid=True, confirm=confirm, message="Fix [bold]parsing[/]"
        )

        assert outcome.status is LandStatus.LANDED
        assert repo.staged == []
        assert 'Run git commit -m "Fix [bold]parsing[/]"?' in console.export_text()


class _MarkerSpy(InMemoryRepo):
    seen_marker: bool = False

    async def fetch(self, remote: str, branch: str) -> Result[None, GitError]:
        self.seen_marker = (self.root / MARKER).exists()
        return await super().fetch(remote, branch)


class TestMarkerLifecycle:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "failing_op",
        [None, "status_entries", "fetch", "rebase", "merge_squash", "commit", "delete_branch"],
    )
    async def test_marker_removed_on_every_exit(self, tmp_path: Path, failing_op: str | None) -> None:
        repo = _MarkerSpy(tmp_path)
        repo.create_branch("feature")
        repo.commit_on("feature")
        repo.current = "feature"
        if failing_op:
            repo.fail(failing_op)

        await _land(repo)

        if failing_op != "status_entries":
            assert repo.seen_marker
        assert not (tmp_path / MARKER).exists()

    @pytest.mark.asyncio
    async def test_marker_removed_when_repository_raises(self, tmp_path: Path) -> None:
        class Exploding(InMemoryRepo):
            async def rebase(self, onto: str) -> Result[None, GitError]:
                raise RuntimeError("boom")

        repo = Exploding(tmp_path)
        repo.create_branch("feature")
        repo.commit_on("feature")
        repo.current = "feature"

        with pytest.raises(RuntimeError):
            await _land(repo)

        assert not (tmp_path / MARKER).exists()

    @pytest.mark.asyncio
    async def test_live_marker_blocks_the_land(self, tmp_path: Path) -> None:
        repo = _feature_repo(tmp_path)
        marker = tmp_path / MARKER
        record = LockRecord(
            pid=os.getppid(),
            hostname=socket.gethostname(),
            started_at=time.time(),
            landing="other",
            target="main",
        )
        marker.write_text(record.model_dump_json(), encoding="utf-8")

        outcome = await _land(repo)

        assert outcome.status is LandStatus.FAILED
        assert "in progress" in (outcome.error or "")
        assert repo.mutations == []
        assert marker.exists()

    @pytest.mark.asyncio
    async def test_force_overrides_live_marker(self, tmp_path: Path) -> None:
        repo = _feature_repo(tmp_path)
        marker = tmp_path / MARKER
        record = LockRecord(
            pid=os.getppid(),
            hostname=socket.gethostname(),
            started_at=time.time(),
            landing="other",
            target="main",
        )
        marker.write_text(record.model_dump_json(), encoding="utf-8")

        outcome = await _land(repo, force_lock=True)

        assert outcome.status is LandStatus.LANDED
        assert not marker.exists()

    @pytest.mark.asyncio
    async def test_stale_marker_is_replaced(self, tmp_path: Path) -> None:
        repo = _feature_repo(tmp_path)
        marker = tmp_path / MARKER
        record = LockRecord(
            pid=os.getppid(),
            hostname=socket.gethostname(),
            started_at=time.time() - 7200,
            landing="other",
            target="main",
        )
        marker.write_text(record.model_dump_json(), encoding="utf-8")

        outcome = await _land(repo)

        assert outcome.status is LandStatus.LANDED
        assert not marker.exists()
