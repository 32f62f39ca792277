"""In-memory VersionControl implementation for exercising the land workflow.

InMemoryRepo keeps a small commit graph, local and remote branch tips and a
staged/worktree state, and mimics git's behaviour for the operations the land
workflow uses closely enough to assert on tips after each rollback path.

Failures are injected per operation name:

    repo = InMemoryRepo(tmp_path)
    repo.create_branch("feature")
    repo.fail("rebase", "CONFLICT (content): Merge conflict in app.py")

An injected ``rebase`` failure leaves a half-applied rebase behind and an
injected ``merge_squash`` failure leaves conflicted staged state behind, the
same way git does, so rollbacks have something real to undo.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from pathlib import Path

from gitland.core.result import Err, GitError, Ok, Result

MUTATING_OPS = frozenset(
    {
        "checkout",
        "fetch",
        "merge_ff_only",
        "rebase",
        "rebase_abort",
        "merge_squash",
        "commit",
        "reset_hard",
        "delete_branch",
        "push",
        "push_delete",
    }
)


@dataclass(frozen=True)
class FakeCommit:
    sha: str
    parents: tuple[str, ...]
    message: str


@dataclass
class _RebaseState:
    branch: str
    orig_tip: str


@dataclass
class InMemoryRepo:
    """Commit-graph backed fake of AsyncRepo."""

    root: Path
    current: str = "main"
    commits: dict[str, FakeCommit] = field(default_factory=dict)
    branches: dict[str, str] = field(default_factory=dict)
    remotes: dict[str, dict[str, str]] = field(default_factory=dict)
    tracking: dict[str, str] = field(default_factory=dict)
    worktree: list[tuple[str, str]] = field(default_factory=list)
    staged: list[str] = field(default_factory=list)
    config: dict[str, str] = field(default_factory=dict)
    failures: dict[str, str] = field(default_factory=dict)
    calls: list[tuple[str, tuple[str, ...]]] = field(default_factory=list)
    _rebase: _RebaseState | None = None
    _counter: int = 0

    def __post_init__(self) -> None:
        if not self.branches:
            root = self._new_commit((), "Initial commit")
            self.branches[self.current] = root
            self.remotes.setdefault("origin", {})[self.current] = root

    # ------------------------------------------------------------------
    # Test setup helpers
    # ------------------------------------------------------------------

    def _new_commit(self, parents: tuple[str, ...], message: str) -> str:
        self._counter += 1
        sha = f"{self._counter:07x}" + "0" * 33
        self.commits[sha] = FakeCommit(sha=sha, parents=parents, message=message)
        return sha

    def create_branch(self, name: str, start: str | None = None) -> str:
        tip = self._resolve(start or self.current)
        if tip is None:
            raise KeyError(start)
        self.branches[name] = tip
        return tip

    def commit_on(self, branch: str, message: str = "work") -> str:
        sha = self._new_commit((self.branches[branch],), message)
        self.branches[branch] = sha
        return sha

    def remote_commit(
        self, branch: str, message: str = "upstream work", remote: str = "origin"
    ) -> str:
        heads = self.remotes.setdefault(remote, {})
        parents = (heads[branch],) if branch in heads else ()
        sha = self._new_commit(parents, message)
        heads[branch] = sha
        return sha

    def fail(self, op: str, message: str = "simulated failure") -> None:
        self.failures[op] = message

    def tip(self, branch: str) -> str:
        return self.branches[branch]

    def message_of(self, sha: str) -> str:
        return self.commits[sha].message

    @property
    def mutations(self) -> list[tuple[str, tuple[str, ...]]]:
        return [call for call in self.calls if call[0] in MUTATING_OPS]

    def is_ancestor(self, ancestor: str, descendant: str) -> bool:
        return ancestor in self._reachable(descendant)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _reachable(self, sha: str) -> set[str]:
        seen: set[str] = set()
        queue = deque([sha])
        while queue:
            current = queue.popleft()
            if current in seen:
                continue
            seen.add(current)
            queue.extend(self.commits[current].parents)
        return seen

    def _resolve(self, ref: str) -> str | None:
        if ref in self.branches:
            return self.branches[ref]
        if ref in self.tracking:
            return self.tracking[ref]
        if ref == "HEAD":
            return self.branches.get(self.current)
        if ref in self.commits:
            return ref
        return None

    def _record(self, op: str, *args: str) -> GitError | None:
        self.calls.append((op, args))
        if op in self.failures:
            return GitError(self.failures[op], context={"op": op, "args": list(args)})
        return None

    # ------------------------------------------------------------------
    # VersionControl
    # ------------------------------------------------------------------

    @property
    def path(self) -> Path:
        return self.root

    async def current_branch(self) -> Result[str, GitError]:
        if error := self._record("current_branch"):
            return Err(error)
        if self._rebase is not None:
            return Err(GitError("HEAD is detached during a rebase"))
        return Ok(self.current)

    async def status_entries(self) -> Result[list[tuple[str, str]], GitError]:
        if error := self._record("status_entries"):
            return Err(error)
        entries = list(self.worktree)
        entries.extend(("M", path) for path in self.staged)
        return Ok(entries)

    async def checkout(self, branch: str) -> Result[None, GitError]:
        if error := self._record("checkout", branch):
            return Err(error)
        if self._rebase is not None:
            return Err(GitError("you need to resolve your current index first"))
        if branch not in self.branches:
            return Err(GitError(f"pathspec '{branch}' did not match any file(s) known to git"))
        self.current = branch
        return Ok(None)

    async def fetch(self, remote: str, branch: str) -> Result[None, GitError]:
        if error := self._record("fetch", remote, branch):
            return Err(error)
        heads = self.remotes.get(remote)
        if heads is None:
            return Err(GitError(f"'{remote}' does not appear to be a git repository"))
        if branch not in heads:
            return Err(GitError(f"couldn't find remote ref {branch}"))
        self.tracking[f"{remote}/{branch}"] = heads[branch]
        return Ok(None)

    async def merge_ff_only(self, ref: str) -> Result[None, GitError]:
        if error := self._record("merge_ff_only", ref):
            return Err(error)
        target = self._resolve(ref)
        if target is None:
            return Err(GitError(f"{ref} - not something we can merge"))
        tip = self.branches[self.current]
        if self.is_ancestor(target, tip):
            return Ok(None)
        if not self.is_ancestor(tip, target):
            return Err(GitError("Not possible to fast-forward, aborting."))
        self.branches[self.current] = target
        return Ok(None)

    async def rebase(self, onto: str) -> Result[None, GitError]:
        if error := self._record("rebase", onto):
            base = self._resolve(onto) or self.branches[self.current]
            self._rebase = _RebaseState(branch=self.current, orig_tip=self.branches[self.current])
            # Leave the branch half-replayed the way a conflicting rebase does.
            self.branches[self.current] = self._new_commit((base,), "partially applied")
            return Err(error)
        base = self._resolve(onto)
        if base is None:
            return Err(GitError(f"invalid upstream '{onto}'"))
        tip = self.branches[self.current]
        if self.is_ancestor(base, tip):
            return Ok(None)

        upstream = self._reachable(base)
        unique: list[FakeCommit] = []
        cursor: str | None = tip
        while cursor is not None and cursor not in upstream:
            commit = self.commits[cursor]
            unique.append(commit)
            cursor = commit.parents[0] if commit.parents else None

        new_tip = base
        for commit in reversed(unique):
            new_tip = self._new_commit((new_tip,), commit.message)
        self.branches[self.current] = new_tip
        return Ok(None)

    async def rebase_abort(self) -> Result[None, GitError]:
        if error := self._record("rebase_abort"):
            return Err(error)
        if self._rebase is None:
            return Err(GitError("No rebase in progress?"))
        self.branches[self._rebase.branch] = self._rebase.orig_tip
        self.current = self._rebase.branch
        self._rebase = None
        return Ok(None)

    async def rebase_in_progress(self) -> Result[bool, GitError]:
        if error := self._record("rebase_in_progress"):
            return Err(error)
        return Ok(self._rebase is not None)

    async def merge_squash(self, branch: str) -> Result[None, GitError]:
        if error := self._record("merge_squash", branch):
            self.staged = ["conflicted"]
            self.worktree.append(("UU", "conflicted"))
            return Err(error)
        source = self._resolve(branch)
        if source is None:
            return Err(GitError(f"{branch} - not something we can merge"))
        if self.is_ancestor(source, self.branches[self.current]):
            return Ok(None)
        self.staged = [f"squash of {branch}"]
        return Ok(None)

    async def commit(self, message: str) -> Result[str, GitError]:
        if error := self._record("commit", message):
            return Err(error)
        if not self.staged:
            return Err(GitError("nothing to commit, working tree clean"))
        sha = self._new_commit((self.branches[self.current],), message)
        self.branches[self.current] = sha
        self.staged = []
        return Ok(sha)

    async def rev_parse(self, ref: str) -> Result[str, GitError]:
        if error := self._record("rev_parse", ref):
            return Err(error)
        sha = self._resolve(ref)
        if sha is None:
            return Err(GitError(f"Needed a single revision: {ref}"))
        return Ok(sha)

    async def reset_hard(self, ref: str) -> Result[None, GitError]:
        if error := self._record("reset_hard", ref):
            return Err(error)
        sha = self._resolve(ref)
        if sha is None:
            return Err(GitError(f"ambiguous argument '{ref}'"))
        self.branches[self.current] = sha
        self.staged = []
        self.worktree = [entry for entry in self.worktree if entry[0] == "??"]
        return Ok(None)

    async def delete_branch(self, branch: str, *, force: bool = False) -> Result[None, GitError]:
        if error := self._record("delete_branch", branch):
            return Err(error)
        if branch not in self.branches:
            return Err(GitError(f"branch '{branch}' not found."))
        if branch == self.current:
            return Err(GitError(f"Cannot delete branch '{branch}' checked out"))
        if not force and not self.is_ancestor(self.branches[branch], self.branches[self.current]):
            return Err(GitError(f"The branch '{branch}' is not fully merged."))
        del self.branches[branch]
        return Ok(None)

    async def push(self, remote: str, branch: str) -> Result[None, GitError]:
        if error := self._record("push", remote, branch):
            return Err(error)
        heads = self.remotes.setdefault(remote, {})
        local = self.branches.get(branch)
        if local is None:
            return Err(GitError(f"src refspec {branch} does not match any"))
        if branch in heads and not self.is_ancestor(heads[branch], local):
            return Err(GitError("Updates were rejected because the tip of your branch is behind"))
        heads[branch] = local
        self.tracking[f"{remote}/{branch}"] = local
        return Ok(None)

    async def push_delete(self, remote: str, branch: str) -> Result[None, GitError]:
        if error := self._record("push_delete", remote, branch):
            return Err(error)
        heads = self.remotes.setdefault(remote, {})
        if branch not in heads:
            return Err(GitError(f"unable to delete '{branch}': remote ref does not exist"))
        del heads[branch]
        self.tracking.pop(f"{remote}/{branch}", None)
        return Ok(None)

    async def config_get(self, key: str) -> Result[str | None, GitError]:
        if error := self._record("config_get", key):
            return Err(error)
        return Ok(self.config.get(key))


__all__ = ["FakeCommit", "InMemoryRepo", "MUTATING_OPS"]
