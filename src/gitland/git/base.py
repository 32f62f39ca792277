"""The narrow set of version-control operations the land workflow needs."""

from __future__ import annotations

from pathlib import Path
from typing import Protocol, runtime_checkable

from gitland.core.result import GitError, Result


@runtime_checkable
class VersionControl(Protocol):
    """Async capability interface implemented by AsyncRepo and InMemoryRepo.

    Every operation returns a Result; none of them raise for git failures.
    """

    @property
    def path(self) -> Path: ...

    async def current_branch(self) -> Result[str, GitError]: ...

    async def status_entries(self) -> Result[list[tuple[str, str]], GitError]:
        """Return (status_code, path) for every modified, staged or untracked path."""
        ...

    async def checkout(self, branch: str) -> Result[None, GitError]: ...

    async def fetch(self, remote: str, branch: str) -> Result[None, GitError]: ...

    async def merge_ff_only(self, ref: str) -> Result[None, GitError]: ...

    async def rebase(self, onto: str) -> Result[None, GitError]: ...

    async def rebase_abort(self) -> Result[None, GitError]: ...

    async def rebase_in_progress(self) -> Result[bool, GitError]: ...

    async def merge_squash(self, branch: str) -> Result[None, GitError]:
        """Stage the combined changes of ``branch`` without committing."""
        ...

    async def commit(self, message: str) -> Result[str, GitError]:
        """Commit the index and return the new commit SHA."""
        ...

    async def rev_parse(self, ref: str) -> Result[str, GitError]: ...

    async def reset_hard(self, ref: str) -> Result[None, GitError]: ...

    async def delete_branch(self, branch: str, *, force: bool = False) -> Result[None, GitError]: ...

    async def push(self, remote: str, branch: str) -> Result[None, GitError]: ...

    async def push_delete(self, remote: str, branch: str) -> Result[None, GitError]: ...

    async def config_get(self, key: str) -> Result[str | None, GitError]:
        """Return a git config value, or None when the key is unset."""
        ...


__all__ = ["VersionControl"]
