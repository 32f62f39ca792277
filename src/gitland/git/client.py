from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from gitland.core.result import Err, GitError, Ok, Result

logger = logging.getLogger(__name__)


async def _run_git(cwd: Path, *args: str) -> Result[str, GitError]:
    """Run git with asyncio and return stdout as text, wrapping failures."""
    if not cwd.exists():
        return Err(GitError("Repository path does not exist", context={"cwd": str(cwd)}))

    logger.debug("git %s (cwd=%s)", " ".join(args), cwd)
    try:
        process = await asyncio.create_subprocess_exec(
            "git",
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            stdin=asyncio.subprocess.DEVNULL,
            cwd=cwd,
        )
    except FileNotFoundError:
        return Err(GitError("git executable not found on PATH", context={"cwd": str(cwd)}))
    except OSError as exc:
        return Err(
            GitError(
                "Failed to start git",
                context={"cwd": str(cwd), "args": list(args), "error": str(exc)},
            )
        )

    stdout, stderr = await process.communicate()
    if process.returncode != 0:
        message = stderr.decode("utf-8", errors="replace").strip()
        stdout_text = stdout.decode("utf-8", errors="replace").strip()
        detail = message or stdout_text or f"git {' '.join(args)} failed"
        return Err(
            GitError(
                detail,
                context={"cwd": str(cwd), "args": list(args), "returncode": process.returncode},
            )
        )

    return Ok(stdout.decode("utf-8", errors="replace"))


def _parse_status_short(output: str) -> list[tuple[str, str]]:
    entries: list[tuple[str, str]] = []
    for line in output.splitlines():
        if not line:
            continue
        status_code = line[:2].strip()
        path = line[3:] if len(line) > 3 else ""
        # Renames are reported as "old -> new"; the new path is what is on disk.
        path = path.split(" -> ", 1)[-1]
        if len(path) >= 2 and path.startswith('"') and path.endswith('"'):
            path = path[1:-1]
        entries.append((status_code, path))
    return entries


async def _resolve_worktree(path: Path) -> Result[Path, GitError]:
    match await _run_git(path, "rev-parse", "--show-toplevel"):
        case Ok(raw):
            resolved = Path(raw.strip()).resolve()
            return Ok(resolved)
        case Err(err):
            return Err(err)


class AsyncRepo:
    """Async git wrapper built on subprocess plumbing."""

    def __init__(self, root: Path) -> None:
        self._root = root

    @property
    def path(self) -> Path:
        return self._root

    @classmethod
    async def open(cls, path: Path | str = ".") -> Result[AsyncRepo, GitError]:
        root = Path(path).expanduser()
        match await _resolve_worktree(root):
            case Ok(resolved_root):
                return Ok(cls(resolved_root))
            case Err(err):
                return Err(err)

    async def current_branch(self) -> Result[str, GitError]:
        match await _run_git(self._root, "rev-parse", "--abbrev-ref", "HEAD"):
            case Ok(output):
                branch = output.strip()
                if branch == "HEAD":
                    return Err(
                        GitError(
                            "HEAD is detached; no branch is checked out",
                            context={"cwd": str(self._root)},
                        )
                    )
                return Ok(branch)
            case Err(err):
                return Err(err)

    async def status_entries(self) -> Result[list[tuple[str, str]], GitError]:
        """Return short status entries as (status_code, path), untracked files included."""
        match await _run_git(self._root, "status", "--porcelain", "--untracked-files=all"):
            case Ok(output):
                return Ok(_parse_status_short(output))
            case Err(err):
                return Err(err)

    async def checkout(self, branch: str) -> Result[None, GitError]:
        result = await _run_git(self._root, "checkout", branch)
        return result.map(lambda _: None)

    async def fetch(self, remote: str, branch: str) -> Result[None, GitError]:
        result = await _run_git(self._root, "fetch", remote, branch)
        return result.map(lambda _: None)

    async def merge_ff_only(self, ref: str) -> Result[None, GitError]:
        result = await _run_git(self._root, "merge", "--ff-only", ref)
        return result.map(lambda _: None)

    async def rebase(self, onto: str) -> Result[None, GitError]:
        result = await _run_git(self._root, "rebase", onto)
        return result.map(lambda _: None)

    async def rebase_abort(self) -> Result[None, GitError]:
        result = await _run_git(self._root, "rebase", "--abort")
        return result.map(lambda _: None)

    async def rebase_in_progress(self) -> Result[bool, GitError]:
        for state_dir in ("rebase-merge", "rebase-apply"):
            match await _run_git(self._root, "rev-parse", "--git-path", state_dir):
                case Err(err):
                    return Err(err)
                case Ok(raw):
                    candidate = Path(raw.strip())
                    if not candidate.is_absolute():
                        candidate = self._root / candidate
                    if candidate.exists():
                        return Ok(True)
        return Ok(False)

    async def merge_squash(self, branch: str) -> Result[None, GitError]:
        result = await _run_git(self._root, "merge", "--squash", branch)
        return result.map(lambda _: None)

    async def commit(self, message: str) -> Result[str, GitError]:
        match await _run_git(self._root, "commit", "-m", message):
            case Err(err):
                return Err(err)
            case Ok(_):
                pass

        return await self.rev_parse("HEAD")

    async def rev_parse(self, ref: str) -> Result[str, GitError]:
        match await _run_git(self._root, "rev-parse", "--verify", ref):
            case Ok(output):
                return Ok(output.strip())
            case Err(err):
                return Err(err)

    async def reset_hard(self, ref: str) -> Result[None, GitError]:
        result = await _run_git(self._root, "reset", "--hard", ref)
        return result.map(lambda _: None)

    async def delete_branch(self, branch: str, *, force: bool = False) -> Result[None, GitError]:
        flag = "-D" if force else "-d"
        result = await _run_git(self._root, "branch", flag, branch)
        return result.map(lambda _: None)

    async def push(self, remote: str, branch: str) -> Result[None, GitError]:
        result = await _run_git(self._root, "push", remote, branch)
        return result.map(lambda _: None)

    async def push_delete(self, remote: str, branch: str) -> Result[None, GitError]:
        result = await _run_git(self._root, "push", remote, "--delete", branch)
        return result.map(lambda _: None)

    async def config_get(self, key: str) -> Result[str | None, GitError]:
        match await _run_git(self._root, "config", "--get", key):
            case Ok(output):
                return Ok(output.strip())
            case Err(err):
                # git config exits 1 when the key is simply unset
                if err.context.get("returncode") == 1:
                    return Ok(None)
                return Err(err)
