from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Protocol, Sequence

from uptime_archive.core.exceptions import StoreConflictError, StoreError

logger = logging.getLogger(__name__)

# git push stderr markers for a ref that moved underneath us
_CONFLICT_MARKERS = ("[rejected]", "non-fast-forward", "fetch first", "failed to push some refs")


class Store(Protocol):
    """The shared file tree the pipeline writes into."""

    root: Path

    async def sync(self) -> None:  # pragma: no cover - interface
        """Bring the working tree to the store's current state, dropping uncommitted work."""
        ...

    async def commit(self, paths: Sequence[Path], message: str) -> bool:  # pragma: no cover - interface
        """Publish ``paths`` as one unit; False when there was nothing to publish."""
        ...


class LocalStore:
    """A plain directory: files are published the moment they are written."""

    def __init__(self, root: Path) -> None:
        self.root = root

    async def sync(self) -> None:
        self.root.mkdir(parents=True, exist_ok=True)

    async def commit(self, paths: Sequence[Path], message: str) -> bool:
        logger.debug("local store commit", extra={"paths": len(paths), "message": message})
        return bool(paths)


class GitStore:
    """Working tree of a git branch, published with commit + push."""

    def __init__(
        self,
        root: Path,
        *,
        remote: str | None = "origin",
        branch: str = "status-data",
        author_name: str = "uptime-archive",
        author_email: str = "uptime-archive@localhost",
    ) -> None:
        self.root = root
        self.remote = remote
        self.branch = branch
        self.author_name = author_name
        self.author_email = author_email

    async def sync(self) -> None:
        if self.remote is None:
            # nothing upstream; just drop leftovers from an abandoned attempt
            await self._git("reset", "--hard", "--quiet")
            await self._git("clean", "-fd", "--quiet")
            return

        code, _, _ = await self._run("ls-remote", "--exit-code", "--heads", self.remote, self.branch)
        if code == 2:
            logger.info("remote branch missing, keeping local tree", extra={"branch": self.branch})
            return
        if code != 0:
            raise StoreError(f"cannot reach remote {self.remote!r}")

        await self._git("fetch", "--quiet", self.remote, self.branch)
        await self._git("reset", "--hard", "--quiet", f"{self.remote}/{self.branch}")
        await self._git("clean", "-fd", "--quiet")

    async def commit(self, paths: Sequence[Path], message: str) -> bool:
        relative = [str(path.relative_to(self.root)) for path in paths]
        if not relative:
            return False
        await self._git("add", "--all", "--", *relative)

        code, _, _ = await self._run("diff", "--cached", "--quiet")
        if code == 0:
            logger.info("nothing to commit")
            return False

        await self._git(
            "-c",
            f"user.name={self.author_name}",
            "-c",
            f"user.email={self.author_email}",
            "commit",
            "--quiet",
            "-m",
            message,
        )
        if self.remote is None:
            return True

        code, _, stderr = await self._run("push", "--quiet", self.remote, f"HEAD:{self.branch}")
        if code != 0:
            if any(marker in stderr for marker in _CONFLICT_MARKERS):
                raise StoreConflictError(f"push to {self.remote}/{self.branch} rejected: {stderr.strip()}")
            raise StoreError(f"push to {self.remote}/{self.branch} failed: {stderr.strip()}")
        logger.info("store commit pushed", extra={"branch": self.branch, "message": message})
        return True

    async def _git(self, *args: str) -> str:
        code, stdout, stderr = await self._run(*args)
        if code != 0:
            raise StoreError(f"git {args[0]} failed: {stderr.strip() or stdout.strip()}")
        return stdout

    async def _run(self, *args: str) -> tuple[int, str, str]:
        try:
            proc = await asyncio.create_subprocess_exec(
                "git",
                *args,
                cwd=str(self.root),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise StoreError(f"cannot run git: {exc}") from exc
        stdout, stderr = await proc.communicate()
        return proc.returncode or 0, stdout.decode(errors="replace"), stderr.decode(errors="replace")
