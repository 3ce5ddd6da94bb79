"""Directory listing backends."""

import asyncio
import os
from pathlib import Path


class ListingError(OSError):
    """A directory's immediate children could not be enumerated."""


async def async_scandir(path: Path):
    """Async wrapper for os.scandir."""
    loop = asyncio.get_running_loop()

    def _scandir():
        with os.scandir(path) as entries:
            return list(entries)

    return await loop.run_in_executor(None, _scandir)


class Lister:
    """
    Lists the immediate children of one directory.

    ``list`` returns ``(directories, files)`` as absolute path strings.
    ``files`` holds every non-directory entry (regular files, symlinks and
    special files). The listed directory itself is never included.
    """

    name = "base"

    async def list(self, path: Path) -> tuple[list[str], list[str]]:
        raise NotImplementedError


class ScandirLister(Lister):
    """Native enumeration through os.scandir."""

    name = "scandir"

    async def list(self, path: Path) -> tuple[list[str], list[str]]:
        dirs = []
        files = []
        for entry in await async_scandir(path):
            # Symlinks to directories are entries to copy or delete, not to descend into
            if entry.is_dir(follow_symlinks=False):
                dirs.append(entry.path)
            else:
                files.append(entry.path)
        return dirs, files


class LfsFindLister(Lister):
    """
    Delegates enumeration to ``lfs find``, which answers from Lustre metadata
    servers without touching object storage.
    """

    name = "lfs"

    def __init__(self, command: str = "lfs"):
        self.command = command

    async def _find(self, path: Path, type_args: list[str]) -> list[str]:
        try:
            proc = await asyncio.create_subprocess_exec(
                self.command,
                "find",
                str(path),
                "-maxdepth",
                "1",
                *type_args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise ListingError(f"{self.command} not found: {e}") from e

        stdout, stderr = await proc.communicate()
        if proc.returncode != 0:
            raise ListingError(
                f"{self.command} find {path} exited with {proc.returncode}: "
                f"{stderr.decode(errors='replace').strip()}"
            )
        return [line for line in stdout.decode(errors="surrogateescape").splitlines() if line]

    async def list(self, path: Path) -> tuple[list[str], list[str]]:
        own = str(path)
        dirs = [d for d in await self._find(path, ["-type", "d"]) if d.rstrip("/") != own.rstrip("/")]
        files = await self._find(path, ["!", "-type", "d"])
        return dirs, files


LISTERS = {
    ScandirLister.name: ScandirLister,
    LfsFindLister.name: LfsFindLister,
}


def make_lister(name: str, lfs_command: str = "lfs") -> Lister:
    """Build a lister by its CLI name."""
    if name not in LISTERS:
        raise ValueError(f"Unknown lister {name!r}, expected one of {sorted(LISTERS)}")
    if name == LfsFindLister.name:
        return LfsFindLister(lfs_command)
    return LISTERS[name]()
