"""Entry metadata and the attribute calls aiofiles does not wrap."""

import asyncio
import os
import stat
from dataclasses import dataclass
from functools import partial
from pathlib import Path

import aiofiles.os


@dataclass(frozen=True)
class EntryMeta:
    size: int
    mode: int
    uid: int
    gid: int
    mtime_ns: int
    atime_ns: int
    is_regular: bool
    is_symlink: bool
    link_target: str | None = None

    @property
    def permissions(self) -> int:
        """Permission bits including setuid/setgid/sticky."""
        return stat.S_IMODE(self.mode)

    @classmethod
    def from_stat(cls, st: os.stat_result, link_target: str | None = None) -> "EntryMeta":
        return cls(
            size=st.st_size,
            mode=st.st_mode,
            uid=st.st_uid,
            gid=st.st_gid,
            mtime_ns=st.st_mtime_ns,
            atime_ns=st.st_atime_ns,
            is_regular=stat.S_ISREG(st.st_mode),
            is_symlink=stat.S_ISLNK(st.st_mode),
            link_target=link_target,
        )


async def stat_entry(path: Path) -> EntryMeta:
    """
    Metadata for ``path`` without following symlinks.

    For a symlink the target is read as well, so callers never issue a
    second call that could race a concurrent change.
    """
    st = await aiofiles.os.stat(path, follow_symlinks=False)
    link_target = None
    if stat.S_ISLNK(st.st_mode):
        link_target = await aiofiles.os.readlink(path)
    return EntryMeta.from_stat(st, link_target)


async def _run(func, *args, **kwargs):
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, partial(func, *args, **kwargs))


async def lchown(path: Path, uid: int, gid: int) -> None:
    await _run(os.lchown, path, uid, gid)


async def chmod(path: Path, mode: int) -> None:
    await _run(os.chmod, path, stat.S_IMODE(mode))


async def set_times(path: Path, atime_ns: int, mtime_ns: int) -> None:
    await _run(os.utime, path, ns=(atime_ns, mtime_ns))
