"""Per-entry operation policies driven by the tree walker."""

import logging
from pathlib import Path

import aiofiles.os

from .counters import EmptyDirIndex, ProgressCounters
from .logging import log_with_context
from .metadata import stat_entry

# Trees that must never be deleted or written into by a bulk run
DANGEROUS_PATHS = {
    "/",
    "/proc",
    "/sys",
    "/dev",
    "/run",
    "/var/run",
    "/boot",
    "/bin",
    "/sbin",
    "/lib",
    "/lib64",
    "/usr",
    "/usr/bin",
    "/usr/sbin",
    "/usr/lib",
    "/etc",
}


def refuse_system_path(path: Path, action: str) -> None:
    """
    Raise ValueError if ``path`` is, or is inside, a system directory.

    ``/`` and ``/usr`` only match exactly, since data trees live below them.
    """
    path_str = str(path)
    for dangerous in DANGEROUS_PATHS:
        exact_only = dangerous in ("/", "/usr")
        if path_str == dangerous or (not exact_only and path_str.startswith(dangerous + "/")):
            raise ValueError(
                f"Refusing to {action} system directory: {path}. "
                f"This path is inside '{dangerous}' which contains critical system files."
            )


class Operation:
    """
    What the walker does with every listed entry.

    ``pre_directory`` runs before a directory is listed; raising OSError aborts
    that subtree. ``per_file`` runs once per non-directory entry.
    ``post_directory`` runs after every descendant of the directory finished.
    Entry-local failures are handled (logged and counted) inside the
    operation and never raised to the walker.
    """

    name = "base"
    destructive = False

    def __init__(self, counters: ProgressCounters | None = None, logger: logging.Logger | None = None):
        self.counters = counters if counters is not None else ProgressCounters()
        self.logger = logger if logger is not None else logging.getLogger("lfswalk")

    def validate_root(self, root: Path) -> None:
        """Fatal checks on the resolved root before any traversal."""

    async def pre_directory(self, directory: Path) -> None:
        pass

    async def per_file(self, path: Path) -> None:
        raise NotImplementedError

    async def post_directory(self, directory: Path) -> None:
        pass

    async def summary(self) -> dict:
        """Operation-specific fields for the final report."""
        return {}

    async def _entry_error(self, message: str, path: Path, error: Exception) -> None:
        log_with_context(
            self.logger,
            "warning",
            message,
            {"path": str(path), "error": str(error), "error_type": type(error).__name__},
        )
        await self.counters.add(errors=1)


class CountOperation(Operation):
    """Scan only. Optionally sums file sizes."""

    name = "count"

    def __init__(self, with_sizes: bool = False, **kwargs):
        super().__init__(**kwargs)
        self.with_sizes = with_sizes

    async def per_file(self, path: Path) -> None:
        if not self.with_sizes:
            return
        try:
            meta = await stat_entry(path)
        except FileNotFoundError:
            self.logger.debug(f"File vanished before stat: {path}")
            return
        except OSError as e:
            await self._entry_error("Error reading file metadata", path, e)
            return
        await self.counters.add(bytes_counted=meta.size)


class DeleteOperation(Operation):
    """Removes every file, then every directory once it has been emptied."""

    name = "delete"
    destructive = True

    def validate_root(self, root: Path) -> None:
        refuse_system_path(root, "delete")

    async def per_file(self, path: Path) -> None:
        try:
            await aiofiles.os.remove(path)
            self.logger.debug(f"Deleted: {path}")
        except FileNotFoundError:
            self.logger.debug(f"File already deleted: {path}")
        except OSError as e:
            await self._entry_error("Error deleting file", path, e)

    async def post_directory(self, directory: Path) -> None:
        try:
            await aiofiles.os.rmdir(directory)
            self.logger.debug(f"Deleted directory: {directory}")
        except FileNotFoundError:
            self.logger.debug(f"Directory already deleted: {directory}")
        except OSError as e:
            await self._entry_error("Error deleting directory", directory, e)


class FindEmptyDirsOperation(Operation):
    """
    Finds directories holding at most ``threshold`` files.

    Only immediate non-directory entries count; subdirectories do not.
    """

    name = "find-empty-dirs"

    def __init__(self, threshold: int = 0, top: int = 20, **kwargs):
        super().__init__(**kwargs)
        if threshold < 0:
            raise ValueError(f"threshold must be >= 0, got {threshold}")
        if top < 0:
            raise ValueError(f"top must be >= 0, got {top}")
        self.threshold = threshold
        self.top = top
        self.index = EmptyDirIndex()

    async def per_file(self, path: Path) -> None:
        await self.index.record_file(path.parent)

    async def post_directory(self, directory: Path) -> None:
        if await self.index.settle(directory, self.threshold):
            self.logger.debug(f"Found empty directory: {directory}")

    async def summary(self) -> dict:
        ranked = await self.index.top(self.top)
        return {
            "empty_dirs_found": len(self.index),
            "empty_dirs": [{"path": str(path), "files": count} for path, count in ranked],
        }
