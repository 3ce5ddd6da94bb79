"""Concurrent tree walker for bulk operations on huge directory trees."""

import asyncio
import os
import time
from pathlib import Path

import aiofiles.os

from . import __version__
from .copier import CopyOperation
from .logging import log_with_context, setup_logging
from .listing import Lister, ScandirLister, make_lister
from .operations import CountOperation, DeleteOperation, FindEmptyDirsOperation, Operation
from .progress import MemoryGuard, ProgressReporter
from .striping import LfsStriper

OPERATIONS: dict[str, type[Operation]] = {
    "count": CountOperation,
    "delete": DeleteOperation,
    "copy": CopyOperation,
    "find-empty-dirs": FindEmptyDirsOperation,
}


class _DirNode:
    """
    A directory in flight.

    ``pending`` counts outstanding work under this directory: one hold for its
    own listing plus one per listed child. The post-order action runs when it
    drops to zero.
    """

    __slots__ = ("path", "parent", "pending", "failed")

    def __init__(self, path: Path, parent: "_DirNode | None" = None):
        self.path = path
        self.parent = parent
        self.pending = 1
        self.failed = False


class TreeWalker:
    """
    Walks a tree with a fixed pool of directory workers and file workers.

    Directory workers take directories from a shared LIFO queue, list them, queue
    child directories back onto the same queue and push files onto a bounded
    file queue. File workers apply the operation to each file. Total
    concurrency stays at ``dir_workers + file_workers`` whatever the shape
    of the tree, and a directory's post action only runs once everything
    below it has finished.
    """

    def __init__(
        self,
        root_path: str,
        operation: Operation,
        lister: Lister | None = None,
        file_workers: int = 4,
        dir_workers: int = 2,
        file_queue_size: int = 10000,
        log_level: str = "INFO",
        progress_interval: float = 2.0,
        memory_limit_mb: int = 0,
    ):
        """
        Initialize the walker.

        Args:
            root_path: Directory to walk (resolved to an absolute path on run)
            operation: Policy applied to every file and directory
            lister: Directory listing backend (default: os.scandir)
            file_workers: Number of concurrent file workers
            dir_workers: Number of concurrent directory workers
            file_queue_size: Maximum files waiting for a worker
            log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
            progress_interval: Seconds between progress updates
            memory_limit_mb: Soft memory limit in MB (0 = disabled)

        Raises:
            ValueError: If invalid parameters are provided
        """
        if file_workers < 1:
            raise ValueError(f"file_workers must be >= 1, got {file_workers}")
        if dir_workers < 1:
            raise ValueError(f"dir_workers must be >= 1, got {dir_workers}")
        if file_queue_size < 1:
            raise ValueError(f"file_queue_size must be >= 1, got {file_queue_size}")

        self.root_path = root_path
        self.operation = operation
        self.counters = operation.counters
        self.lister = lister if lister is not None else ScandirLister()
        self.file_workers = file_workers
        self.dir_workers = dir_workers
        self.file_queue_size = file_queue_size

        self.logger = setup_logging("lfswalk", log_level)
        operation.logger = self.logger

        # Directories currently being prepared or listed, for hang diagnostics
        self.active_directories: set[Path] = set()

        self.reporter = ProgressReporter(
            self.counters, self.logger, interval=progress_interval, active_directories=self.active_directories
        )
        self.memory_guard = MemoryGuard(self.counters, self.logger, limit_mb=memory_limit_mb)

        self.dir_queue: asyncio.Queue | None = None
        self.file_queue: asyncio.Queue | None = None
        self.done: asyncio.Event | None = None

    async def resolve_root(self, directory: str | Path) -> Path:
        """Absolute path of ``directory``; any failure here aborts the run."""
        root = Path(os.path.abspath(directory))
        if not await aiofiles.os.path.exists(root):
            raise FileNotFoundError(f"Root path does not exist: {root}")
        if not await aiofiles.os.path.isdir(root):
            raise NotADirectoryError(f"Root path is not a directory: {root}")
        return root

    async def walk(self, directory: str | Path) -> Path:
        """
        Process ``directory`` and everything below it.

        Returns:
            The resolved root

        Raises:
            OSError: If the root cannot be resolved. Nothing else is fatal.
        """
        root = await self.resolve_root(directory)

        # LIFO: children are listed before their parent's siblings, so the walk is depth-first
        self.dir_queue = asyncio.LifoQueue()
        self.file_queue = asyncio.Queue(maxsize=self.file_queue_size)
        self.done = asyncio.Event()

        await self.counters.add(total_dirs=1)
        self.dir_queue.put_nowait(_DirNode(root))

        workers = [asyncio.create_task(self._dir_worker()) for _ in range(self.dir_workers)]
        workers += [asyncio.create_task(self._file_worker()) for _ in range(self.file_workers)]

        try:
            await self.done.wait()
        finally:
            for worker in workers:
                worker.cancel()
            await asyncio.gather(*workers, return_exceptions=True)

        return root

    async def _dir_worker(self) -> None:
        while True:
            node = await self.dir_queue.get()
            try:
                await self._visit(node)
            except Exception as e:
                log_with_context(
                    self.logger,
                    "error",
                    "Unexpected exception in directory worker",
                    {"directory": str(node.path), "error": str(e), "error_type": type(e).__name__},
                )
                await self.counters.add(errors=1)
            finally:
                self.dir_queue.task_done()

    async def _file_worker(self) -> None:
        while True:
            path, node = await self.file_queue.get()
            try:
                await self.operation.per_file(path)
            except Exception as e:
                # Operations handle their own errors, this only catches bugs
                log_with_context(
                    self.logger,
                    "error",
                    "Unexpected exception processing file",
                    {"path": str(path), "error": str(e), "error_type": type(e).__name__},
                )
                await self.counters.add(errors=1)
            finally:
                await self.counters.add(processed_files=1)
                await self._release(node)
                self.file_queue.task_done()

    async def _list(self, node: _DirNode) -> tuple[list[str], list[str]] | None:
        """Prepare and list one directory. None means its subtree is skipped."""
        self.active_directories.add(node.path)
        try:
            await self.memory_guard.check()

            try:
                await self.operation.pre_directory(node.path)
            except OSError as e:
                log_with_context(
                    self.logger,
                    "warning",
                    "Error preparing directory, skipping subtree",
                    {"directory": str(node.path), "error": str(e), "error_type": type(e).__name__},
                )
                await self.counters.add(errors=1)
                return None

            try:
                return await self.lister.list(node.path)
            except OSError as e:
                log_with_context(
                    self.logger,
                    "warning",
                    "Error listing directory, skipping subtree",
                    {"directory": str(node.path), "error": str(e), "error_type": type(e).__name__},
                )
                await self.counters.add(errors=1)
                return None
        except Exception as e:
            log_with_context(
                self.logger,
                "error",
                "Unexpected exception listing directory",
                {"directory": str(node.path), "error": str(e), "error_type": type(e).__name__},
            )
            await self.counters.add(errors=1)
            return None
        finally:
            self.active_directories.discard(node.path)

    async def _visit(self, node: _DirNode) -> None:
        try:
            children = await self._list(node)
            if children is None:
                node.failed = True
                return

            dirs, files = children
            # Count before queueing so workers can never see a zero that is not final
            node.pending += len(dirs) + len(files)
            await self.counters.add(total_dirs=len(dirs), total_files=len(files))

            for child in dirs:
                self.dir_queue.put_nowait(_DirNode(Path(child), node))
            for child in files:
                await self.file_queue.put((Path(child), node))
        finally:
            # Drop the listing hold
            await self._release(node)

    async def _release(self, node: _DirNode | None) -> None:
        """Mark one unit of work under ``node`` done, completing directories upwards."""
        while node is not None:
            node.pending -= 1
            if node.pending > 0:
                return

            if not node.failed:
                try:
                    await self.operation.post_directory(node.path)
                except Exception as e:
                    log_with_context(
                        self.logger,
                        "error",
                        "Unexpected exception finishing directory",
                        {"directory": str(node.path), "error": str(e), "error_type": type(e).__name__},
                    )
                    await self.counters.add(errors=1)

            await self.counters.add(processed_dirs=1)
            if node.parent is None:
                self.done.set()
            node = node.parent

    async def run(self) -> dict:
        """
        Walk the tree and apply the operation.

        Returns:
            Dictionary with run statistics
        """
        start_time = time.time()

        log_with_context(
            self.logger,
            "info",
            f"Starting {self.operation.name}",
            {
                "version": __version__,
                "root_path": str(self.root_path),
                "operation": self.operation.name,
                "lister": self.lister.name,
                "file_workers": self.file_workers,
                "dir_workers": self.dir_workers,
                "file_queue_size": self.file_queue_size,
                "progress_interval_seconds": self.reporter.interval,
                "memory_limit_mb": self.memory_guard.limit_mb,
            },
        )

        try:
            root = await self.resolve_root(self.root_path)
            self.operation.validate_root(root)
        except (OSError, ValueError) as e:
            log_with_context(self.logger, "error", str(e), {"root_path": str(self.root_path)})
            raise

        self.counters.restart_clock()
        self.reporter.start()
        try:
            await self.walk(root)
        finally:
            final_progress = await self.reporter.stop()

        duration = time.time() - start_time
        snapshot = self.counters.snapshot()

        final_stats = {
            "operation": self.operation.name,
            "duration_seconds": round(duration, 2),
            "total_files": snapshot["total_files"],
            "processed_files": snapshot["processed_files"],
            "total_dirs": snapshot["total_dirs"],
            "processed_dirs": snapshot["processed_dirs"],
            "errors": snapshot["errors"],
            "files_skipped": snapshot["files_skipped"],
            "special_files_skipped": snapshot["special_files_skipped"],
            "bytes_transferred": snapshot["bytes_transferred"],
            "mb_transferred": round(snapshot["bytes_transferred"] / (1024 * 1024), 2),
            "files_per_second": round(snapshot["processed_files"] / duration, 2) if duration > 0 else 0.0,
            "peak_memory_mb": round(max(self.reporter.peak_memory_mb, final_progress["memory_mb"]), 1),
            "memory_backpressure_events": snapshot["memory_backpressure_events"],
        }
        if snapshot["bytes_counted"] > 0:
            final_stats["bytes_counted"] = snapshot["bytes_counted"]

        final_stats.update(await self.operation.summary())

        log_with_context(self.logger, "info", "Operation completed", final_stats)
        return final_stats


def build_operation(
    operation: str,
    source: str,
    destination: str | None = None,
    with_sizes: bool = False,
    threshold: int = 0,
    top: int = 20,
    stripe: bool = True,
    lfs_command: str = "lfs",
) -> Operation:
    """Select the operation for a run by its CLI name."""
    if operation not in OPERATIONS:
        raise ValueError(f"Unknown operation: {operation}")
    if operation == "count":
        return CountOperation(with_sizes=with_sizes)
    if operation == "delete":
        return DeleteOperation()
    if operation == "copy":
        if destination is None:
            raise ValueError("copy requires a destination directory")
        striper = LfsStriper(lfs_command) if stripe else None
        return CopyOperation(source, destination, striper=striper)
    return FindEmptyDirsOperation(threshold=threshold, top=top)


async def async_main(
    operation: str,
    path: str,
    destination: str | None = None,
    file_workers: int = 4,
    dir_workers: int = 2,
    file_queue_size: int = 10000,
    lister: str = "scandir",
    lfs_command: str = "lfs",
    stripe: bool = True,
    with_sizes: bool = False,
    threshold: int = 0,
    top: int = 20,
    log_level: str = "INFO",
    progress_interval: float = 2.0,
    memory_limit_mb: int = 0,
) -> dict:
    """
    Async entry point for a run.

    Args:
        operation: One of count, delete, copy, find-empty-dirs
        path: Root directory (the source for copy)
        destination: Destination root for copy
        file_workers: Number of concurrent file workers
        dir_workers: Number of concurrent directory workers
        file_queue_size: Maximum files waiting for a worker
        lister: Listing backend, scandir or lfs
        lfs_command: lfs binary used for listing and striping
        stripe: If False, never request wider stripes for large copies
        with_sizes: For count, also sum file sizes
        threshold: For find-empty-dirs, maximum file count of an "empty" directory
        top: For find-empty-dirs, how many directories to report (0 = all)
        log_level: Logging level
        progress_interval: Seconds between progress updates
        memory_limit_mb: Soft memory limit in MB (0 = no limit)

    Returns:
        Run statistics
    """
    op = build_operation(
        operation,
        source=path,
        destination=destination,
        with_sizes=with_sizes,
        threshold=threshold,
        top=top,
        stripe=stripe,
        lfs_command=lfs_command,
    )
    walker = TreeWalker(
        root_path=path,
        operation=op,
        lister=make_lister(lister, lfs_command),
        file_workers=file_workers,
        dir_workers=dir_workers,
        file_queue_size=file_queue_size,
        log_level=log_level,
        progress_interval=progress_interval,
        memory_limit_mb=memory_limit_mb,
    )
    return await walker.run()
