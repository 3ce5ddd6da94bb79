"""Periodic progress reporting, hang detection and memory back-pressure."""

import asyncio
import logging
import time

import psutil

from .counters import ProgressCounters
from .logging import log_with_context


def get_memory_usage_mb() -> float:
    """Get current memory usage in MB."""
    return psutil.Process().memory_info().rss / 1024 / 1024


class ProgressReporter:
    """
    Logs a status snapshot every ``interval`` seconds while a walk runs.

    Purely observational: it reads the counters and never blocks workers.
    ``stop`` cancels the loop and logs one last snapshot.
    """

    def __init__(
        self,
        counters: ProgressCounters,
        logger: logging.Logger,
        interval: float = 2.0,
        active_directories: set | None = None,
    ):
        if interval <= 0:
            raise ValueError(f"interval must be > 0, got {interval}")
        self.counters = counters
        self.logger = logger
        self.interval = interval
        self.active_directories = active_directories if active_directories is not None else set()
        self.task: asyncio.Task | None = None

        self.last_tick = time.time()
        self.last_processed_files = 0
        self.last_processed_dirs = 0
        self.stuck_detection_count = 0
        self.peak_memory_mb = 0.0

    def progress_data(self) -> dict:
        """Build one status snapshot and advance the per-tick rate window."""
        now = time.time()
        snapshot = self.counters.snapshot()
        elapsed = self.counters.elapsed()
        since_last = now - self.last_tick

        files_per_second = snapshot["processed_files"] / elapsed if elapsed > 0 else 0.0
        files_per_second_instant = (
            (snapshot["processed_files"] - self.last_processed_files) / since_last if since_last > 0 else 0.0
        )

        memory_mb = get_memory_usage_mb()
        self.peak_memory_mb = max(self.peak_memory_mb, memory_mb)

        data = {
            "elapsed_seconds": round(elapsed, 1),
            "total_files": snapshot["total_files"],
            "processed_files": snapshot["processed_files"],
            "total_dirs": snapshot["total_dirs"],
            "processed_dirs": snapshot["processed_dirs"],
            "errors": snapshot["errors"],
            "files_per_second": round(files_per_second, 1),
            "memory_mb": round(memory_mb, 1),
        }
        if snapshot["bytes_transferred"] > 0:
            data["mb_transferred"] = round(snapshot["bytes_transferred"] / (1024 * 1024), 2)

        if self.logger.isEnabledFor(logging.DEBUG):
            data["files_per_second_instant"] = round(files_per_second_instant, 1)
            data["active_directories"] = len(self.active_directories)
            data["files_skipped"] = snapshot["files_skipped"]
            data["special_files_skipped"] = snapshot["special_files_skipped"]
            data["memory_backpressure_events"] = snapshot["memory_backpressure_events"]

        self.last_tick = now
        return data

    def check_stuck(self) -> None:
        """Warn after two consecutive ticks without any processed entry."""
        processed_files = self.counters["processed_files"]
        processed_dirs = self.counters["processed_dirs"]

        if processed_files == self.last_processed_files and processed_dirs == self.last_processed_dirs:
            self.stuck_detection_count += 1
            if self.stuck_detection_count >= 2:
                active = sorted(str(d) for d in self.active_directories)
                log_with_context(
                    self.logger,
                    "warning",
                    "POSSIBLE HANG DETECTED: No progress in last "
                    f"{self.stuck_detection_count * self.interval:.0f} seconds",
                    {
                        "processed_files": processed_files,
                        "processed_dirs": processed_dirs,
                        "active_directories_count": len(active),
                        "directories": active[:10],
                        "hint": "A listing or a single large file may be slow. "
                        "If this persists, check the filesystem servers.",
                    },
                )
        else:
            self.stuck_detection_count = 0

        self.last_processed_files = processed_files
        self.last_processed_dirs = processed_dirs

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            log_with_context(self.logger, "info", "Progress update", self.progress_data())
            # Advances the previous-tick values the instant rate is computed from
            self.check_stuck()

    def start(self) -> None:
        self.last_tick = time.time()
        self.task = asyncio.create_task(self._run())

    async def stop(self) -> dict:
        """Stop the loop and log the final snapshot."""
        if self.task is not None:
            self.task.cancel()
            try:
                await self.task
            except asyncio.CancelledError:
                pass  # Expected
            self.task = None
        data = self.progress_data()
        log_with_context(self.logger, "info", "Final progress", data)
        return data


class MemoryGuard:
    """Soft memory limit: pauses callers while RSS is above the limit."""

    def __init__(
        self,
        counters: ProgressCounters,
        logger: logging.Logger,
        limit_mb: int = 0,
        pause_seconds: float = 0.5,
    ):
        if limit_mb < 0:
            raise ValueError(f"memory_limit_mb must be >= 0, got {limit_mb}")
        self.counters = counters
        self.logger = logger
        self.limit_mb = limit_mb
        self.pause_seconds = pause_seconds
        self.last_warning = 0.0
        self.warning_interval = 60
        self.lock = asyncio.Lock()

    async def check(self) -> None:
        if self.limit_mb <= 0:
            return

        async with self.lock:
            memory_mb = get_memory_usage_mb()
            if memory_mb <= self.limit_mb:
                return

            now = time.time()
            if now - self.last_warning >= self.warning_interval:
                self.logger.warning(
                    f"Memory usage ({memory_mb:.1f} MB) exceeds limit ({self.limit_mb} MB), "
                    f"applying back-pressure (logged once per {self.warning_interval}s)..."
                )
                self.last_warning = now

            await self.counters.add(memory_backpressure_events=1)
            await asyncio.sleep(self.pause_seconds)
