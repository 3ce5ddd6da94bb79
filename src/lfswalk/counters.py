"""Shared progress state for a single run."""

import asyncio
import time
from pathlib import Path


class ProgressCounters:
    """
    Monotonically increasing run counters.

    Every worker writes here and the progress reporter reads continuously.
    Updates go through ``add`` so concurrent coroutines never interleave a
    read-modify-write.
    """

    FIELDS = (
        "total_files",
        "total_dirs",
        "processed_files",
        "processed_dirs",
        "bytes_transferred",
        "bytes_counted",
        "files_skipped",
        "special_files_skipped",
        "errors",
        "memory_backpressure_events",
    )

    def __init__(self):
        self.values = {name: 0 for name in self.FIELDS}
        self.start_time = time.time()
        self.lock = asyncio.Lock()

    async def add(self, **deltas: int) -> None:
        """Coroutine-safe increment of one or more counters."""
        async with self.lock:
            for key, value in deltas.items():
                if key not in self.values:
                    raise KeyError(f"Unknown counter: {key}")
                if value < 0:
                    raise ValueError(f"Counters only increase, got {key}={value}")
                self.values[key] += value

    def __getitem__(self, name: str) -> int:
        return self.values[name]

    def snapshot(self) -> dict:
        """Point-in-time copy of all counters."""
        return dict(self.values)

    def restart_clock(self) -> None:
        """Measure elapsed time from now, when the walk actually starts."""
        self.start_time = time.time()

    def elapsed(self) -> float:
        return time.time() - self.start_time


class EmptyDirIndex:
    """
    Directory path -> immediate file count, for the find-empty-dirs run.

    Files are recorded under their parent as they are processed. Once a
    directory's subtree is done, ``settle`` keeps it only when its count is
    within the threshold.
    """

    def __init__(self):
        self.counts: dict[Path, int] = {}
        self.lock = asyncio.Lock()

    async def record_file(self, directory: Path) -> None:
        async with self.lock:
            self.counts[directory] = self.counts.get(directory, 0) + 1

    async def settle(self, directory: Path, threshold: int) -> bool:
        """
        Keep ``directory`` if it holds at most ``threshold`` files.

        Returns:
            True if the directory is retained as empty
        """
        async with self.lock:
            count = self.counts.get(directory, 0)
            if count <= threshold:
                self.counts[directory] = count
                return True
            self.counts.pop(directory, None)
            return False

    async def top(self, limit: int | None = None) -> list[tuple[Path, int]]:
        """Retained directories, most files first; ties ordered by path."""
        async with self.lock:
            ranked = sorted(self.counts.items(), key=lambda item: (-item[1], str(item[0])))
        if limit is not None and limit > 0:
            return ranked[:limit]
        return ranked

    def __len__(self) -> int:
        return len(self.counts)
