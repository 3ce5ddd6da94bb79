"""Tests for progress reporting, hang detection and memory back-pressure."""

import asyncio
import logging

import pytest

from lfswalk.counters import ProgressCounters
from lfswalk.operations import CountOperation
from lfswalk.progress import MemoryGuard, ProgressReporter, get_memory_usage_mb
from lfswalk.walker import TreeWalker


@pytest.fixture
def logger():
    return logging.getLogger("lfswalk.test")


def test_memory_usage_is_positive():
    assert get_memory_usage_mb() > 0


@pytest.mark.asyncio
async def test_progress_data_fields(logger):
    counters = ProgressCounters()
    await counters.add(total_files=10, processed_files=4, total_dirs=2, processed_dirs=1)
    reporter = ProgressReporter(counters, logger, interval=1.0)

    data = reporter.progress_data()

    assert data["total_files"] == 10
    assert data["processed_files"] == 4
    assert data["total_dirs"] == 2
    assert data["processed_dirs"] == 1
    assert data["memory_mb"] > 0
    assert "mb_transferred" not in data


@pytest.mark.asyncio
async def test_debug_fields_only_in_debug_mode(logger):
    counters = ProgressCounters()
    reporter = ProgressReporter(counters, logger, interval=1.0)

    logger.setLevel(logging.INFO)
    assert "files_per_second_instant" not in reporter.progress_data()

    logger.setLevel(logging.DEBUG)
    try:
        data = reporter.progress_data()
    finally:
        logger.setLevel(logging.NOTSET)
    assert "files_per_second_instant" in data
    assert "active_directories" in data


@pytest.mark.asyncio
async def test_stop_logs_final_snapshot(logger, caplog):
    counters = ProgressCounters()
    await counters.add(processed_files=3)
    reporter = ProgressReporter(counters, logger, interval=60)

    with caplog.at_level(logging.INFO, logger="lfswalk.test"):
        reporter.start()
        data = await reporter.stop()

    assert data["processed_files"] == 3
    assert reporter.task is None
    assert any(record.message == "Final progress" for record in caplog.records)


@pytest.mark.asyncio
async def test_periodic_updates(logger, caplog):
    counters = ProgressCounters()
    reporter = ProgressReporter(counters, logger, interval=0.05)

    with caplog.at_level(logging.INFO, logger="lfswalk.test"):
        reporter.start()
        await asyncio.sleep(0.3)
        await reporter.stop()

    updates = [r for r in caplog.records if r.message == "Progress update"]
    assert len(updates) >= 2


@pytest.mark.asyncio
async def test_hang_detection(logger, caplog, temp_dir):
    counters = ProgressCounters()
    reporter = ProgressReporter(counters, logger, interval=30, active_directories={temp_dir / "slow"})

    with caplog.at_level(logging.WARNING, logger="lfswalk.test"):
        reporter.check_stuck()
        reporter.check_stuck()

    warnings = [r for r in caplog.records if "POSSIBLE HANG DETECTED" in r.message]
    assert len(warnings) == 1
    assert warnings[0].extra_fields["directories"] == [str(temp_dir / "slow")]


@pytest.mark.asyncio
async def test_progress_resets_hang_counter(logger):
    counters = ProgressCounters()
    reporter = ProgressReporter(counters, logger, interval=30)

    reporter.check_stuck()
    await counters.add(processed_files=1)
    reporter.check_stuck()

    assert reporter.stuck_detection_count == 0


@pytest.mark.asyncio
async def test_memory_guard_disabled(logger):
    counters = ProgressCounters()
    guard = MemoryGuard(counters, logger, limit_mb=0)

    await guard.check()

    assert counters["memory_backpressure_events"] == 0


@pytest.mark.asyncio
async def test_memory_guard_applies_back_pressure(logger):
    counters = ProgressCounters()
    # Any running interpreter uses more than 1 MB
    guard = MemoryGuard(counters, logger, limit_mb=1, pause_seconds=0)

    await guard.check()
    await guard.check()

    assert counters["memory_backpressure_events"] == 2


@pytest.mark.asyncio
async def test_walk_completes_under_memory_pressure(temp_dir):
    for i in range(3):
        (temp_dir / f"d{i}").mkdir()
        (temp_dir / f"d{i}" / "f.txt").write_text("x")

    walker = TreeWalker(root_path=str(temp_dir), operation=CountOperation(), memory_limit_mb=1)
    walker.memory_guard.pause_seconds = 0
    stats = await walker.run()

    assert stats["processed_files"] == 3
    assert stats["memory_backpressure_events"] == 4
