"""Tests for the directory listing backends."""

import os
import stat

import pytest

from lfswalk.listing import LfsFindLister, ListingError, ScandirLister, make_lister
from lfswalk.operations import CountOperation
from lfswalk.walker import TreeWalker


@pytest.fixture
def fake_lfs(temp_dir):
    """An 'lfs' that answers 'lfs find ...' with GNU find."""
    script = temp_dir / "bin" / "lfs"
    script.parent.mkdir()
    script.write_text('#!/bin/sh\nshift\nexec find "$@"\n')
    script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return str(script)


@pytest.fixture
def listing_tree(temp_dir):
    root = temp_dir / "tree"
    (root / "d1").mkdir(parents=True)
    (root / "d2").mkdir()
    (root / "f1.txt").write_text("1")
    (root / "f2.txt").write_text("2")
    os.symlink(root / "d1", root / "dlink")
    (root / "d1" / "nested.txt").write_text("n")
    return root


@pytest.mark.asyncio
async def test_scandir_lister(listing_tree):
    dirs, files = await ScandirLister().list(listing_tree)

    assert sorted(dirs) == [str(listing_tree / "d1"), str(listing_tree / "d2")]
    assert sorted(files) == [str(listing_tree / "dlink"), str(listing_tree / "f1.txt"), str(listing_tree / "f2.txt")]


@pytest.mark.asyncio
async def test_scandir_lister_missing_directory(temp_dir):
    with pytest.raises(OSError):
        await ScandirLister().list(temp_dir / "missing")


@pytest.mark.asyncio
async def test_lfs_find_lister_matches_scandir(listing_tree, fake_lfs):
    lfs_dirs, lfs_files = await LfsFindLister(fake_lfs).list(listing_tree)
    scan_dirs, scan_files = await ScandirLister().list(listing_tree)

    assert str(listing_tree) not in lfs_dirs
    assert sorted(lfs_dirs) == sorted(scan_dirs)
    assert sorted(lfs_files) == sorted(scan_files)


@pytest.mark.asyncio
async def test_lfs_find_lister_failure(temp_dir):
    with pytest.raises(ListingError, match="exited with"):
        await LfsFindLister("false").list(temp_dir)


@pytest.mark.asyncio
async def test_lfs_find_lister_missing_command(temp_dir):
    with pytest.raises(ListingError):
        await LfsFindLister(str(temp_dir / "no-such-lfs")).list(temp_dir)


@pytest.mark.asyncio
async def test_walk_with_lfs_find_lister(listing_tree, fake_lfs):
    walker = TreeWalker(root_path=str(listing_tree), operation=CountOperation(), lister=LfsFindLister(fake_lfs))
    stats = await walker.run()

    assert stats["total_files"] == stats["processed_files"] == 4
    assert stats["total_dirs"] == stats["processed_dirs"] == 3


def test_make_lister():
    assert isinstance(make_lister("scandir"), ScandirLister)
    lister = make_lister("lfs", lfs_command="/opt/lustre/bin/lfs")
    assert isinstance(lister, LfsFindLister)
    assert lister.command == "/opt/lustre/bin/lfs"
    with pytest.raises(ValueError):
        make_lister("ftw")
