"""Pytest configuration to ensure tests use local source code."""

import os
import sys
import tempfile
from pathlib import Path

import pytest

# Add src directory to Python path to ensure tests use local source code
# instead of installed package
src_path = Path(__file__).parent.parent / "src"
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def sample_tree(temp_dir):
    """
    Small mixed tree under temp_dir/src.

    src/
      a.txt, b.bin
      sub1/ c.txt
      sub1/deep/ d.txt, link -> ../data
      sub2/ (empty)
    """
    src = temp_dir / "src"
    (src / "sub1" / "deep").mkdir(parents=True)
    (src / "sub2").mkdir()
    (src / "a.txt").write_text("alpha")
    (src / "b.bin").write_bytes(os.urandom(4096))
    (src / "sub1" / "c.txt").write_text("charlie" * 100)
    (src / "sub1" / "deep" / "d.txt").write_text("delta")
    os.symlink("../data", src / "sub1" / "deep" / "link")
    return src
