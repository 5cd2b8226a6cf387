"""
Shared fixtures for the archive pipeline tests.
"""

import shutil
import tempfile
from pathlib import Path

import pytest

from archive_configs import ArchiveConfig
from base_classes import ConflictDecision


@pytest.fixture
def temp_dir():
    """Create a temporary directory for testing."""
    tmp_dir = Path(tempfile.mkdtemp())
    yield tmp_dir
    shutil.rmtree(tmp_dir, ignore_errors=True)


@pytest.fixture
def sample_tree(temp_dir):
    """A small project directory with nested, empty and binary content."""
    root = temp_dir / "project"
    (root / "src" / "pkg").mkdir(parents=True)
    (root / "src" / "pkg" / "__init__.py").write_text("")
    (root / "src" / "main.py").write_text("print('hello')\n")
    (root / "docs").mkdir()
    (root / "docs" / "readme.txt").write_text("documentation line\n" * 200)
    (root / "empty").mkdir()
    (root / "data.bin").write_bytes(bytes(range(256)) * 64)
    return root


@pytest.fixture
def skip_config():
    """Non-interactive configuration that skips existing outputs."""
    return ArchiveConfig(num_workers=2, conflict_default=ConflictDecision.SKIP)


def tree_contents(root: Path) -> dict:
    """Map of relative path -> bytes (None for directories) below ``root``."""
    contents = {}
    for path in sorted(root.rglob('*')):
        relative = path.relative_to(root).as_posix()
        contents[relative] = None if path.is_dir() else path.read_bytes()
    return contents


@pytest.fixture
def snapshot():
    """Function returning the contents of a directory tree for comparison."""
    return tree_contents
