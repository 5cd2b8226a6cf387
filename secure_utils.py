"""
Secure Utilities Module
=======================

Safe file operations for writing archive output: traversal-safe entry
paths, atomic temp-then-replace writes and metadata restoration.
"""

import os
import secrets
import shutil
from contextlib import contextmanager
from pathlib import Path, PurePosixPath
from typing import BinaryIO, Iterator, Optional
import logging

from base_classes import EntryMetadata

logger = logging.getLogger(__name__)


class SecurePath:
    """Secure path operations with validation"""

    @staticmethod
    def join_safe(root: Path, relative: str) -> Path:
        """
        Join an archive entry name onto ``root``, refusing traversal.

        Raises:
            ValueError: absolute names, names with ``..`` components or
                names that reduce to nothing
        """
        normalized = relative.replace('\\', '/')
        posix = PurePosixPath(normalized)
        if posix.is_absolute() or (len(normalized) > 1 and normalized[1] == ':'):
            raise ValueError(f"Absolute entry path: {relative}")

        safe_parts = []
        for part in posix.parts:
            if part == '..':
                raise ValueError(f"Entry path escapes the destination: {relative}")
            if part and part != '.':
                safe_parts.append(part)

        if not safe_parts:
            raise ValueError(f"Empty entry path: {relative!r}")

        return Path(root, *safe_parts)


def temp_sibling(target_path: Path) -> Path:
    """Hidden temporary name next to ``target_path``"""
    return target_path.with_name(f".{target_path.name}.tmp.{secrets.token_hex(8)}")


def apply_metadata(path: Path, metadata: Optional[EntryMetadata]) -> None:
    """Restore permission bits and modification time where known"""
    if metadata is None:
        return
    if metadata.mode is not None:
        os.chmod(path, metadata.mode)
    if metadata.mtime is not None:
        os.utime(path, (metadata.mtime, metadata.mtime))


def _discard(temp_path: Path) -> None:
    try:
        if os.path.lexists(temp_path):
            temp_path.unlink()
    except OSError as e:
        logger.warning(f"Failed to remove temp file {temp_path}: {e}")


@contextmanager
def atomic_output(target_path: Path,
                  metadata: Optional[EntryMetadata] = None) -> Iterator[BinaryIO]:
    """
    Write ``target_path`` through a temporary sibling.

    The temporary file is moved over the target only when the block exits
    cleanly; on error it is removed and the target is left untouched.
    """
    target_path = Path(target_path)
    temp_path = temp_sibling(target_path)

    try:
        with open(temp_path, 'wb') as f:
            yield f
        apply_metadata(temp_path, metadata)
        os.replace(temp_path, target_path)
    except BaseException:
        _discard(temp_path)
        raise


def atomic_symlink(link_target: str, target_path: Path) -> None:
    """Create (or replace) a symlink in one step"""
    temp_path = temp_sibling(Path(target_path))
    try:
        os.symlink(link_target, temp_path)
        os.replace(temp_path, target_path)
    except BaseException:
        _discard(temp_path)
        raise


def clear_path(path: Path) -> None:
    """Remove whatever is at ``path`` so it can be written afresh"""
    if os.path.isdir(path) and not os.path.islink(path):
        shutil.rmtree(path)
    elif os.path.lexists(path):
        os.unlink(path)
