"""
Destination writer: puts decoded bytes and archive members on disk.

Every file is written to a temporary sibling and moved into place only
once complete, and every write asks the conflict resolver first.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Iterable, List, Optional, Tuple

from archive_errors import ArchiveError, ArchiveIOError
from base_classes import ArchiveMember, EntryMetadata
from secure_utils import (SecurePath, apply_metadata, atomic_output, atomic_symlink,
                          clear_path)

from .conflicts import ConflictResolver

logger = logging.getLogger(__name__)


def _within(root: Path, path: Path) -> bool:
    real_root = os.path.realpath(root)
    real_path = os.path.realpath(path)
    return real_path == real_root or real_path.startswith(real_root + os.sep)


@dataclass
class WriteStats:
    """Counters for one destination"""
    entries_written: int = 0
    entries_skipped: int = 0
    bytes_written: int = 0

    def merge(self, other: 'WriteStats') -> None:
        self.entries_written += other.entries_written
        self.entries_skipped += other.entries_skipped
        self.bytes_written += other.bytes_written


class DestinationWriter:
    """
    Writes one job's output.

    ``completed`` is shared with the owning job so that outputs finished
    before a failure can be reported.
    """

    def __init__(self, resolver: ConflictResolver, buffer_size: int = 64 * 1024,
                 cancel_token=None, completed: Optional[List[Path]] = None):
        self.resolver = resolver
        self.buffer_size = buffer_size
        self.cancel_token = cancel_token
        self.completed = completed if completed is not None else []

    def _check_cancelled(self, path: Optional[Path] = None) -> None:
        if self.cancel_token is not None:
            self.cancel_token.raise_if_cancelled(path)

    def _copy(self, reader: BinaryIO, writer: BinaryIO) -> int:
        total = 0
        while True:
            chunk = reader.read(self.buffer_size)
            if not chunk:
                return total
            writer.write(chunk)
            total += len(chunk)

    def write_stream(self, reader: BinaryIO, target: Path,
                     metadata: Optional[EntryMetadata] = None) -> int:
        """
        Copy ``reader`` into ``target`` atomically.

        The caller has already resolved conflicts for ``target``.
        """
        self._check_cancelled(target)
        try:
            with atomic_output(target, metadata) as out:
                written = self._copy(reader, out)
        except ArchiveError:
            raise
        except OSError as e:
            raise ArchiveIOError("Cannot write output", path=target, cause=e) from e
        self.completed.append(target)
        logger.debug(f"Wrote {target} ({written} bytes)")
        return written

    def _prepare(self, path: Path) -> Optional[Path]:
        """Resolve a collision at ``path``; None means skip"""
        resolution = self.resolver.resolve(path)
        if resolution.skip:
            return None
        if resolution.overwrite and os.path.isdir(resolution.path) \
                and not os.path.islink(resolution.path):
            clear_path(resolution.path)
        return resolution.path

    def extract(self, members: Iterable[ArchiveMember], root: Path) -> WriteStats:
        """
        Write archive members below ``root``, in archive order.

        Members whose names would escape ``root`` are skipped. Directory
        metadata is restored last so that writing children does not undo it.
        """
        stats = WriteStats()
        directories: List[Tuple[Path, EntryMetadata]] = []

        for member in members:
            self._check_cancelled(root)

            try:
                path = SecurePath.join_safe(root, member.relative_path)
            except ValueError as e:
                logger.warning(f"Skipping unsafe entry: {e}")
                stats.entries_skipped += 1
                continue

            if not _within(root, path.parent):
                logger.warning(f"Skipping entry behind a symlink: {member.relative_path}")
                stats.entries_skipped += 1
                continue

            try:
                if member.is_dir:
                    if not os.path.isdir(path):
                        if os.path.lexists(path):
                            target = self._prepare(path)
                            if target is None:
                                stats.entries_skipped += 1
                                continue
                            if os.path.lexists(target):
                                clear_path(target)
                            path = target
                        path.mkdir(parents=True, exist_ok=True)
                    directories.append((path, member.metadata))
                    stats.entries_written += 1
                    continue

                path.parent.mkdir(parents=True, exist_ok=True)
                target = self._prepare(path)
                if target is None:
                    stats.entries_skipped += 1
                    continue

                if member.is_symlink:
                    atomic_symlink(member.link_target or '', target)
                else:
                    with member.open() as src:
                        with atomic_output(target, member.metadata) as out:
                            stats.bytes_written += self._copy(src, out)
            except ArchiveError:
                raise
            except OSError as e:
                raise ArchiveIOError("Cannot write entry", path=path, cause=e) from e

            stats.entries_written += 1
            self.completed.append(target)
            logger.debug(f"Extracted {member.relative_path}")

        for path, metadata in reversed(directories):
            try:
                apply_metadata(path, metadata)
            except OSError as e:
                logger.warning(f"Cannot restore metadata of {path}: {e}")

        return stats
