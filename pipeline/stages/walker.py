"""
Directory walking: expands input paths into flat, ordered FileEntry lists.
"""

import fnmatch
import logging
import os
import stat
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Set, Tuple, Union

from archive_errors import ArchiveIOError
from base_classes import FileEntry

logger = logging.getLogger(__name__)

FileId = Tuple[int, int]


class DirectoryWalker:
    """
    Depth-first walker with sorted children.

    Entries come out in component-wise lexicographic order of their
    relative path, which is taken from the input's parent so the input's
    own name is the first component.
    """

    def __init__(self, follow_symlinks: bool = False, skip_hidden: bool = False,
                 ignore_patterns: Optional[Sequence[str]] = None):
        self.follow_symlinks = follow_symlinks
        self.skip_hidden = skip_hidden
        self.ignore_patterns = list(ignore_patterns or [])

    def walk(self, path: Union[str, Path],
             exclude: Iterable[Union[str, Path]] = ()) -> List[FileEntry]:
        """
        Expand ``path`` into entries.

        Args:
            path: File or directory given by the user
            exclude: Paths below ``path`` that are never yielded nor
                descended into, usually the output of the current job. The
                input itself is always walked.

        Raises:
            ArchiveIOError: ``path`` or something below it cannot be read
        """
        root = Path(os.path.abspath(path))
        excluded_ids, excluded_paths = self._exclusions(exclude)

        # Paths named explicitly are always followed
        try:
            st = os.stat(root)
        except OSError as e:
            raise ArchiveIOError("Cannot read input", path=root, cause=e) from e

        if not stat.S_ISDIR(st.st_mode):
            return [FileEntry(root, root.name)]

        entries = [FileEntry(root, root.name, is_dir=True)]
        self._walk_dir(root, root.name, {(st.st_dev, st.st_ino)},
                       excluded_ids, excluded_paths, entries)
        logger.debug(f"Walked {root}: {len(entries)} entries")
        return entries

    def _exclusions(self, exclude: Iterable[Union[str, Path]]) -> Tuple[Set[FileId], Set[str]]:
        ids: Set[FileId] = set()
        paths: Set[str] = set()
        for item in exclude:
            try:
                st = os.stat(item)
            except OSError:
                # Not created yet
                paths.add(os.path.realpath(item))
            else:
                ids.add((st.st_dev, st.st_ino))
        return ids, paths

    @staticmethod
    def _is_excluded(path: Path, st: os.stat_result,
                     excluded_ids: Set[FileId], excluded_paths: Set[str]) -> bool:
        if (st.st_dev, st.st_ino) in excluded_ids:
            return True
        return bool(excluded_paths) and os.path.realpath(path) in excluded_paths

    def _is_ignored(self, name: str) -> bool:
        if self.skip_hidden and name.startswith('.'):
            return True
        return any(fnmatch.fnmatch(name, pattern) for pattern in self.ignore_patterns)

    def _walk_dir(self, directory: Path, relative: str, ancestors: Set[FileId],
                  excluded_ids: Set[FileId], excluded_paths: Set[str],
                  entries: List[FileEntry]) -> None:
        try:
            names = sorted(os.listdir(directory))
        except OSError as e:
            raise ArchiveIOError("Cannot read directory", path=directory, cause=e) from e

        for name in names:
            if self._is_ignored(name):
                logger.debug(f"Ignoring {directory / name}")
                continue

            child = directory / name
            child_relative = f"{relative}/{name}"
            try:
                st = os.lstat(child)
            except OSError as e:
                raise ArchiveIOError("Cannot read entry", path=child, cause=e) from e

            if self._is_excluded(child, st, excluded_ids, excluded_paths):
                logger.debug(f"Excluding destination {child}")
                continue

            if stat.S_ISLNK(st.st_mode):
                try:
                    link_target = os.readlink(child)
                except OSError as e:
                    raise ArchiveIOError("Cannot read symlink", path=child, cause=e) from e

                if not self.follow_symlinks:
                    entries.append(FileEntry(child, child_relative,
                                             is_symlink=True, link_target=link_target))
                    continue

                try:
                    st = os.stat(child)
                except OSError:
                    logger.warning(f"Dangling symlink kept as a link: {child}")
                    entries.append(FileEntry(child, child_relative,
                                             is_symlink=True, link_target=link_target))
                    continue

                if self._is_excluded(child, st, excluded_ids, excluded_paths):
                    logger.debug(f"Excluding link to destination {child}")
                    continue
                if stat.S_ISDIR(st.st_mode) and (st.st_dev, st.st_ino) in ancestors:
                    logger.warning(f"Skipping symlink cycle: {child} -> {link_target}")
                    continue

            if stat.S_ISDIR(st.st_mode):
                entries.append(FileEntry(child, child_relative, is_dir=True))
                self._walk_dir(child, child_relative, ancestors | {(st.st_dev, st.st_ino)},
                               excluded_ids, excluded_paths, entries)
            elif stat.S_ISREG(st.st_mode):
                entries.append(FileEntry(child, child_relative))
            else:
                logger.warning(f"Skipping special file: {child}")
