"""
Container format capabilities.

Containers terminate a chain: they turn the fully decoded byte stream into
named entries and back.
"""

import logging
import os
import stat
import tarfile
import tempfile
import time
import zipfile
from pathlib import Path
from typing import BinaryIO, Callable, Iterable, Iterator, Optional

import py7zr
import rarfile

from archive_errors import UnrecognizedFormat
from base_classes import ArchiveMember, CodecKind, ContainerFormat, EntryMetadata, FileEntry

logger = logging.getLogger(__name__)


def _entry_metadata(path: Path, follow_symlinks: bool = True) -> EntryMetadata:
    st = os.stat(path, follow_symlinks=follow_symlinks)
    return EntryMetadata(mtime=st.st_mtime, mode=stat.S_IMODE(st.st_mode), size=st.st_size)


class TarContainer(ContainerFormat):
    """POSIX tar, read and written as a forward-only stream"""
    kind = CodecKind.TAR

    def demultiplex(self, reader: BinaryIO) -> Iterator[ArchiveMember]:
        with tarfile.open(fileobj=reader, mode='r|') as tf:
            for info in tf:
                metadata = EntryMetadata(mtime=float(info.mtime), mode=info.mode & 0o7777,
                                         size=info.size)
                if info.isdir():
                    yield ArchiveMember(info.name, True, metadata)
                elif info.issym():
                    yield ArchiveMember(info.name, False, metadata,
                                        is_symlink=True, link_target=info.linkname)
                elif info.isfile():
                    yield ArchiveMember(info.name, False, metadata,
                                        opener=lambda member=info: tf.extractfile(member))
                else:
                    logger.warning(f"Skipping unsupported tar member type: {info.name}")

    def multiplex(self, entries: Iterable[FileEntry], writer: BinaryIO,
                  level: Optional[int] = None,
                  before_entry: Optional[Callable[[FileEntry], None]] = None) -> int:
        count = 0
        with tarfile.open(fileobj=writer, mode='w|', format=tarfile.PAX_FORMAT) as tf:
            for entry in entries:
                if before_entry:
                    before_entry(entry)

                info = tarfile.TarInfo(entry.relative_path)
                if entry.is_symlink:
                    metadata = _entry_metadata(entry.absolute_source_path, follow_symlinks=False)
                    info.type = tarfile.SYMTYPE
                    info.linkname = entry.link_target or ''
                    info.mode = 0o777
                    info.mtime = int(metadata.mtime)
                    tf.addfile(info)
                elif entry.is_dir:
                    metadata = _entry_metadata(entry.absolute_source_path)
                    info.type = tarfile.DIRTYPE
                    info.mode = metadata.mode
                    info.mtime = int(metadata.mtime)
                    tf.addfile(info)
                else:
                    metadata = _entry_metadata(entry.absolute_source_path)
                    info.size = metadata.size
                    info.mode = metadata.mode
                    info.mtime = int(metadata.mtime)
                    with open(entry.absolute_source_path, 'rb') as src:
                        tf.addfile(info, src)
                count += 1
                logger.debug(f"Added to tar: {entry.relative_path}")
        return count


class ZipContainer(ContainerFormat):
    """Zip archives; reading needs a seekable stream"""
    kind = CodecKind.ZIP
    needs_random_access = True

    def demultiplex(self, reader: BinaryIO) -> Iterator[ArchiveMember]:
        with zipfile.ZipFile(reader) as zf:
            for info in zf.infolist():
                mode = None
                if info.create_system == 3:  # Unix
                    mode = info.external_attr >> 16
                mtime = time.mktime(info.date_time + (0, 0, -1))
                metadata = EntryMetadata(mtime=mtime,
                                         mode=stat.S_IMODE(mode) if mode else None,
                                         size=info.file_size)
                if info.is_dir():
                    yield ArchiveMember(info.filename, True, metadata)
                elif mode is not None and stat.S_ISLNK(mode):
                    target = zf.read(info).decode('utf-8')
                    yield ArchiveMember(info.filename, False, metadata,
                                        is_symlink=True, link_target=target)
                else:
                    yield ArchiveMember(info.filename, False, metadata,
                                        opener=lambda member=info: zf.open(member))

    def multiplex(self, entries: Iterable[FileEntry], writer: BinaryIO,
                  level: Optional[int] = None,
                  before_entry: Optional[Callable[[FileEntry], None]] = None) -> int:
        count = 0
        with zipfile.ZipFile(writer, 'w', compression=zipfile.ZIP_DEFLATED,
                             compresslevel=level, strict_timestamps=False) as zf:
            for entry in entries:
                if before_entry:
                    before_entry(entry)

                if entry.is_symlink:
                    info = zipfile.ZipInfo(entry.relative_path)
                    info.create_system = 3
                    info.external_attr = (stat.S_IFLNK | 0o777) << 16
                    zf.writestr(info, (entry.link_target or '').encode('utf-8'))
                else:
                    zf.write(entry.absolute_source_path, arcname=entry.relative_path)
                count += 1
                logger.debug(f"Added to zip: {entry.relative_path}")
        return count


class SevenZipContainer(ContainerFormat):
    """7z archives through py7zr; members are unpacked to a scratch directory"""
    kind = CodecKind.SEVEN_ZIP
    needs_random_access = True
    needs_real_file = True

    def demultiplex(self, reader: BinaryIO) -> Iterator[ArchiveMember]:
        with tempfile.TemporaryDirectory(prefix='archive_7z_') as scratch:
            with py7zr.SevenZipFile(reader, mode='r') as archive:
                names = archive.getnames()
                archive.extractall(path=scratch)

            root = Path(scratch)
            for name in names:
                path = root / name
                if path.is_symlink():
                    yield ArchiveMember(name, False, _entry_metadata(path, follow_symlinks=False),
                                        is_symlink=True, link_target=os.readlink(path))
                elif path.is_dir():
                    yield ArchiveMember(name, True, _entry_metadata(path))
                elif path.exists():
                    yield ArchiveMember(name, False, _entry_metadata(path),
                                        opener=lambda p=path: open(p, 'rb'))

    def multiplex(self, entries: Iterable[FileEntry], writer: BinaryIO,
                  level: Optional[int] = None,
                  before_entry: Optional[Callable[[FileEntry], None]] = None) -> int:
        filters = None
        if level is not None:
            filters = [{'id': py7zr.FILTER_LZMA2, 'preset': level}]

        count = 0
        with py7zr.SevenZipFile(writer, mode='w', filters=filters, dereference=True) as archive:
            for entry in entries:
                if before_entry:
                    before_entry(entry)
                if entry.is_symlink:
                    logger.warning(f"7z output does not keep symlinks, skipping: {entry.relative_path}")
                    continue
                archive.write(entry.absolute_source_path, arcname=entry.relative_path)
                count += 1
                logger.debug(f"Added to 7z: {entry.relative_path}")
        return count


class RarContainer(ContainerFormat):
    """RAR archives, decode only"""
    kind = CodecKind.RAR
    supports_encode = False
    needs_random_access = True
    needs_real_file = True

    def demultiplex(self, reader: BinaryIO) -> Iterator[ArchiveMember]:
        with rarfile.RarFile(reader) as rf:
            for info in rf.infolist():
                mtime = time.mktime(tuple(info.date_time) + (0, 0, -1)) if info.date_time else None
                metadata = EntryMetadata(mtime=mtime, size=info.file_size)
                if info.is_dir():
                    yield ArchiveMember(info.filename, True, metadata)
                elif info.is_symlink():
                    yield ArchiveMember(info.filename, False, metadata, is_symlink=True,
                                        link_target=rf.read(info).decode('utf-8'))
                else:
                    yield ArchiveMember(info.filename, False, metadata,
                                        opener=lambda member=info: rf.open(member))

    def multiplex(self, entries: Iterable[FileEntry], writer: BinaryIO,
                  level: Optional[int] = None,
                  before_entry: Optional[Callable[[FileEntry], None]] = None) -> int:
        raise UnrecognizedFormat("RAR archives can only be decompressed")
