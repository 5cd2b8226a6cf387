"""
Pipeline construction: composes codec capabilities into a decode or encode
pipeline for one extension chain.

Decode peels stream layers outermost first and hands the innermost stream
to the container (if any). Encode wraps stream encoders around the
destination outermost first, so the innermost encoder receives the
container bytes.
"""

import io
import logging
import os
import shutil
import tempfile
from contextlib import ExitStack, contextmanager
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import BinaryIO, Callable, Iterable, Iterator, List, Optional, Union

from archive_configs import ArchiveConfig
from archive_errors import ArchiveError, ArchiveIOError, CodecError, UnrecognizedFormat
from base_classes import (ArchiveMember, ContainerFormat, ExtensionChain, FileEntry,
                          Layer, StreamCodec)
from formats.extensions import check_layer_order
from formats.registry import FormatRegistry, get_format_registry

logger = logging.getLogger(__name__)


class Direction(Enum):
    DECODE = "decode"
    ENCODE = "encode"


def translate_error(error: BaseException, stage: str, path: Optional[Path],
                    io_errors: bool = False) -> ArchiveError:
    """
    Map a library exception raised inside ``stage`` to the error taxonomy.

    Pipeline errors pass through unchanged. With ``io_errors`` an OSError
    is a filesystem failure rather than malformed data.
    """
    if isinstance(error, ArchiveError):
        return error
    if io_errors and isinstance(error, OSError):
        return ArchiveIOError(f"I/O error in {stage} stage",
                              path=getattr(error, 'filename', None) or path, cause=error)
    return CodecError(f"{stage} stage failed", path=path, cause=error, stage=stage)


class _FileGuard(io.RawIOBase):
    """Bottom of a stream chain: filesystem errors become ArchiveIOError"""

    def __init__(self, raw: BinaryIO, path: Optional[Path]):
        super().__init__()
        self._raw = raw
        self._path = path

    def readable(self) -> bool:
        return self._raw.readable()

    def writable(self) -> bool:
        return self._raw.writable()

    def readinto(self, b) -> int:
        try:
            data = self._raw.read(len(b))
        except OSError as e:
            raise ArchiveIOError("Read failed", path=self._path, cause=e) from e
        size = len(data)
        b[:size] = data
        return size

    def write(self, b) -> int:
        try:
            self._raw.write(b)
        except OSError as e:
            raise ArchiveIOError("Write failed", path=self._path, cause=e) from e
        return len(b)

    def flush(self) -> None:
        if self.closed:
            return
        try:
            self._raw.flush()
        except OSError as e:
            raise ArchiveIOError("Flush failed", path=self._path, cause=e) from e


class _StageReader(io.RawIOBase):
    """Reader over one stage; anything the stage raises is translated"""

    def __init__(self, inner: BinaryIO, stage: str, path: Optional[Path],
                 io_errors: bool = False):
        super().__init__()
        self._inner = inner
        self._stage = stage
        self._path = path
        self._io_errors = io_errors

    def readable(self) -> bool:
        return True

    def readinto(self, b) -> int:
        try:
            data = self._inner.read(len(b))
        except ArchiveError:
            raise
        except Exception as e:
            raise translate_error(e, self._stage, self._path, self._io_errors) from e
        size = len(data)
        b[:size] = data
        return size

    def close(self) -> None:
        if not self.closed:
            try:
                self._inner.close()
            finally:
                super().close()


class _StageWriter(io.RawIOBase):
    """
    Writer over one stage.

    Not seekable and without ``tell`` on purpose: containers writing into a
    compressed stream must not try to seek back.
    """

    def __init__(self, inner: BinaryIO, stage: str, path: Optional[Path]):
        super().__init__()
        self._inner = inner
        self._stage = stage
        self._path = path

    def writable(self) -> bool:
        return True

    def write(self, b) -> int:
        try:
            self._inner.write(b)
        except ArchiveError:
            raise
        except Exception as e:
            raise translate_error(e, self._stage, self._path) from e
        return len(b)

    def flush(self) -> None:
        # Encoders are finished on close; flushing mid-stream would add sync blocks
        pass

    def close(self) -> None:
        if not self.closed:
            try:
                self._inner.close()
            except ArchiveError:
                raise
            except Exception as e:
                raise translate_error(e, self._stage, self._path) from e
            finally:
                super().close()


@dataclass
class Stage:
    """A chain layer bound to the capability that implements it"""
    layer: Layer
    capability: Union[StreamCodec, ContainerFormat]

    @property
    def name(self) -> str:
        return self.layer.kind.value


class _Pipeline:
    def __init__(self, chain: ExtensionChain, stages: List[Stage], config: ArchiveConfig):
        self.chain = chain
        self.stages = stages
        self.config = config

    @property
    def stream_stages(self) -> List[Stage]:
        return [stage for stage in self.stages if not stage.layer.is_container]

    @property
    def container_stage(self) -> Optional[Stage]:
        if self.stages and self.stages[-1].layer.is_container:
            return self.stages[-1]
        return None

    def __repr__(self) -> str:
        return f"{type(self).__name__}({' -> '.join(s.name for s in self.stages)})"


class DecodePipeline(_Pipeline):
    """Reads a compressed file back into a byte stream or archive members"""

    @contextmanager
    def open_reader(self, source: Path) -> Iterator[BinaryIO]:
        """
        Open ``source`` and peel every stream layer.

        Yields the innermost stream: container bytes when the chain ends in
        a container, the original file contents otherwise.
        """
        source = Path(source)
        with ExitStack() as stack:
            try:
                raw = stack.enter_context(open(source, 'rb'))
            except OSError as e:
                raise ArchiveIOError("Cannot open input", path=source, cause=e) from e

            if not self.stream_stages:
                yield raw
                return

            reader: BinaryIO = stack.enter_context(
                io.BufferedReader(_FileGuard(raw, source), self.config.buffer_size))
            for stage in self.stream_stages:
                try:
                    decoded = stage.capability.decoder(reader)
                except ArchiveError:
                    raise
                except Exception as e:
                    raise translate_error(e, stage.name, source) from e
                reader = stack.enter_context(io.BufferedReader(
                    _StageReader(decoded, stage.name, source), self.config.buffer_size))
            yield reader

    def members(self, reader: BinaryIO, source: Optional[Path] = None) -> Iterator[ArchiveMember]:
        """
        Demultiplex the peeled stream into members.

        Member readers translate library errors too. Close the iterator
        (or exhaust it) to release spooled data.
        """
        stage = self.container_stage
        if stage is None:
            raise UnrecognizedFormat(f"{self.chain} has no container to list", path=source)
        container: ContainerFormat = stage.capability

        with ExitStack() as stack:
            if container.needs_random_access and not _is_seekable(reader):
                reader = stack.enter_context(self._spool(reader, container, source))

            iterator = container.demultiplex(reader)
            stack.callback(iterator.close)
            while True:
                try:
                    member = next(iterator)
                except StopIteration:
                    return
                except ArchiveError:
                    raise
                except Exception as e:
                    raise translate_error(e, stage.name, source, io_errors=True) from e
                yield self._guard_member(member, stage, source)

    @contextmanager
    def _spool(self, reader: BinaryIO, container: ContainerFormat,
               source: Optional[Path]) -> Iterator[BinaryIO]:
        logger.warning(f"{container.kind.value} archive behind a compression layer is "
                       f"buffered before extraction: {source}")
        if container.needs_real_file:
            spool = scratch_file(f'.{container.kind.value}')
        else:
            spool = tempfile.SpooledTemporaryFile(max_size=self.config.spool_max_size,
                                                  prefix='archive_spool_')
        with spool as spooled:
            try:
                shutil.copyfileobj(reader, spooled, self.config.buffer_size)
                spooled.seek(0)
            except OSError as e:
                raise ArchiveIOError("Cannot buffer archive", path=source, cause=e) from e
            yield spooled

    @staticmethod
    def _guard_member(member: ArchiveMember, stage: Stage,
                      source: Optional[Path]) -> ArchiveMember:
        if member.opener is None:
            return member
        opener = member.opener

        def open_guarded() -> BinaryIO:
            try:
                inner = opener()
            except ArchiveError:
                raise
            except Exception as e:
                raise translate_error(e, stage.name, source, io_errors=True) from e
            return _StageReader(inner, stage.name, source, io_errors=True)

        member.opener = open_guarded
        return member


class EncodePipeline(_Pipeline):
    """Writes entries (or a single file) through the chain's encoders"""

    @contextmanager
    def open_writer(self, target: BinaryIO, path: Optional[Path] = None) -> Iterator[BinaryIO]:
        """
        Wrap stream encoders around ``target``, outermost first.

        Closing happens innermost first on exit, so every encoder finishes
        its frame before the one around it. ``target`` itself is not closed.
        """
        if not self.stream_stages:
            yield target
            return

        with ExitStack() as stack:
            writer: BinaryIO = _FileGuard(target, path)
            stack.callback(writer.flush)
            for stage in self.stream_stages:
                level = self.config.level_for(stage.layer.kind)
                try:
                    encoded = stage.capability.encoder(writer, level)
                except ArchiveError:
                    raise
                except Exception as e:
                    raise translate_error(e, stage.name, path) from e
                writer = stack.enter_context(_StageWriter(encoded, stage.name, path))
            yield writer

    def write_entries(self, entries: Iterable[FileEntry], writer: BinaryIO,
                      path: Optional[Path] = None,
                      before_entry: Optional[Callable[[FileEntry], None]] = None) -> int:
        """Multiplex ``entries`` into ``writer`` with the container stage"""
        stage = self.container_stage
        if stage is None:
            raise UnrecognizedFormat(f"{self.chain} has no container to hold entries", path=path)
        container: ContainerFormat = stage.capability
        level = self.config.level_for(stage.layer.kind)

        try:
            if not container.needs_real_file:
                return container.multiplex(entries, writer, level, before_entry)

            with scratch_file(f'.{container.kind.value}') as spool:
                count = container.multiplex(entries, spool, level, before_entry)
                spool.seek(0)
                shutil.copyfileobj(spool, writer, self.config.buffer_size)
                return count
        except ArchiveError:
            raise
        except Exception as e:
            raise translate_error(e, stage.name, path, io_errors=True) from e

    def write_single(self, source: Path, writer: BinaryIO) -> int:
        """Copy one file into a stream-only chain; returns bytes read"""
        total = 0
        try:
            with open(source, 'rb') as src:
                while True:
                    chunk = src.read(self.config.buffer_size)
                    if not chunk:
                        break
                    writer.write(chunk)
                    total += len(chunk)
        except OSError as e:
            raise ArchiveIOError("Cannot read input", path=source, cause=e) from e
        return total


@contextmanager
def scratch_file(suffix: str = '') -> Iterator[BinaryIO]:
    """Named on-disk temporary file, removed on exit"""
    fd, name = tempfile.mkstemp(prefix='archive_spool_', suffix=suffix)
    os.close(fd)
    try:
        with open(name, 'w+b') as f:
            yield f
    finally:
        os.unlink(name)


def _is_seekable(stream: BinaryIO) -> bool:
    try:
        return stream.seekable()
    except (AttributeError, ValueError):
        return False


class PipelineBuilder:
    """Binds each layer of a chain to its capability"""

    def __init__(self, registry: Optional[FormatRegistry] = None,
                 config: Optional[ArchiveConfig] = None):
        self.registry = registry or get_format_registry()
        self.config = config or ArchiveConfig()

    def build(self, chain: ExtensionChain, direction: Direction,
              path: Optional[Path] = None) -> Union[DecodePipeline, EncodePipeline]:
        """
        Build the pipeline for ``chain``.

        Raises:
            UnrecognizedFormat: empty chain, a chain with more than one
                container or a container that is not innermost, or encoding
                into a decode-only container
        """
        if chain.is_empty:
            raise UnrecognizedFormat("Nothing to build for an empty chain", path=path)
        check_layer_order(chain, path)

        stages = []
        for layer in chain.layers:
            if layer.is_container:
                capability = self.registry.container(layer.kind)
                if direction is Direction.ENCODE and not capability.supports_encode:
                    raise UnrecognizedFormat(
                        f"{layer.kind.value} archives can only be decompressed", path=path)
            else:
                capability = self.registry.stream_codec(layer.kind)
            stages.append(Stage(layer, capability))

        pipeline_cls = DecodePipeline if direction is Direction.DECODE else EncodePipeline
        pipeline = pipeline_cls(chain, stages, self.config)
        logger.debug(f"Built {pipeline}")
        return pipeline
