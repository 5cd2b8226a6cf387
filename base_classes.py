"""
Base Classes for the Archive Pipeline
=====================================

Contains core data structures and abstract capability interfaces used
throughout the pipeline.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import BinaryIO, Callable, Iterable, Iterator, List, Optional, Tuple


class CodecKind(Enum):
    """Every format the pipeline knows how to recognize"""
    GZIP = "gzip"
    BZIP2 = "bzip2"
    LZMA = "lzma"
    LZ4 = "lz4"
    ZSTD = "zstd"
    SNAPPY = "snappy"
    TAR = "tar"
    ZIP = "zip"
    SEVEN_ZIP = "7z"
    RAR = "rar"


class LayerRole(Enum):
    """Whether a layer wraps one byte stream or holds named entries"""
    STREAM = "stream"
    CONTAINER = "container"


@dataclass(frozen=True)
class Layer:
    """One compression or container step of a filename's suffix chain"""
    kind: CodecKind
    role: LayerRole

    @property
    def is_container(self) -> bool:
        return self.role is LayerRole.CONTAINER

    def __str__(self) -> str:
        return f"{self.kind.value}({self.role.value})"


@dataclass(frozen=True)
class ExtensionChain:
    """Ordered layers derived from a filename, outermost first"""
    layers: Tuple[Layer, ...] = ()
    base_name: str = ""

    @property
    def is_empty(self) -> bool:
        return not self.layers

    @property
    def container(self) -> Optional[Layer]:
        if self.layers and self.layers[-1].is_container:
            return self.layers[-1]
        return None

    @property
    def stream_layers(self) -> Tuple[Layer, ...]:
        return tuple(layer for layer in self.layers if not layer.is_container)

    @property
    def kinds(self) -> List[CodecKind]:
        return [layer.kind for layer in self.layers]

    def __len__(self) -> int:
        return len(self.layers)

    def __iter__(self) -> Iterator[Layer]:
        return iter(self.layers)

    def __str__(self) -> str:
        return "[" + ", ".join(str(layer) for layer in self.layers) + "]"


@dataclass(frozen=True)
class FileEntry:
    """A file or directory discovered by the directory walker"""
    absolute_source_path: Path
    relative_path: str  # POSIX form, used as the entry name inside containers
    is_dir: bool = False
    is_symlink: bool = False
    link_target: Optional[str] = None


@dataclass
class EntryMetadata:
    """Metadata carried alongside an entry when the format has it"""
    mtime: Optional[float] = None
    mode: Optional[int] = None  # Unix permission bits
    size: Optional[int] = None


@dataclass
class ArchiveMember:
    """An entry produced by demultiplexing a container"""
    relative_path: str
    is_dir: bool
    metadata: EntryMetadata = field(default_factory=EntryMetadata)
    opener: Optional[Callable[[], BinaryIO]] = None
    is_symlink: bool = False
    link_target: Optional[str] = None

    def open(self) -> BinaryIO:
        """
        Open the member's data.

        Only valid while the demultiplexing iterator that produced the member
        is still running; containers close their archive once it finishes.
        """
        if self.opener is None:
            raise ValueError(f"Member {self.relative_path} has no data stream")
        return self.opener()


class StreamCodec(ABC):
    """Capability wrapping exactly one byte stream"""

    kind: CodecKind

    @abstractmethod
    def decoder(self, reader: BinaryIO) -> BinaryIO:
        """Return a reader yielding the decoded bytes of ``reader``"""

    @abstractmethod
    def encoder(self, writer: BinaryIO, level: Optional[int] = None) -> BinaryIO:
        """Return a writer that encodes into ``writer``; closing it must not close ``writer``"""


class ContainerFormat(ABC):
    """Capability holding multiple named entries"""

    kind: CodecKind
    supports_encode: bool = True
    needs_random_access: bool = False
    needs_real_file: bool = False  # library insists on an on-disk file object

    @abstractmethod
    def demultiplex(self, reader: BinaryIO) -> Iterator[ArchiveMember]:
        """Yield the members of the archive read from ``reader``"""

    @abstractmethod
    def multiplex(self, entries: Iterable[FileEntry], writer: BinaryIO,
                  level: Optional[int] = None,
                  before_entry: Optional[Callable[[FileEntry], None]] = None) -> int:
        """Write ``entries`` into ``writer`` and return how many were stored"""


class ConflictDecision(Enum):
    """What to do when a destination path already exists"""
    SKIP = "skip"
    OVERWRITE = "overwrite"
    OVERWRITE_ALL = "overwrite_all"
    RENAME = "rename"
    ABORT = "abort"


class JobKind(Enum):
    COMPRESS = "compress"
    DECOMPRESS = "decompress"
    LIST = "list"


@dataclass
class Job:
    """One independent unit of work handed to the scheduler"""
    job_id: int
    kind: JobKind
    inputs: List[Path]
    destination: Optional[Path] = None
    chain: Optional[ExtensionChain] = None
    # Outputs already completed; reported if the job later fails
    partial_outputs: List[Path] = field(default_factory=list)

    @property
    def source(self) -> Path:
        return self.inputs[0]


class JobStatus(Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"


@dataclass
class JobResult:
    """Outcome of a single job"""
    job_id: int
    source: Path
    status: JobStatus
    destination: Optional[Path] = None
    error: Optional[Exception] = None
    offending_path: Optional[Path] = None
    entries_written: int = 0
    entries_skipped: int = 0
    bytes_written: int = 0
    duration: float = 0.0
    partial_outputs: List[Path] = field(default_factory=list)
    listing: List[ArchiveMember] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.status is JobStatus.SUCCEEDED

    @property
    def failed(self) -> bool:
        return self.status is JobStatus.FAILED


@dataclass
class OperationSummary:
    """Aggregated results of every job in one operation"""
    results: List[JobResult] = field(default_factory=list)

    @classmethod
    def from_results(cls, results: Iterable[JobResult]) -> 'OperationSummary':
        return cls(results=sorted(results, key=lambda r: r.job_id))

    def _count(self, status: JobStatus) -> int:
        return sum(1 for r in self.results if r.status is status)

    @property
    def succeeded(self) -> int:
        return self._count(JobStatus.SUCCEEDED)

    @property
    def failed(self) -> int:
        return self._count(JobStatus.FAILED)

    @property
    def skipped(self) -> int:
        return self._count(JobStatus.SKIPPED)

    @property
    def cancelled(self) -> int:
        return self._count(JobStatus.CANCELLED)

    @property
    def failures(self) -> List[JobResult]:
        return [r for r in self.results if r.status is JobStatus.FAILED]

    @property
    def success(self) -> bool:
        return self.failed == 0 and self.cancelled == 0

    @property
    def exit_code(self) -> int:
        return 0 if self.success else 1
