"""
Archive Pipeline Configurations
===============================

Configuration settings for compression and decompression operations,
plus pre-configured presets for common use cases.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional
import logging

import psutil

from base_classes import CodecKind, ConflictDecision

logger = logging.getLogger(__name__)


# Per-codec (min, max) accepted compression levels
LEVEL_RANGES: Dict[CodecKind, tuple] = {
    CodecKind.GZIP: (0, 9),
    CodecKind.BZIP2: (1, 9),
    CodecKind.LZMA: (0, 9),
    CodecKind.LZ4: (0, 16),
    CodecKind.ZSTD: (1, 22),
    CodecKind.ZIP: (0, 9),
    CodecKind.SEVEN_ZIP: (0, 9),
}


def available_parallelism() -> int:
    """Number of CPUs this process may run on"""
    try:
        return max(1, len(psutil.Process().cpu_affinity()))
    except (AttributeError, NotImplementedError, psutil.Error):
        # cpu_affinity() is not available on macOS
        return psutil.cpu_count(logical=True) or 1


@dataclass
class ArchiveConfig:
    """Configuration settings for an archive operation"""

    # Processing settings
    num_workers: Optional[int] = None
    buffer_size: int = 64 * 1024  # 64KB copy buffer

    # Compression settings
    compression_levels: Dict[CodecKind, int] = field(default_factory=dict)

    # Conflict settings
    conflict_default: Optional[ConflictDecision] = None
    interactive: bool = False

    # Walker settings
    follow_symlinks: bool = False
    skip_hidden: bool = False
    ignore_patterns: List[str] = field(default_factory=list)

    # Containers needing random access are buffered in memory up to this size
    spool_max_size: int = 64 * 1024 * 1024  # 64MB

    def __post_init__(self) -> None:
        """Validate configuration parameters"""
        if self.num_workers is not None and self.num_workers <= 0:
            raise ValueError("num_workers must be positive")
        if self.buffer_size <= 0:
            raise ValueError("buffer_size must be positive")
        if self.spool_max_size < 0:
            raise ValueError("spool_max_size cannot be negative")

        for kind, level in self.compression_levels.items():
            if not isinstance(kind, CodecKind):
                raise ValueError(f"Invalid codec in compression_levels: {kind!r}")
            bounds = LEVEL_RANGES.get(kind)
            if bounds is None:
                raise ValueError(f"{kind.value} does not accept a compression level")
            low, high = bounds
            if not low <= level <= high:
                raise ValueError(f"{kind.value} level must be between {low} and {high}")

        if self.conflict_default is not None and not isinstance(self.conflict_default, ConflictDecision):
            raise ValueError(f"Invalid conflict_default: {self.conflict_default!r}")

    @property
    def effective_workers(self) -> int:
        return self.num_workers or available_parallelism()

    def level_for(self, kind: CodecKind) -> Optional[int]:
        """Compression level configured for ``kind``, None for the library default"""
        return self.compression_levels.get(kind)


class ConfigPresets:
    """Pre-configured settings for common use cases"""

    @staticmethod
    def balanced() -> ArchiveConfig:
        """Library default levels for every codec"""
        return ArchiveConfig()

    @staticmethod
    def fast() -> ArchiveConfig:
        """
        Optimized for speed
        - Lowest useful compression levels
        """
        return ArchiveConfig(
            compression_levels={
                CodecKind.GZIP: 1,
                CodecKind.BZIP2: 1,
                CodecKind.LZMA: 0,
                CodecKind.LZ4: 0,
                CodecKind.ZSTD: 1,
                CodecKind.ZIP: 1,
                CodecKind.SEVEN_ZIP: 1,
            }
        )

    @staticmethod
    def smallest() -> ArchiveConfig:
        """
        Optimized for output size
        - Highest compression levels, slowest
        """
        return ArchiveConfig(
            compression_levels={kind: high for kind, (_, high) in LEVEL_RANGES.items()}
        )

    @staticmethod
    def non_interactive(decision: ConflictDecision = ConflictDecision.SKIP) -> ArchiveConfig:
        """Never prompt; resolve every conflict with ``decision``"""
        return ArchiveConfig(conflict_default=decision, interactive=False)
