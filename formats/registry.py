"""
Format Registry
===============

Closed table of the formats the pipeline recognizes: which filename
suffixes map to which layers, and which capability implements each layer.
Adding a format is one ``FormatInfo`` entry plus its capability class.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple, Union

from base_classes import CodecKind, ContainerFormat, Layer, LayerRole, StreamCodec

logger = logging.getLogger(__name__)


@dataclass
class FormatInfo:
    """Information about one recognized format"""
    kind: CodecKind
    role: LayerRole
    suffixes: List[str]  # without the leading dot
    factory: Callable[[], Union[StreamCodec, ContainerFormat]]
    tar_shorthands: List[str] = field(default_factory=list)  # e.g. "tgz" == "tar.gz"
    decode_only: bool = False

    @property
    def layer(self) -> Layer:
        return Layer(self.kind, self.role)


def _builtin_formats() -> List[FormatInfo]:
    from .containers import RarContainer, SevenZipContainer, TarContainer, ZipContainer
    from .streams import (Bzip2Codec, GzipCodec, Lz4Codec, LzmaCodec,
                          SnappyCodec, ZstdCodec)

    return [
        FormatInfo(CodecKind.TAR, LayerRole.CONTAINER, ["tar"], TarContainer),
        FormatInfo(CodecKind.ZIP, LayerRole.CONTAINER, ["zip"], ZipContainer),
        FormatInfo(CodecKind.SEVEN_ZIP, LayerRole.CONTAINER, ["7z"], SevenZipContainer),
        FormatInfo(CodecKind.RAR, LayerRole.CONTAINER, ["rar"], RarContainer,
                   decode_only=True),
        FormatInfo(CodecKind.GZIP, LayerRole.STREAM, ["gz"], GzipCodec,
                   tar_shorthands=["tgz"]),
        FormatInfo(CodecKind.BZIP2, LayerRole.STREAM, ["bz2", "bz"], Bzip2Codec,
                   tar_shorthands=["tbz", "tbz2"]),
        FormatInfo(CodecKind.LZMA, LayerRole.STREAM, ["xz", "lzma", "lz"], LzmaCodec,
                   tar_shorthands=["txz", "tlzma"]),
        FormatInfo(CodecKind.ZSTD, LayerRole.STREAM, ["zst"], ZstdCodec,
                   tar_shorthands=["tzst"]),
        FormatInfo(CodecKind.LZ4, LayerRole.STREAM, ["lz4"], Lz4Codec,
                   tar_shorthands=["tlz4"]),
        FormatInfo(CodecKind.SNAPPY, LayerRole.STREAM, ["sz"], SnappyCodec,
                   tar_shorthands=["tsz"]),
    ]


class FormatRegistry:
    """
    Central registry mapping suffixes to layers and layers to capabilities.

    The suffix table holds single suffixes ("gz"), compound suffixes
    ("tar.gz") and tar shorthands ("tgz"); each maps to the layers it
    stands for, outermost first.
    """

    def __init__(self, formats: Optional[List[FormatInfo]] = None):
        self._formats: Dict[CodecKind, FormatInfo] = {}
        self._suffix_table: Dict[str, Tuple[Layer, ...]] = {}
        self._capabilities: Dict[CodecKind, Union[StreamCodec, ContainerFormat]] = {}

        for info in formats if formats is not None else _builtin_formats():
            self._register_format(info)

    def _register_format(self, info: FormatInfo) -> None:
        if info.kind in self._formats:
            raise ValueError(f"Format {info.kind.value} registered twice")
        self._formats[info.kind] = info

        for suffix in info.suffixes:
            self._add_suffix(suffix, (info.layer,))

        if info.role is LayerRole.STREAM:
            tar = Layer(CodecKind.TAR, LayerRole.CONTAINER)
            for suffix in info.suffixes:
                self._add_suffix(f"tar.{suffix}", (info.layer, tar))
            for shorthand in info.tar_shorthands:
                self._add_suffix(shorthand, (info.layer, tar))

    def _add_suffix(self, suffix: str, layers: Tuple[Layer, ...]) -> None:
        suffix = suffix.lower()
        existing = self._suffix_table.get(suffix)
        if existing is not None and existing != layers:
            raise ValueError(f"Suffix .{suffix} is already mapped to {existing}")
        self._suffix_table[suffix] = layers

    @property
    def suffix_table(self) -> Dict[str, Tuple[Layer, ...]]:
        return dict(self._suffix_table)

    def match_suffix(self, name: str) -> Optional[Tuple[int, Tuple[Layer, ...]]]:
        """
        Find the longest recognized suffix at the end of ``name``.

        Returns:
            (characters consumed including the dot, layers) or None. A match
            never consumes the whole name.
        """
        lowered = name.lower()
        best: Optional[Tuple[int, Tuple[Layer, ...]]] = None
        for suffix, layers in self._suffix_table.items():
            dotted = '.' + suffix
            if len(lowered) > len(dotted) and lowered.endswith(dotted):
                if best is None or len(dotted) > best[0]:
                    best = (len(dotted), layers)
        return best

    def info(self, kind: CodecKind) -> FormatInfo:
        return self._formats[kind]

    def formats(self) -> List[FormatInfo]:
        return list(self._formats.values())

    def capability(self, kind: CodecKind) -> Union[StreamCodec, ContainerFormat]:
        """Capability instance for ``kind``, created on first use"""
        if kind not in self._capabilities:
            self._capabilities[kind] = self._formats[kind].factory()
        return self._capabilities[kind]

    def stream_codec(self, kind: CodecKind) -> StreamCodec:
        codec = self.capability(kind)
        if not isinstance(codec, StreamCodec):
            raise TypeError(f"{kind.value} is not a stream codec")
        return codec

    def container(self, kind: CodecKind) -> ContainerFormat:
        container = self.capability(kind)
        if not isinstance(container, ContainerFormat):
            raise TypeError(f"{kind.value} is not a container format")
        return container


_registry: Optional[FormatRegistry] = None


def get_format_registry() -> FormatRegistry:
    """Get the process-wide format registry"""
    global _registry
    if _registry is None:
        _registry = FormatRegistry()
        logger.debug(f"Loaded {len(_registry.formats())} formats")
    return _registry
