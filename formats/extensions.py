"""
Extension chain parsing.

Turns a filename into the ordered list of layers its suffixes stand for,
e.g. ``backup.tar.gz`` -> ``[gzip(stream), tar(container)]`` with base
name ``backup``.
"""

import logging
from pathlib import PurePath
from typing import List, Optional, Union

from archive_errors import UnrecognizedFormat
from base_classes import ExtensionChain, Layer

from .registry import FormatRegistry, get_format_registry

logger = logging.getLogger(__name__)


class ExtensionChainParser:
    """Longest-match suffix parser over a format registry"""

    def __init__(self, registry: Optional[FormatRegistry] = None):
        self.registry = registry or get_format_registry()

    def parse(self, filename: Union[str, PurePath], strict: bool = True) -> ExtensionChain:
        """
        Strip recognized suffixes from the right until none match.

        Every recognized suffix becomes a layer, so ``x.gz.tar`` parses to
        ``[tar, gzip]``. Whether that order can be decoded or written is
        checked separately by :func:`check_layer_order`.

        Args:
            filename: File name or path; only the final component is used
            strict: Raise when the outermost suffix is not recognized

        Returns:
            The chain, outermost layer first, and the residual base name

        Raises:
            UnrecognizedFormat: strict parsing of a name whose outermost
                suffix is unknown
        """
        name = PurePath(filename).name
        remaining = name
        layers: List[Layer] = []

        while True:
            match = self.registry.match_suffix(remaining)
            if match is None:
                break
            consumed, matched = match
            remaining = remaining[:-consumed]
            layers.extend(matched)

        if not layers and strict and PurePath(name).suffix:
            raise UnrecognizedFormat(
                f"Unrecognized format suffix '{PurePath(name).suffix}'",
                path=filename,
                details={'filename': name},
            )

        chain = ExtensionChain(tuple(layers), remaining)
        logger.debug(f"Parsed {name!r} as {chain} (base {remaining!r})")
        return chain

    def validate_encode_chain(self, chain: ExtensionChain,
                              filename: Optional[Union[str, PurePath]] = None) -> ExtensionChain:
        """
        Check that ``chain`` can be written.

        Raises:
            UnrecognizedFormat: empty chain, more than one container, a
                container that is not innermost, or a decode-only format
        """
        if chain.is_empty:
            raise UnrecognizedFormat("No compression format in output name", path=filename)
        check_layer_order(chain, filename)

        for layer in chain.layers:
            if self.registry.info(layer.kind).decode_only:
                raise UnrecognizedFormat(
                    f"{layer.kind.value} archives can only be decompressed", path=filename)
        return chain

    def parse_for_encode(self, filename: Union[str, PurePath]) -> ExtensionChain:
        """Parse a requested output name and validate it for writing"""
        return self.validate_encode_chain(self.parse(filename, strict=True), filename)


def check_layer_order(chain: ExtensionChain,
                      filename: Optional[Union[str, PurePath]] = None) -> None:
    """Raise UnrecognizedFormat unless the chain has at most one container, innermost"""
    containers = [i for i, layer in enumerate(chain.layers) if layer.is_container]
    if len(containers) > 1:
        raise UnrecognizedFormat(
            f"Chain {chain} has more than one container format", path=filename)
    if containers and containers[0] != len(chain) - 1:
        raise UnrecognizedFormat(
            f"Container format must be the innermost layer, got {chain}", path=filename)


def parse_chain(filename: Union[str, PurePath], strict: bool = True) -> ExtensionChain:
    """Parse ``filename`` with the default registry"""
    return ExtensionChainParser().parse(filename, strict=strict)
