"""
Format recognition and codec capabilities for the archive pipeline.
"""

from .extensions import ExtensionChainParser, check_layer_order, parse_chain
from .registry import FormatInfo, FormatRegistry, get_format_registry

__all__ = [
    'ExtensionChainParser',
    'check_layer_order',
    'FormatInfo',
    'FormatRegistry',
    'get_format_registry',
    'parse_chain',
]
