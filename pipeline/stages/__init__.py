"""
Pipeline stages for the archive pipeline.
"""

from .builder import DecodePipeline, Direction, EncodePipeline, PipelineBuilder
from .conflicts import ConflictPolicy, ConflictResolver, Resolution
from .walker import DirectoryWalker
from .writer import DestinationWriter, WriteStats

__all__ = [
    'ConflictPolicy',
    'ConflictResolver',
    'DecodePipeline',
    'DestinationWriter',
    'Direction',
    'DirectoryWalker',
    'EncodePipeline',
    'PipelineBuilder',
    'Resolution',
    'WriteStats',
]
