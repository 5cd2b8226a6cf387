"""
Archive pipeline modules.
"""

# Import pipeline stages
from .stages.builder import DecodePipeline, Direction, EncodePipeline, PipelineBuilder
from .stages.conflicts import ConflictPolicy, ConflictResolver
from .stages.walker import DirectoryWalker
from .workers.scheduler import CancellationToken, JobScheduler

__all__ = [
    'CancellationToken',
    'ConflictPolicy',
    'ConflictResolver',
    'DecodePipeline',
    'Direction',
    'DirectoryWalker',
    'EncodePipeline',
    'JobScheduler',
    'PipelineBuilder',
]
