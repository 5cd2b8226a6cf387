"""
Pipeline worker components for running jobs in parallel.
"""

from .scheduler import CancellationToken, JobScheduler

__all__ = [
    'CancellationToken',
    'JobScheduler',
]
