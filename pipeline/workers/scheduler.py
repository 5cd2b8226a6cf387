"""
Job scheduler: runs independent jobs on a bounded worker pool and collects
one result per job.
"""

import asyncio
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

from archive_configs import available_parallelism
from archive_errors import ArchiveError, OperationCancelled
from base_classes import Job, JobResult, JobStatus

logger = logging.getLogger(__name__)


class CancellationToken:
    """Operation-wide cancellation flag, safe to set from a signal handler"""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        if not self._event.is_set():
            logger.warning("Cancellation requested, finishing in-flight entries")
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self, path: Optional[Path] = None) -> None:
        if self._event.is_set():
            raise OperationCancelled("Operation cancelled", path=path)


JobHandler = Callable[[Job, CancellationToken], JobResult]
ResultCallback = Callable[[JobResult], None]


class JobScheduler:
    """
    Fixed-size pool running one job per worker slot.

    Workers pull jobs from a queue until they see a sentinel; each job runs
    in a thread so blocking codec work never stalls the event loop. A
    failing job is recorded and never affects its siblings.
    """

    def __init__(self, num_workers: Optional[int] = None,
                 cancel_token: Optional[CancellationToken] = None):
        if num_workers is not None and num_workers <= 0:
            raise ValueError("num_workers must be positive")
        self.num_workers = num_workers or available_parallelism()
        self.cancel_token = cancel_token or CancellationToken()

    async def run(self, jobs: Sequence[Job], handler: JobHandler,
                  on_result: Optional[ResultCallback] = None) -> List[JobResult]:
        """
        Run ``jobs`` and return their results in job order.

        Args:
            jobs: Independent jobs
            handler: Called in a worker thread with each job and the token
            on_result: Called on the event loop as each job finishes
        """
        if not jobs:
            return []

        num_workers = min(self.num_workers, len(jobs))
        logger.debug(f"Scheduling {len(jobs)} jobs on {num_workers} workers")

        work_queue: asyncio.Queue = asyncio.Queue()
        for job in jobs:
            await work_queue.put(job)

        # Add sentinel values for worker termination
        for _ in range(num_workers):
            await work_queue.put(None)

        results: Dict[int, JobResult] = {}
        executor = ThreadPoolExecutor(max_workers=num_workers,
                                      thread_name_prefix='archive-worker')

        async def worker():
            """Run jobs from the work queue until a sentinel is received."""
            loop = asyncio.get_running_loop()
            while True:
                job = await work_queue.get()
                if job is None:
                    break

                if self.cancel_token.is_cancelled:
                    result = self._cancelled_result(job)
                else:
                    result = await loop.run_in_executor(executor, self._run_job, job, handler)

                results[job.job_id] = result
                if on_result is not None:
                    on_result(result)

        try:
            workers = [asyncio.create_task(worker()) for _ in range(num_workers)]
            await asyncio.gather(*workers)
        finally:
            executor.shutdown(wait=True)

        logger.debug("All workers completed")
        return [results[job_id] for job_id in sorted(results)]

    def run_jobs(self, jobs: Sequence[Job], handler: JobHandler,
                 on_result: Optional[ResultCallback] = None) -> List[JobResult]:
        """Blocking wrapper around :meth:`run`"""
        return asyncio.run(self.run(jobs, handler, on_result))

    def _run_job(self, job: Job, handler: JobHandler) -> JobResult:
        start = time.time()
        try:
            result = handler(job, self.cancel_token)
        except OperationCancelled as e:
            logger.warning(f"Job {job.job_id} cancelled: {job.source}")
            result = JobResult(job.job_id, job.source, JobStatus.CANCELLED,
                               destination=job.destination, error=e,
                               offending_path=e.path,
                               partial_outputs=list(job.partial_outputs))
        except ArchiveError as e:
            logger.error(f"Job {job.job_id} failed: {e}", extra={'error': e.log_context()})
            result = self._failed_result(job, e, e.path)
        except Exception as e:
            logger.exception(f"Unexpected error in job {job.job_id} ({job.source}): {e}")
            result = self._failed_result(job, e, job.source)

        result.duration = time.time() - start
        return result

    @staticmethod
    def _failed_result(job: Job, error: Exception, offending_path: Optional[Path]) -> JobResult:
        return JobResult(job.job_id, job.source, JobStatus.FAILED,
                         destination=job.destination, error=error,
                         offending_path=offending_path or job.source,
                         partial_outputs=list(job.partial_outputs))

    @staticmethod
    def _cancelled_result(job: Job) -> JobResult:
        return JobResult(job.job_id, job.source, JobStatus.CANCELLED,
                         destination=job.destination,
                         error=OperationCancelled("Cancelled before start", path=job.source))
