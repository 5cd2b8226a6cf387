"""
Archive Pipeline
================

Orchestrates compress, decompress and list operations: works out from
filenames which codec layers to apply, turns inputs into independent
jobs, runs them on the scheduler and aggregates the results.
"""

import logging
import os
import time
from contextlib import closing
from functools import partial
from pathlib import Path, PurePosixPath
from typing import Iterable, List, Optional, Sequence, Union

from archive_configs import ArchiveConfig
from archive_errors import AmbiguousOutput, ArchiveIOError, UnrecognizedFormat
from base_classes import (ArchiveMember, ExtensionChain, Job, JobKind, JobResult,
                          JobStatus, OperationSummary)
from formats.extensions import ExtensionChainParser
from formats.registry import FormatRegistry, get_format_registry
from pipeline.stages.builder import Direction, PipelineBuilder
from pipeline.stages.conflicts import ConflictPolicy, ConflictResolver, PromptCallable
from pipeline.stages.walker import DirectoryWalker
from pipeline.stages.writer import DestinationWriter, WriteStats
from pipeline.workers.scheduler import CancellationToken, JobScheduler, ResultCallback
from secure_utils import atomic_output, clear_path

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


class ArchivePipeline:
    """Main orchestrator for archive operations"""

    def __init__(self, config: Optional[ArchiveConfig] = None,
                 prompt: Optional[PromptCallable] = None,
                 registry: Optional[FormatRegistry] = None):
        """
        Args:
            config: Operation settings, defaults to ArchiveConfig()
            prompt: Asked for a ConflictDecision when a destination exists;
                used only when ``config.interactive`` is set
            registry: Format table, defaults to the built-in one
        """
        self.config = config or ArchiveConfig()
        self.prompt = prompt
        self.registry = registry or get_format_registry()
        self.parser = ExtensionChainParser(self.registry)
        self.builder = PipelineBuilder(self.registry, self.config)
        self.walker = DirectoryWalker(
            follow_symlinks=self.config.follow_symlinks,
            skip_hidden=self.config.skip_hidden,
            ignore_patterns=self.config.ignore_patterns,
        )
        self.cancel_token = CancellationToken()

    def cancel(self) -> None:
        """Stop dispatching queued jobs; running jobs stop before their next entry"""
        self.cancel_token.cancel()

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def run(self, inputs: Sequence[PathLike], output: Optional[PathLike] = None,
            on_result: Optional[ResultCallback] = None) -> OperationSummary:
        """
        Infer the operation from the inputs and the optional output.

        - no output: decompress every input into the working directory
        - output naming a writable chain: compress the inputs into it
        - output without a recognized chain: decompress into that directory,
          provided every input is decompressible

        Raises:
            AmbiguousOutput: the intent cannot be inferred
            UnrecognizedFormat: the output names a chain that cannot be written
        """
        input_paths = [Path(p) for p in inputs]
        if output is None:
            return self.decompress(input_paths, on_result=on_result)

        output_path = Path(output)
        chain = self.parser.parse(output_path.name, strict=False)
        if not chain.is_empty:
            return self.compress(input_paths, output_path, on_result=on_result)

        undecompressible = [p for p in input_paths if not self.is_decompressible(p)]
        if undecompressible:
            raise AmbiguousOutput(
                f"Output has no compression suffix and {len(undecompressible)} input(s) "
                f"are not compressed, cannot tell whether to compress or decompress",
                path=output_path,
                details={'inputs': [str(p) for p in undecompressible]},
            )
        return self.decompress(input_paths, output_path, on_result=on_result)

    def compress(self, inputs: Sequence[PathLike], output: PathLike,
                 on_result: Optional[ResultCallback] = None) -> OperationSummary:
        """
        Write every input into ``output``, whose name selects the chain.

        Raises:
            UnrecognizedFormat: the output chain cannot be written
            AmbiguousOutput: a stream-only chain was given several inputs
                or a directory
        """
        input_paths = [Path(p) for p in inputs]
        output_path = Path(output)
        if not input_paths:
            raise AmbiguousOutput("Nothing to compress", path=output_path)

        chain = self.parser.parse_for_encode(output_path)
        if chain.container is None:
            if len(input_paths) > 1:
                raise AmbiguousOutput(
                    f"{chain} holds a single stream but {len(input_paths)} inputs were given; "
                    f"use an archive format such as .tar or .zip",
                    path=output_path,
                )
            if input_paths[0].is_dir():
                raise AmbiguousOutput(
                    f"{chain} holds a single stream and cannot store a directory",
                    path=input_paths[0],
                )

        job = Job(0, JobKind.COMPRESS, input_paths, output_path, chain)
        return self._execute([job], self._compress_job, on_result)

    def decompress(self, inputs: Sequence[PathLike], output_dir: Optional[PathLike] = None,
                   on_result: Optional[ResultCallback] = None) -> OperationSummary:
        """Decompress each input (one job each) into ``output_dir``, default cwd"""
        destination = Path(output_dir) if output_dir is not None else Path.cwd()
        jobs = [Job(i, JobKind.DECOMPRESS, [Path(p)], destination)
                for i, p in enumerate(inputs)]
        return self._execute(jobs, self._decompress_job, on_result)

    def list_archives(self, inputs: Sequence[PathLike],
                      on_result: Optional[ResultCallback] = None) -> OperationSummary:
        """List the members of each archive; results carry the listing"""
        jobs = [Job(i, JobKind.LIST, [Path(p)]) for i, p in enumerate(inputs)]
        return self._execute(jobs, self._list_job, on_result)

    def is_decompressible(self, path: PathLike) -> bool:
        """True for an existing file whose name carries a known chain"""
        path = Path(path)
        return path.is_file() and not self.parser.parse(path.name, strict=False).is_empty

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    def _execute(self, jobs: List[Job], handler,
                 on_result: Optional[ResultCallback]) -> OperationSummary:
        policy = ConflictPolicy.from_config(self.config, self.prompt)
        resolver = ConflictResolver(policy)
        scheduler = JobScheduler(self.config.effective_workers, self.cancel_token)

        start = time.time()
        results = scheduler.run_jobs(jobs, partial(handler, resolver=resolver), on_result)
        summary = OperationSummary.from_results(results)

        logger.info(
            f"Finished {len(results)} job(s) in {time.time() - start:.2f}s: "
            f"{summary.succeeded} succeeded, {summary.failed} failed, "
            f"{summary.skipped} skipped, {summary.cancelled} cancelled"
        )
        return summary

    def _writer(self, job: Job, token: CancellationToken,
                resolver: ConflictResolver) -> DestinationWriter:
        return DestinationWriter(resolver, self.config.buffer_size, token, job.partial_outputs)

    def _compress_job(self, job: Job, token: CancellationToken,
                      resolver: ConflictResolver) -> JobResult:
        chain: ExtensionChain = job.chain
        resolution = resolver.resolve(job.destination)
        if resolution.skip:
            return JobResult(job.job_id, job.source, JobStatus.SKIPPED,
                             destination=job.destination)
        destination = resolution.path

        # Walk before the output exists so it is never picked up as an input
        entries = []
        for input_path in job.inputs:
            token.raise_if_cancelled(input_path)
            entries.extend(self.walker.walk(input_path, exclude=[destination]))

        logger.info(f"Compressing {len(entries)} entries into {destination}")
        pipeline = self.builder.build(chain, Direction.ENCODE, job.destination)

        if resolution.overwrite and os.path.isdir(destination) \
                and not os.path.islink(destination):
            clear_path(destination)

        def before_entry(entry) -> None:
            token.raise_if_cancelled(entry.absolute_source_path)
            logger.debug(f"Adding {entry.relative_path}")

        stored = 1
        try:
            with atomic_output(destination) as out:
                with pipeline.open_writer(out, destination) as writer:
                    if chain.container is not None:
                        stored = pipeline.write_entries(entries, writer, destination, before_entry)
                    else:
                        token.raise_if_cancelled(job.source)
                        pipeline.write_single(entries[0].absolute_source_path, writer)
        except OSError as e:
            raise ArchiveIOError("Cannot write output", path=destination, cause=e) from e

        job.partial_outputs.append(destination)
        size = destination.stat().st_size
        logger.info(f"Successfully compressed {len(job.inputs)} input(s) into {destination} "
                    f"({size:,} bytes)")
        return JobResult(job.job_id, job.source, JobStatus.SUCCEEDED,
                         destination=destination, entries_written=stored, bytes_written=size)

    def _decompress_job(self, job: Job, token: CancellationToken,
                        resolver: ConflictResolver) -> JobResult:
        source = job.source
        writer = self._writer(job, token, resolver)

        if source.is_dir():
            stats = WriteStats()
            # Outputs land under <destination>/<source name>/, never read them back
            output_root = job.destination / Path(os.path.abspath(source)).name
            archives = [
                entry for entry in self.walker.walk(source, exclude=[output_root])
                if not entry.is_dir and not entry.is_symlink
                and not self.parser.parse(entry.absolute_source_path.name, strict=False).is_empty
            ]
            logger.info(f"Found {len(archives)} compressed file(s) in {source}")
            for entry in archives:
                token.raise_if_cancelled(entry.absolute_source_path)
                parent = PurePosixPath(entry.relative_path).parent
                _, file_stats = self._decompress_file(
                    entry.absolute_source_path, job.destination.joinpath(*parent.parts), writer)
                stats.merge(file_stats)
            return JobResult(job.job_id, source, JobStatus.SUCCEEDED,
                             destination=job.destination,
                             entries_written=stats.entries_written,
                             entries_skipped=stats.entries_skipped,
                             bytes_written=stats.bytes_written)

        target, stats = self._decompress_file(source, job.destination, writer)
        status = JobStatus.SKIPPED if target is None else JobStatus.SUCCEEDED
        return JobResult(job.job_id, source, status,
                         destination=target or job.destination,
                         entries_written=stats.entries_written,
                         entries_skipped=stats.entries_skipped,
                         bytes_written=stats.bytes_written)

    def _decompress_file(self, source: Path, output_dir: Path,
                         writer: DestinationWriter):
        """Decompress one file; returns (target or None when skipped, stats)"""
        chain = self.parser.parse(source.name)
        if chain.is_empty:
            raise UnrecognizedFormat("File has no compression suffix", path=source)
        if not source.is_file():
            raise ArchiveIOError("Input is not a readable file", path=source)

        pipeline = self.builder.build(chain, Direction.DECODE, source)
        try:
            output_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ArchiveIOError("Cannot create output directory", path=output_dir, cause=e) from e

        stats = WriteStats()
        resolution = writer.resolver.resolve(output_dir / chain.base_name)
        if resolution.skip:
            stats.entries_skipped += 1
            return None, stats
        target = resolution.path
        # A file is replaced atomically on write; anything else is cleared first
        replace_in_place = chain.container is None and not os.path.isdir(target)
        if resolution.overwrite and not replace_in_place:
            try:
                clear_path(target)
            except OSError as e:
                raise ArchiveIOError("Cannot replace existing output", path=target, cause=e) from e

        logger.info(f"Decompressing {source} into {target}")
        if chain.container is None:
            with pipeline.open_reader(source) as reader:
                stats.bytes_written = writer.write_stream(reader, target)
            stats.entries_written = 1
        else:
            try:
                target.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise ArchiveIOError("Cannot create output directory", path=target, cause=e) from e
            with pipeline.open_reader(source) as reader:
                with closing(pipeline.members(reader, source)) as members:
                    stats = writer.extract(members, target)

        logger.info(f"Successfully decompressed {source} ({stats.entries_written} entries)")
        return target, stats

    def _list_job(self, job: Job, token: CancellationToken,
                  resolver: ConflictResolver) -> JobResult:
        source = job.source
        chain = self.parser.parse(source.name)
        if chain.is_empty:
            raise UnrecognizedFormat("Not an archive, nothing to list", path=source)
        pipeline = self.builder.build(chain, Direction.DECODE, source)
        if chain.container is None:
            raise UnrecognizedFormat("Not an archive, nothing to list", path=source)

        listing: List[ArchiveMember] = []
        with pipeline.open_reader(source) as reader:
            with closing(pipeline.members(reader, source)) as members:
                for member in members:
                    token.raise_if_cancelled(source)
                    listing.append(ArchiveMember(
                        member.relative_path, member.is_dir, member.metadata,
                        is_symlink=member.is_symlink, link_target=member.link_target,
                    ))

        logger.info(f"Listed {len(listing)} entries in {source}")
        return JobResult(job.job_id, source, JobStatus.SUCCEEDED,
                         entries_written=len(listing), listing=listing)


def setup_logging(verbose: bool = False, quiet: bool = False) -> None:
    """Configure root logging the way every entry point does"""
    level = logging.DEBUG if verbose else logging.WARNING if quiet else logging.INFO
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


def compress(inputs: Iterable[PathLike], output: PathLike,
             config: Optional[ArchiveConfig] = None) -> OperationSummary:
    """Convenience wrapper around ArchivePipeline.compress"""
    return ArchivePipeline(config).compress(list(inputs), output)


def decompress(inputs: Iterable[PathLike], output_dir: Optional[PathLike] = None,
               config: Optional[ArchiveConfig] = None) -> OperationSummary:
    """Convenience wrapper around ArchivePipeline.decompress"""
    return ArchivePipeline(config).decompress(list(inputs), output_dir)
