#!/usr/bin/env python3
"""
Command line front-end for the archive pipeline.
"""

import argparse
import dataclasses
import signal
import sys
from pathlib import Path
from typing import List, Optional

from tqdm import tqdm

from archive_configs import ArchiveConfig, ConfigPresets
from archive_errors import ArchiveError
from archive_pipeline import ArchivePipeline, setup_logging
from base_classes import ConflictDecision, JobResult, OperationSummary

COMMANDS = ('compress', 'decompress', 'list')

# Options whose value is the next argument
VALUE_OPTIONS = ('-j', '--jobs', '--ignore', '-o', '--output', '-d', '--dir')

PROMPT_CHOICES = {
    'y': ConflictDecision.OVERWRITE,
    'n': ConflictDecision.SKIP,
    'a': ConflictDecision.OVERWRITE_ALL,
    'r': ConflictDecision.RENAME,
    'q': ConflictDecision.ABORT,
}


def _common_options() -> argparse.ArgumentParser:
    """Options shared by every command."""
    common = argparse.ArgumentParser(add_help=False)

    conflict_group = common.add_mutually_exclusive_group()
    conflict_group.add_argument('-y', '--yes', action='store_const', dest='conflict',
                                const=ConflictDecision.OVERWRITE,
                                help='Overwrite existing files without asking')
    conflict_group.add_argument('-n', '--no', action='store_const', dest='conflict',
                                const=ConflictDecision.SKIP,
                                help='Skip existing files without asking')
    conflict_group.add_argument('--rename', action='store_const', dest='conflict',
                                const=ConflictDecision.RENAME,
                                help='Write next to existing files as name_1.ext, name_2.ext, ...')
    conflict_group.add_argument('--abort', action='store_const', dest='conflict',
                                const=ConflictDecision.ABORT,
                                help='Fail the job at the first existing file')

    level_group = common.add_mutually_exclusive_group()
    level_group.add_argument('--fast', action='store_const', dest='preset', const='fast',
                             help='Lowest compression levels, fastest')
    level_group.add_argument('--slow', action='store_const', dest='preset', const='slow',
                             help='Highest compression levels, smallest output')

    common.add_argument('-j', '--jobs', type=int, default=None,
                        help='Number of parallel jobs (default: usable CPUs)')
    common.add_argument('-H', '--skip-hidden', action='store_true',
                        help='Ignore hidden files and directories')
    common.add_argument('--follow-symlinks', action='store_true',
                        help='Store what symlinks point to instead of the links')
    common.add_argument('--ignore', action='append', default=[], metavar='PATTERN',
                        help='Skip names matching the glob PATTERN (repeatable)')
    common.add_argument('-q', '--quiet', action='store_true',
                        help='Only report warnings and errors')
    common.add_argument('-v', '--verbose', action='store_true',
                        help='Debug logging')
    return common


def build_parser() -> argparse.ArgumentParser:
    """Parser for the explicit subcommands."""
    common = _common_options()
    parser = argparse.ArgumentParser(
        prog='archive-pipeline',
        description="Compress and decompress files, picking formats from file names",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  archive-pipeline compress src/ notes.txt backup.tar.zst
  archive-pipeline decompress backup.tar.zst -d restored/
  archive-pipeline list backup.tar.zst
  archive-pipeline report.csv -o report.csv.gz     # inferred: compress
  archive-pipeline backup.tar.zst logs.gz          # inferred: decompress here
        """
    )
    subparsers = parser.add_subparsers(dest='command', required=True)

    compress_parser = subparsers.add_parser('compress', parents=[common],
                                            help='Compress files into OUTPUT')
    compress_parser.add_argument('files', nargs='+', type=Path, help='Files and directories')
    compress_parser.add_argument('output', type=Path,
                                 help='Output file; its extensions select the formats')

    decompress_parser = subparsers.add_parser('decompress', parents=[common],
                                              help='Decompress archives')
    decompress_parser.add_argument('files', nargs='+', type=Path,
                                   help='Compressed files or directories containing them')
    decompress_parser.add_argument('-d', '--dir', dest='output', type=Path, default=None,
                                   help='Output directory (default: current directory)')

    list_parser = subparsers.add_parser('list', parents=[common],
                                        help='List archive contents')
    list_parser.add_argument('files', nargs='+', type=Path, help='Archives to list')

    return parser


def build_run_parser() -> argparse.ArgumentParser:
    """Parser for the bare form, where the operation is inferred."""
    parser = argparse.ArgumentParser(
        prog='archive-pipeline',
        parents=[_common_options()],
        description="Compress or decompress, inferred from the file names "
                    "(see 'archive-pipeline compress -h' for explicit commands)",
    )
    parser.add_argument('files', nargs='+', type=Path, help='Input files')
    parser.add_argument('-o', '--output', type=Path, default=None,
                        help='Output archive, or output directory when decompressing')
    parser.set_defaults(command='run')
    return parser


def _first_positional(argv: List[str]) -> Optional[int]:
    """Index of the first argument that is not an option or an option's value"""
    expects_value = False
    for index, arg in enumerate(argv):
        if expects_value:
            expects_value = False
        elif arg == '--':
            return None
        elif arg in VALUE_OPTIONS:
            expects_value = True
        elif not arg.startswith('-'):
            return index
    return None


def parse_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    argv = list(sys.argv[1:] if argv is None else argv)
    if argv and argv[0] in ('-h', '--help'):
        return build_parser().parse_args(argv)

    index = _first_positional(argv)
    if index is not None and argv[index] in COMMANDS:
        # Options are defined per subcommand, so the command goes first
        argv.insert(0, argv.pop(index))
        return build_parser().parse_args(argv)
    return build_run_parser().parse_args(argv)


def build_config(args: argparse.Namespace, interactive: bool) -> ArchiveConfig:
    if args.preset == 'fast':
        config = ConfigPresets.fast()
    elif args.preset == 'slow':
        config = ConfigPresets.smallest()
    else:
        config = ConfigPresets.balanced()

    return dataclasses.replace(
        config,
        num_workers=args.jobs,
        conflict_default=args.conflict,
        interactive=interactive,
        follow_symlinks=args.follow_symlinks,
        skip_hidden=args.skip_hidden,
        ignore_patterns=list(args.ignore),
    )


def prompt_conflict(path: Path) -> ConflictDecision:
    """Ask on the terminal what to do with an existing path."""
    question = f"{path} already exists. Overwrite? [y]es/[n]o/[a]ll/[r]ename/[q]uit: "
    with tqdm.external_write_mode(file=sys.stderr):
        while True:
            try:
                answer = input(question).strip().lower()
            except EOFError:
                return ConflictDecision.ABORT
            if answer[:1] in PROMPT_CHOICES:
                return PROMPT_CHOICES[answer[:1]]
            print("Please answer y, n, a, r or q", file=sys.stderr)


def _expected_jobs(pipeline: ArchivePipeline, args: argparse.Namespace) -> int:
    if args.command == 'compress':
        return 1
    if args.command == 'run' and args.output is not None \
            and not pipeline.parser.parse(args.output.name, strict=False).is_empty:
        return 1
    return len(args.files)


def _print_listing(result: JobResult) -> None:
    print(f"{result.source}:")
    for member in result.listing:
        line = member.relative_path
        if member.is_dir and not line.endswith('/'):
            line += '/'
        if member.is_symlink:
            line += f" -> {member.link_target}"
        print(f"  {line}")


def report(summary: OperationSummary, args: argparse.Namespace) -> None:
    """Print listings, failures and the totals."""
    if args.command == 'list':
        for result in summary.results:
            if result.succeeded:
                _print_listing(result)

    for failure in summary.failures:
        print(f"error: {failure.source}: {failure.error}", file=sys.stderr)
        if failure.partial_outputs:
            print(f"  {len(failure.partial_outputs)} output(s) were completed before the failure",
                  file=sys.stderr)

    if not args.quiet:
        print(f"{summary.succeeded} succeeded, {summary.failed} failed, "
              f"{summary.skipped} skipped, {summary.cancelled} cancelled",
              file=sys.stderr)


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = parse_arguments(argv)
    setup_logging(verbose=args.verbose, quiet=args.quiet)

    interactive = args.conflict is None and sys.stdin.isatty()
    try:
        config = build_config(args, interactive)
    except ValueError as e:
        print(f"error: {e}", file=sys.stderr)
        return 2

    pipeline = ArchivePipeline(config, prompt=prompt_conflict)

    def handle_interrupt(signum, frame):
        # A second Ctrl-C falls through to the default handler
        signal.signal(signal.SIGINT, signal.default_int_handler)
        print("\nInterrupted, stopping after the current entries...", file=sys.stderr)
        pipeline.cancel()

    previous_handler = signal.signal(signal.SIGINT, handle_interrupt)

    progress = tqdm(total=_expected_jobs(pipeline, args), unit='job', file=sys.stderr,
                    disable=args.quiet or not sys.stderr.isatty())

    def on_result(result: JobResult) -> None:
        progress.set_postfix_str(result.source.name)
        progress.update(1)

    try:
        if args.command == 'compress':
            summary = pipeline.compress(args.files, args.output, on_result=on_result)
        elif args.command == 'decompress':
            summary = pipeline.decompress(args.files, args.output, on_result=on_result)
        elif args.command == 'list':
            summary = pipeline.list_archives(args.files, on_result=on_result)
        else:
            summary = pipeline.run(args.files, args.output, on_result=on_result)
    except ArchiveError as e:
        progress.close()
        print(f"error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        progress.close()
        print("\n\nInterrupted by user", file=sys.stderr)
        return 130
    finally:
        signal.signal(signal.SIGINT, previous_handler)

    progress.close()
    report(summary, args)
    return summary.exit_code


if __name__ == "__main__":
    sys.exit(main())
