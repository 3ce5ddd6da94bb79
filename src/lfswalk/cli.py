"""Command-line interface for lfswalk."""

import argparse
import asyncio
import os
import sys

from . import __version__
from .walker import OPERATIONS, async_main

OPERATION_ALIASES = {
    "rm": "delete",
    "cp": "copy",
}


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--file-workers",
        type=int,
        default=int(os.getenv("LFSWALK_FILE_WORKERS", "4")),
        help="Number of concurrent file workers",
    )
    parser.add_argument(
        "--dir-workers",
        type=int,
        default=int(os.getenv("LFSWALK_DIR_WORKERS", "2")),
        help="Number of concurrent directory listing workers",
    )
    parser.add_argument(
        "--file-queue-size",
        type=int,
        default=int(os.getenv("LFSWALK_FILE_QUEUE_SIZE", "10000")),
        help="Maximum listed files waiting for a worker (bounds memory)",
    )
    parser.add_argument(
        "--lister",
        choices=["scandir", "lfs"],
        default=os.getenv("LFSWALK_LISTER", "scandir"),
        help="Directory listing backend: native scandir or 'lfs find' metadata queries",
    )
    parser.add_argument(
        "--lfs-command",
        default=os.getenv("LFSWALK_LFS_COMMAND", "lfs"),
        help="lfs binary used for listing and striping",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default=os.getenv("LFSWALK_LOG_LEVEL", "INFO"),
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level",
    )
    parser.add_argument(
        "--progress-interval",
        type=float,
        default=float(os.getenv("LFSWALK_PROGRESS_INTERVAL", "2")),
        help="Seconds between progress updates",
    )
    parser.add_argument(
        "--memory-limit-mb",
        type=int,
        default=int(os.getenv("LFSWALK_MEMORY_LIMIT_MB", "0")),
        help="Soft memory limit in MB (triggers back-pressure, 0 = no limit)",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="lfswalk",
        description="Scan, delete, copy or find empty directories in huge Lustre directory trees. "
        "By default counts the files and directories found.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"lfswalk {__version__}",
    )

    subparsers = parser.add_subparsers(dest="operation", required=True)

    count = subparsers.add_parser(
        "count",
        help="Count files and directories",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    count.add_argument("path", help="Directory to scan")
    count.add_argument("--sizes", action="store_true", help="Also sum file sizes (one stat per file)")
    _add_common_arguments(count)

    delete = subparsers.add_parser(
        "delete",
        aliases=["rm"],
        help="DELETE the directory provided WITH ALL ITS CONTENTS",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    delete.add_argument("path", help="Directory to delete")
    delete.add_argument("-y", "--yes", action="store_true", help="Do not ask for confirmation")
    _add_common_arguments(delete)

    copy = subparsers.add_parser(
        "copy",
        aliases=["cp"],
        help="Copy a tree preserving mode, ownership and times",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    copy.add_argument("path", help="Source directory")
    copy.add_argument("destination", help="Destination directory")
    copy.add_argument(
        "--no-stripe",
        action="store_true",
        default=os.getenv("LFSWALK_NO_STRIPE", "").lower() in ("1", "true", "yes"),
        help="Never request wider Lustre stripes for large files",
    )
    _add_common_arguments(copy)

    empty = subparsers.add_parser(
        "find-empty-dirs",
        help="Report directories holding at most --threshold files",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    empty.add_argument("path", help="Directory to scan")
    empty.add_argument(
        "--threshold",
        type=int,
        default=int(os.getenv("LFSWALK_EMPTY_THRESHOLD", "0")),
        help="Directories with this many files or fewer count as empty",
    )
    empty.add_argument(
        "--top",
        type=int,
        default=int(os.getenv("LFSWALK_TOP", "20")),
        help="How many directories to print (0 = all)",
    )
    _add_common_arguments(empty)

    return parser


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    args = build_parser().parse_args(argv)
    args.operation = OPERATION_ALIASES.get(args.operation, args.operation)
    return args


def ask_for_confirmation(prompt: str, stream=None) -> bool:
    """Ask until the answer is exactly yes or no."""
    stream = stream if stream is not None else sys.stdin
    while True:
        print(f"{prompt} [yes/no]: ", end="", flush=True)
        response = stream.readline()
        if not response:
            # EOF: nobody is there to confirm
            return False
        response = response.strip().lower()
        if response == "yes":
            return True
        if response == "no":
            return False


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the CLI."""
    args = parse_args(argv)

    if OPERATIONS[args.operation].destructive and not getattr(args, "yes", False):
        abs_path = os.path.abspath(args.path)
        if not ask_for_confirmation(f"Do you really want to {args.operation.upper()} EVERYTHING in {abs_path}"):
            print("Aborted", file=sys.stderr)
            sys.exit(1)

    try:
        stats = asyncio.run(
            async_main(
                operation=args.operation,
                path=args.path,
                destination=getattr(args, "destination", None),
                file_workers=args.file_workers,
                dir_workers=args.dir_workers,
                file_queue_size=args.file_queue_size,
                lister=args.lister,
                lfs_command=args.lfs_command,
                stripe=not getattr(args, "no_stripe", False),
                with_sizes=getattr(args, "sizes", False),
                threshold=getattr(args, "threshold", 0),
                top=getattr(args, "top", 20),
                log_level=args.log_level,
                progress_interval=args.progress_interval,
                memory_limit_mb=args.memory_limit_mb,
            )
        )
    except KeyboardInterrupt:
        print("\nOperation cancelled by user", file=sys.stderr)
        sys.exit(130)
    except Exception as e:
        print(f"Fatal error: {e}", file=sys.stderr)
        sys.exit(1)

    if args.operation == "find-empty-dirs":
        for entry in stats.get("empty_dirs", []):
            print(f"{entry['files']}\t{entry['path']}")

    sys.exit(0)


if __name__ == "__main__":
    main()
