import argparse
import sys
import os
import logging
from typing import List, NoReturn, Optional

from .errors import BuildError
from .operations import BackupOperations

logger = logging.getLogger('snapback')

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def configure_logging(verbosity: int, log_file: Optional[str] = None) -> None:
    """
    Configure the package logger.

    Args:
        verbosity (int): 0 shows warnings and errors, 1 adds progress
            and copied files, 2 or more adds every indexed file
        log_file (str, optional): Write the log to this file instead of stderr
    """
    if verbosity <= 0:
        level = logging.WARNING
    elif verbosity == 1:
        level = logging.INFO
    else:
        level = logging.DEBUG

    if log_file:
        handler = logging.FileHandler(log_file, mode='a', encoding='utf-8')
    else:
        handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))

    for existing in list(logger.handlers):
        logger.removeHandler(existing)
    logger.addHandler(handler)
    logger.setLevel(level)
    logger.propagate = False


def print_error_and_exit(error_message: str, exit_code: int = 1) -> NoReturn:
    """
    Print an error message and exit the program with the specified exit code.

    Args:
        error_message (str): The error message to display
        exit_code (int, optional): The exit code to use. Defaults to 1.
    """
    logger.error(error_message)
    print(f"Error: {error_message}", file=sys.stderr)
    sys.exit(exit_code)


def backup_command(args: argparse.Namespace) -> None:
    """
    Execute the backup command to create a new snapshot.

    Args:
        args (argparse.Namespace): Command line arguments containing:
            - backup: Backup root directory
            - inputs: Files and directories to back up
            - full: Whether to force a full snapshot
            - follow_symlinks: Whether to back up link targets
            - workers: Number of copy threads
    """
    if not os.path.isdir(args.backup):
        print_error_and_exit(f"Folder with backup '{args.backup}' doesn't exist or isn't accessible")
    if args.workers < 1:
        print_error_and_exit(f"--workers must be at least 1, got {args.workers}")

    try:
        with BackupOperations(args.backup) as ops:
            name = ops.snapshot(
                args.inputs,
                force_full=args.full,
                follow_symlinks=args.follow_symlinks,
                workers=args.workers,
            )
        logger.info(f"Snapshot {name} created successfully")
        print(f"Created snapshot: {name}")
    except BuildError as e:
        print_error_and_exit(str(e))
    except OSError as e:
        print_error_and_exit(f"OS error: {str(e)}")


def list_command(args: argparse.Namespace) -> None:
    """
    Execute the list command to display all snapshots, newest first.

    Args:
        args (argparse.Namespace): Command line arguments containing:
            - backup: Backup root directory
            - short: Print names only
    """
    if not os.path.isdir(args.backup):
        print_error_and_exit(f"Folder with backup '{args.backup}' doesn't exist or isn't accessible")

    try:
        with BackupOperations(args.backup) as ops:
            snapshots = ops.list_snapshots()
    except BuildError as e:
        print_error_and_exit(str(e))

    print("Available snapshots:")
    for position, snapshot in enumerate(reversed(snapshots), 1):
        if args.short:
            print(f"{position}. {snapshot['name']}")
        else:
            print(f"{position}. {snapshot['name']}  "
                  f"files: {snapshot['entries']:<6} "
                  f"stored: {snapshot['owned']:<6} "
                  f"size: {snapshot['size']} KB")


def check_command(args: argparse.Namespace) -> None:
    """
    Execute the check command to verify one snapshot.

    Args:
        args (argparse.Namespace): Command line arguments containing:
            - snapshot: Path of the snapshot directory
    """
    snapshot_path = os.path.abspath(args.snapshot)
    root, name = os.path.split(snapshot_path)

    with BackupOperations(root) as ops:
        healthy, problems = ops.check(name)

    if healthy:
        print("Snapshot integrity check completed. No problems found.")
        return

    for problem in problems:
        print(f"Snapshot integrity check failed. {problem}")
    sys.exit(1)


def build_parser() -> argparse.ArgumentParser:
    verbosity = argparse.ArgumentParser(add_help=False)
    verbosity.add_argument(
        "-v",
        dest="verbosity",
        action="count",
        default=0,
        help="Sets the level of verbosity: -v shows progress and copied files, "
             "-vv also shows every unchanged file"
    )
    verbosity.add_argument(
        "--log-file",
        help="Write logs to this file instead of stderr"
    )

    parser = argparse.ArgumentParser(
        prog="snapback",
        description="Incremental file backup with timestamped snapshots",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    # Backup command
    backup_parser = subparsers.add_parser(
        "backup",
        help="Make a backup of your files",
        parents=[verbosity],
    )
    backup_parser.add_argument(
        "backup",
        help="A folder where the snapshot will be stored"
    )
    backup_parser.add_argument(
        "inputs",
        nargs="+",
        metavar="INPUT",
        help="Files or folders to be backed up"
    )
    backup_parser.add_argument(
        "--full",
        action="store_true",
        help="Copy every file into the new snapshot even if an earlier snapshot already holds it"
    )
    backup_parser.add_argument(
        "--follow-symlinks",
        action="store_true",
        help="Back up the targets of symbolic links instead of the links themselves"
    )
    backup_parser.add_argument(
        "--workers",
        type=int,
        default=1,
        help="Number of threads used to copy files"
    )

    # List command
    list_parser = subparsers.add_parser(
        "list",
        aliases=["ls"],
        help="List all snapshots",
        parents=[verbosity],
    )
    list_parser.add_argument(
        "backup",
        nargs="?",
        default=".",
        help="A folder where snapshots are stored"
    )
    list_parser.add_argument(
        "-s", "--short",
        action="store_true",
        help="Print only the snapshot names"
    )

    # Check command
    check_parser = subparsers.add_parser(
        "check",
        help="Check the integrity of a snapshot",
        parents=[verbosity],
    )
    check_parser.add_argument(
        "snapshot",
        help="Path of the snapshot directory to check"
    )

    return parser


def main(argv: Optional[List[str]] = None) -> None:
    """
    Main entry point for the snapback command line interface.
    Parses arguments and dispatches to appropriate command handlers.
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    configure_logging(getattr(args, "verbosity", 0), getattr(args, "log_file", None))

    # Command dispatch
    command_handlers = {
        "backup": backup_command,
        "list": list_command,
        "ls": list_command,
        "check": check_command,
    }

    if args.command in command_handlers:
        command_handlers[args.command](args)
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
