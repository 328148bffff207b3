"""
Blobless Conversion Script

Turns full clones into blobless clones: commits and trees stay local, file
contents are fetched from the remote when needed. The checked-out branch
tip stays fully available offline.

Usage:
    git-blobless [--quiet] [--dry-run] [DIR ...]
    git blobless [DIR ...]
    git-blobless --help
"""

import argparse
import os
import sys

from . import __version__
from .errors import BloblessError, ConsistencyCheckFailed, InvalidTargetPath, SubprocessFailure
from .messages import detail, diagnostic, program_name
from .transition import convert

EPILOG = """
Each DIR is converted in turn; with no DIR the current directory is used.
A failed conversion restores the object store and refs from a backup taken before
any change, and stops processing of further directories.

Exit Codes:
  0       - Every repository converted
  1       - Precondition failed (not a repository, detached HEAD, ...)
  128+N   - Interrupted by signal N
  other   - Status of the git command that failed
"""


def parse_arguments(argv=None):
    """
    Parse command-line arguments.

    Returns:
        argparse.Namespace: Parsed arguments
    """
    parser = argparse.ArgumentParser(
        prog=program_name(),
        description="Convert full git clones into blobless (partial) clones.",
        epilog=EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument('directories', nargs='*', metavar='DIR',
                        help='Repository directory (default: current directory)')
    parser.add_argument('--dry-run', action='store_true',
                        help='Check the repository and show what would be done')
    parser.add_argument('--quiet', action='store_true',
                        help='Suppress progress output')
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    return parser.parse_args(argv)


def convert_targets(directories, quiet=False, dry_run=False):
    """
    Convert each directory in order, stopping at the first failure.

    Raises:
        BloblessError: from the first target that failed
    """
    if not directories:
        convert(os.getcwd(), quiet=quiet, dry_run=dry_run)
        return

    for directory in directories:
        if not os.path.isdir(directory):
            raise InvalidTargetPath(directory)
        convert(directory, quiet=quiet, dry_run=dry_run)


def report_failure(error):
    diagnostic(f"error: {error}")
    if isinstance(error, SubprocessFailure):
        detail(error.stderr)
    elif isinstance(error, ConsistencyCheckFailed):
        detail(error.output)


def main(argv=None):
    """
    Main entry point.
    """
    args = parse_arguments(argv)

    try:
        convert_targets(args.directories, quiet=args.quiet, dry_run=args.dry_run)
    except BloblessError as e:
        report_failure(e)
        diagnostic(f"exiting with status {e.exit_code}")
        sys.exit(e.exit_code)
    except Exception as e:
        # The envelope has already rolled back; report instead of a traceback.
        diagnostic(f"error: {e}")
        diagnostic("exiting with status 1")
        sys.exit(1)

    sys.exit(0)


if __name__ == '__main__':
    main()
