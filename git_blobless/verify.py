"""Consistency checking and size measurement of the object store."""

import os

from .errors import ConsistencyCheckFailed
from .gitcmd import run_git
from .messages import progress


def check_consistency(ctx, phase, quiet=False):
    """
    Run git fsck against the repository.

    Dangling objects are a normal byproduct of everyday git use, so they
    are not reported.

    Args:
        ctx: RepoContext of the repository
        phase: "before" or "after", used in messages
        quiet: Whether to suppress output

    Raises:
        ConsistencyCheckFailed: fsck reported a problem
    """
    result = run_git(['fsck', '--no-dangling', '--no-progress'], ctx.cwd, check=False)
    if result.returncode != 0:
        raise ConsistencyCheckFailed(phase, result.returncode, result.stdout + result.stderr)

    progress(f"Consistency check passed {phase} conversion", quiet)


def disk_usage_kb(path):
    """
    Allocated size of a directory tree in KiB, as ``du -sk`` reports it.

    Args:
        path: Directory to measure

    Returns:
        int: Size in KiB
    """
    total = 0
    for root, dirs, files in os.walk(path):
        for name in dirs + files:
            st = os.lstat(os.path.join(root, name))
            total += st.st_blocks * 512
    total += os.lstat(path).st_blocks * 512
    return total // 1024
