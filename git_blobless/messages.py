"""Operator-facing output.

Diagnostics go to stderr prefixed with the program's invocation name.
Progress narration goes to stdout and is silenced by ``--quiet``.
"""

import os
import sys


def program_name():
    return os.path.basename(sys.argv[0]) or "git-blobless"


def diagnostic(message):
    sys.stderr.write(f"{program_name()}: {message}\n")
    sys.stderr.flush()


def detail(text):
    """Echo captured command output below a diagnostic."""
    text = text.rstrip()
    if text:
        sys.stderr.write(f"{text}\n")
        sys.stderr.flush()


def progress(message, quiet=False):
    if not quiet:
        print(f"✓ {message}", flush=True)
