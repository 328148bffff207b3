"""Errors raised while converting a repository.

Every error is fatal to the target being converted. ``exit_code`` is the
status the process ends with when the error reaches the command line.
"""


class BloblessError(Exception):
    exit_code = 1


class NotARepository(BloblessError):
    def __init__(self, path):
        super().__init__(f"not a git repository: {path}")
        self.path = path


class DetachedHead(BloblessError):
    def __init__(self, path):
        super().__init__(
            f"HEAD is detached in {path}; check out a branch so the fetch "
            "remote can be determined"
        )
        self.path = path


class NoRemoteConfigured(BloblessError):
    pass


class InvalidTargetPath(BloblessError):
    def __init__(self, path):
        super().__init__(f"not a directory: {path}")
        self.path = path


class SubprocessFailure(BloblessError):
    """A git command exited with a non-zero status."""

    def __init__(self, command, returncode, stderr=""):
        self.command = list(command)
        self.returncode = returncode
        self.stderr = stderr or ""
        # Killed by a signal: report it the way a shell would.
        self.exit_code = returncode if returncode > 0 else 128 - returncode
        super().__init__(
            f"command failed with status {returncode}: {' '.join(self.command)}"
        )


class ConsistencyCheckFailed(BloblessError):
    def __init__(self, phase, returncode, output=""):
        self.phase = phase
        self.returncode = returncode
        self.output = output or ""
        self.exit_code = returncode if returncode > 0 else 1
        super().__init__(
            f"consistency check failed {phase} conversion (git fsck status {returncode})"
        )


class ObjectTransferFailed(BloblessError):
    pass


class BackupError(BloblessError):
    pass


class Interrupted(BloblessError):
    def __init__(self, signum):
        self.signum = signum
        self.exit_code = 128 + signum
        super().__init__(f"interrupted by signal {signum}")
