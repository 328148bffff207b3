"""Backup and rollback around a conversion."""

import os
import shutil
import signal
import tempfile
from pathlib import Path

from .context import backup_path_for
from .errors import BackupError, Interrupted
from .gitcmd import git_config_get
from .messages import detail, diagnostic, progress

SCRATCH_PREFIX = "git-blobless-"

HANDLED_SIGNALS = tuple(
    getattr(signal, name) for name in ('SIGINT', 'SIGTERM', 'SIGHUP')
    if hasattr(signal, name)
)

# Ref storage in the common git directory that a fetch rewrites.
REF_STORAGE = ("refs", "packed-refs", "logs", "reftable")

# Per-worktree pseudorefs written by a fetch.
WORKTREE_REFS = ("FETCH_HEAD",)

DISCARD_SUFFIX = "blobless-discard"


class SafetyEnvelope:
    """
    Context manager guarding one repository's object store and refs.

    Handles the complete lifecycle of a conversion's temporary state:
    - Signal handlers that turn SIGINT/SIGTERM/SIGHUP into Interrupted
    - A scratch directory for the clone of the remote
    - A backup of the object store and refs, taken before the first mutation
    - Restoring that backup unless the conversion was marked complete

    Usage:
        with SafetyEnvelope(ctx, remote, quiet) as envelope:
            envelope.take_backup()
            ...mutate the object store...
            envelope.mark_complete()
        # Backup deleted on success, restored otherwise; scratch removed
    """

    def __init__(self, ctx, remote, quiet=False):
        """
        Initialize the envelope.

        Args:
            ctx: RepoContext of the repository being converted
            remote: Remote the repository will fetch blobs from
            quiet: Whether to suppress progress output
        """
        self.ctx = ctx
        self.remote = remote
        self.quiet = quiet
        self.backup_path = None
        self.scratch_dir = None
        self.mission_complete = False
        self.remote_config_touched = False
        self.restored = False
        self.restore_failed = False
        self._finalized = False
        self._saved_handlers = {}

    def __enter__(self):
        self.scratch_dir = Path(tempfile.mkdtemp(prefix=SCRATCH_PREFIX))
        for signum in HANDLED_SIGNALS:
            self._saved_handlers[signum] = signal.signal(signum, self._on_signal)
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.finalize()
        return False

    def _on_signal(self, signum, frame):
        raise Interrupted(signum)

    def _saved_paths(self, backup):
        """
        Pair each live path a conversion can change with its place in the backup.

        Besides the object store, the refetch rewrites refs, reflogs and
        FETCH_HEAD; restoring objects without them would leave refs
        pointing at commits the restored store does not have.

        Args:
            backup: Root of the backup directory

        Returns:
            list: (live path, saved path) tuples
        """
        pairs = [(self.ctx.objects_dir, backup / 'objects')]
        for name in REF_STORAGE:
            pairs.append((self.ctx.common_dir / name, backup / 'common' / name))
        for name in WORKTREE_REFS:
            pairs.append((self.ctx.git_dir / name, backup / 'gitdir' / name))
        return pairs

    def take_backup(self):
        """
        Copy the object store and ref storage next to the object store.

        Paths that do not exist yet are not copied; restoring removes them.

        Raises:
            BackupError: the backup location is taken, or copying failed
        """
        path = backup_path_for(self.ctx, os.getpid())
        if path.exists():
            raise BackupError(f"backup location already exists: {path}")

        try:
            for live, saved in self._saved_paths(path):
                if live.is_dir() and not live.is_symlink():
                    shutil.copytree(live, saved, symlinks=True)
                elif live.exists() or live.is_symlink():
                    saved.parent.mkdir(parents=True, exist_ok=True)
                    shutil.copy2(live, saved, follow_symlinks=False)
            path.mkdir(exist_ok=True)
        except OSError as e:
            shutil.rmtree(path, ignore_errors=True)
            raise BackupError(f"could not back up {self.ctx.objects_dir}: {e}") from e
        except BaseException:
            shutil.rmtree(path, ignore_errors=True)
            raise

        self.backup_path = path
        progress(f"Backed up object store and refs to {path}", self.quiet)

    def mark_remote_config_touched(self):
        self.remote_config_touched = True

    def mark_complete(self):
        self.mission_complete = True

    def finalize(self):
        """
        Commit or roll back, then remove the scratch directory.

        Runs once; the handled signals are ignored while it runs so a
        second interrupt cannot abandon a half-finished restore.
        """
        if self._finalized:
            return
        self._finalized = True

        for signum in HANDLED_SIGNALS:
            signal.signal(signum, signal.SIG_IGN)
        try:
            if self.mission_complete:
                if self.backup_path is not None:
                    shutil.rmtree(self.backup_path)
                    self.backup_path = None
            elif self.backup_path is not None:
                self._restore()
        finally:
            if self.scratch_dir is not None:
                shutil.rmtree(self.scratch_dir, ignore_errors=True)
                self.scratch_dir = None
            for signum, handler in self._saved_handlers.items():
                signal.signal(signum, handler)
            self._saved_handlers = {}

    def _put_back(self, live, saved):
        """
        Replace ``live`` with ``saved``, never leaving ``live`` missing in between.

        The live path is renamed aside first and only deleted once the saved
        copy is in place. If moving the saved copy in fails, the aside copy
        is moved back.
        """
        aside = live.with_name(f"{live.name}.{DISCARD_SUFFIX}.{os.getpid()}")
        had_live = live.exists() or live.is_symlink()
        if had_live:
            os.replace(live, aside)

        if saved.exists() or saved.is_symlink():
            try:
                os.replace(saved, live)
            except OSError:
                if had_live:
                    os.replace(aside, live)
                raise

        if had_live:
            if aside.is_dir() and not aside.is_symlink():
                shutil.rmtree(aside)
            else:
                aside.unlink()

    def _restore(self):
        objects_dir = self.ctx.objects_dir
        try:
            for live, saved in self._saved_paths(self.backup_path):
                self._put_back(live, saved)
        except OSError as e:
            diagnostic(f"failed to restore object store: {e}")
            diagnostic(f"the original object store and refs are kept at {self.backup_path}")
            self.restore_failed = True
            return

        shutil.rmtree(self.backup_path, ignore_errors=True)
        self.backup_path = None
        self.restored = True
        diagnostic(f"restored object store {objects_dir} and refs from backup")

        if self.remote_config_touched:
            name = self.remote.name
            diagnostic(
                f"remote '{name}' may already have been reconfigured; "
                "verify its settings manually:"
            )
            for key in (f"remote.{name}.promisor", f"remote.{name}.partialclonefilter"):
                value = git_config_get(key, self.ctx.cwd)
                detail(f"  {key}={value}" if value is not None else f"  {key} (unset)")
