"""Find and copy the objects a checkout needs, using dulwich.

After the filtered refetch the local object store holds every commit and
tree but few blobs. Only the objects reachable from the branch tip are
completed: the tip commit's tree is walked, and whatever the local store
lacks is copied straight out of the scratch clone's object store.
"""
import stat
import subprocess
from contextlib import closing

from dulwich.errors import ChecksumMismatch, FileFormatException
from dulwich.object_store import DiskObjectStore
from dulwich.objects import S_ISGITLINK

from .errors import ObjectTransferFailed, SubprocessFailure
from .gitcmd import GIT, git_env


def has_missing_objects(ctx) -> bool:
    """Return True if any object reachable from a ref is missing locally.

    The listing is streamed and abandoned at the first missing object, so a
    large complete repository is read once and a partial one barely at all.
    """
    command = [GIT, 'rev-list', '--objects', '--all', '--missing=print']
    with subprocess.Popen(
        command,
        cwd=ctx.cwd,
        stdout=subprocess.PIPE,
        stderr=subprocess.DEVNULL,
        text=True,
        env=git_env(),
    ) as proc:
        for line in proc.stdout:
            if line.startswith('?'):
                proc.terminate()
                proc.wait()
                return True
        returncode = proc.wait()

    if returncode != 0:
        raise SubprocessFailure(command, returncode)
    return False


def open_store(objects_dir) -> DiskObjectStore:
    return DiskObjectStore(str(objects_dir))


def _read(sha: bytes, local: DiskObjectStore, remote: DiskObjectStore):
    if sha in local:
        return local[sha]
    if sha in remote:
        return remote[sha]
    raise ObjectTransferFailed(
        f"object {sha.decode('ascii')} is neither in the local store nor on the remote"
    )


def collect_missing_objects(
    local: DiskObjectStore, remote: DiskObjectStore, commit_sha: bytes
) -> list[bytes]:
    """Return the objects of one commit's tree that the local store lacks.

    History is not walked. Trees missing locally are read from the remote
    store so their entries can be checked too. Submodule entries point into
    other repositories and are skipped.
    """
    missing: list[bytes] = []
    seen: set[bytes] = set()

    if commit_sha not in local:
        missing.append(commit_sha)
    pending = [_read(commit_sha, local, remote).tree]

    while pending:
        tree_sha = pending.pop()
        if tree_sha in seen:
            continue
        seen.add(tree_sha)
        if tree_sha not in local:
            missing.append(tree_sha)

        for entry in _read(tree_sha, local, remote).iteritems():
            if S_ISGITLINK(entry.mode):
                continue
            if stat.S_ISDIR(entry.mode):
                pending.append(entry.sha)
            elif entry.sha not in seen:
                seen.add(entry.sha)
                if entry.sha not in local:
                    missing.append(entry.sha)

    return missing


def transfer_objects(
    local: DiskObjectStore, remote: DiskObjectStore, object_ids: list[bytes]
) -> int:
    """Copy exactly ``object_ids`` from the remote store into a new local pack."""
    if not object_ids:
        return 0

    objects = []
    for sha in object_ids:
        if sha not in remote:
            raise ObjectTransferFailed(
                f"object {sha.decode('ascii')} is not available from the remote"
            )
        objects.append((remote[sha], None))

    local.add_objects(objects)
    return len(objects)


def complete_commit(local_dir, remote_dir, commit_sha: str) -> int:
    """Fetch every object of ``commit_sha``'s tree missing from ``local_dir``.

    Returns:
        int: Number of objects copied; 0 means the tip was already complete
    """
    try:
        with closing(open_store(local_dir)) as local, closing(open_store(remote_dir)) as remote:
            missing = collect_missing_objects(local, remote, commit_sha.encode('ascii'))
            return transfer_objects(local, remote, missing)
    except (OSError, KeyError, ChecksumMismatch, FileFormatException) as e:
        raise ObjectTransferFailed(f"could not copy objects for {commit_sha}: {e!r}") from e
