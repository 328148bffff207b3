"""Resolving the repository and remote a conversion operates on."""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .errors import DetachedHead, NoRemoteConfigured, NotARepository, SubprocessFailure
from .gitcmd import git_config_get, git_output, run_git

BRANCH_PREFIX = "refs/heads/"

# Backup directories are named "<prefix>.<pid>" next to the object store.
BACKUP_PREFIX = "objects.blobless-backup"


@dataclass(frozen=True)
class RepoContext:
    target: Path
    git_dir: Path
    common_dir: Path
    objects_dir: Path
    branch: str
    is_bare: bool
    work_tree: Optional[Path] = None

    @property
    def cwd(self) -> Path:
        """Directory git commands for this repository run in."""
        return self.work_tree or self.git_dir

    @property
    def branch_ref(self) -> str:
        return BRANCH_PREFIX + self.branch


@dataclass(frozen=True)
class Remote:
    name: str
    url: str
    merge_ref: Optional[str] = None


def resolve_context(target) -> RepoContext:
    """
    Locate the git directory, object store and current branch for a target.

    Args:
        target: Directory inside the repository to convert

    Returns:
        RepoContext: The resolved, immutable context

    Raises:
        NotARepository: target is not inside a git repository
        DetachedHead: HEAD does not name a local branch
    """
    target = Path(target).resolve()

    try:
        lines = git_output(
            ['rev-parse', '--git-dir', '--git-common-dir',
             '--is-bare-repository', '--git-path', 'objects'],
            target
        ).splitlines()
    except SubprocessFailure as e:
        raise NotARepository(target) from e
    if len(lines) != 4:
        raise NotARepository(target)

    git_dir, common_dir, bare, objects_dir = lines
    is_bare = bare == 'true'

    work_tree = None
    if not is_bare:
        toplevel = run_git(['rev-parse', '--show-toplevel'], target, check=False)
        if toplevel.returncode == 0 and toplevel.stdout.strip():
            work_tree = Path(toplevel.stdout.strip()).resolve()

    head = run_git(['symbolic-ref', '-q', 'HEAD'], target, check=False)
    ref = head.stdout.strip()
    if head.returncode != 0 or not ref.startswith(BRANCH_PREFIX):
        raise DetachedHead(target)

    return RepoContext(
        target=target,
        git_dir=(target / git_dir).resolve(),
        common_dir=(target / common_dir).resolve(),
        objects_dir=(target / objects_dir).resolve(),
        branch=ref[len(BRANCH_PREFIX):],
        is_bare=is_bare,
        work_tree=work_tree,
    )


def list_remotes(ctx):
    output = git_output(['remote'], ctx.cwd)
    return [name for name in output.splitlines() if name]


def resolve_remote(ctx) -> Remote:
    """
    Pick the single remote blobs will be fetched from.

    A repository with exactly one remote uses it, which covers bare and
    mirror clones without branch tracking. Otherwise the current branch's
    upstream remote is used; nothing is guessed.

    Raises:
        NoRemoteConfigured: no remote, or several and no usable upstream
    """
    remotes = list_remotes(ctx)
    branch_remote = git_config_get(f'branch.{ctx.branch}.remote', ctx.cwd)
    merge_ref = git_config_get(f'branch.{ctx.branch}.merge', ctx.cwd)

    if len(remotes) == 1:
        name = remotes[0]
        if branch_remote != name:
            merge_ref = None
    elif not remotes:
        raise NoRemoteConfigured(f"no remote configured in {ctx.target}")
    elif not branch_remote or branch_remote == '.':
        raise NoRemoteConfigured(
            f"{len(remotes)} remotes configured and branch '{ctx.branch}' has no "
            f"upstream remote; set branch.{ctx.branch}.remote"
        )
    elif branch_remote not in remotes:
        raise NoRemoteConfigured(
            f"branch '{ctx.branch}' tracks unknown remote '{branch_remote}'"
        )
    else:
        name = branch_remote

    url = git_config_get(f'remote.{name}.url', ctx.cwd)
    if not url:
        raise NoRemoteConfigured(f"remote '{name}' has no URL")

    return Remote(name=name, url=url, merge_ref=merge_ref)


def backup_path_for(ctx, pid):
    return ctx.common_dir / f"{BACKUP_PREFIX}.{pid}"


def find_stale_backups(ctx):
    """Backups left behind by earlier runs that did not finish."""
    return sorted(ctx.common_dir.glob(f"{BACKUP_PREFIX}.*"))
