"""Converting one repository into a blobless clone.

The object store goes through these steps, all inside a SafetyEnvelope:

1. Back up the object directory.
2. Clone the remote into a scratch directory and repack the local store
   against it, dropping every object the remote already serves.
3. Mark the remote as a promisor with the ``blob:none`` filter.
4. Refetch all commits and trees (no blobs) from the remote.
5. Copy the blobs the checked-out tip needs from the scratch clone.
6. Verify the result with git fsck.

Any failure before the final verification passes rolls the object store
back to the backup.
"""

import os
from dataclasses import dataclass
from typing import Optional

from .context import find_stale_backups, resolve_context, resolve_remote
from .envelope import SafetyEnvelope
from .gitcmd import git_output, run_git
from .messages import diagnostic, progress
from .objects import complete_commit, has_missing_objects
from .verify import check_consistency, disk_usage_kb

FILTER_SPEC = "blob:none"

SCRATCH_REPO_NAME = "remote.git"

# Keeps automatic gc/maintenance from repacking while the store is in flux.
NO_MAINTENANCE = {'maintenance.auto': 'false', 'gc.auto': '0'}


@dataclass
class ConversionResult:
    size_before_kb: int
    size_after_kb: int
    fetched_objects: int

    @property
    def decrease_kb(self) -> int:
        return self.size_before_kb - self.size_after_kb


def _quiet_flag(quiet):
    return ['--quiet'] if quiet else []


def clone_scratch(ctx, remote, scratch_dir, quiet=False):
    """
    Clone the remote, bare and self-contained, into the scratch directory.

    When the local store is complete it is used as a reference so objects
    already held locally are not transferred again; ``--dissociate`` copies
    them into the clone so it keeps no link to the local repository.

    Args:
        ctx: RepoContext of the repository being converted
        remote: Remote to clone
        scratch_dir: Temporary directory owned by the envelope
        quiet: Whether to suppress output

    Returns:
        Path: The scratch clone's git directory
    """
    scratch_repo = scratch_dir / SCRATCH_REPO_NAME
    args = ['clone', '--bare', '--dissociate'] + _quiet_flag(quiet)

    if has_missing_objects(ctx):
        diagnostic(
            "local object store already has missing objects; "
            "cloning without reusing local objects"
        )
    else:
        args += ['--reference', str(ctx.common_dir)]

    args += ['--', remote.url, str(scratch_repo)]
    run_git(args, ctx.cwd, capture=quiet)

    progress(f"Cloned {remote.url} into scratch repository", quiet)
    return scratch_repo


def deduplicate(ctx, scratch_repo, quiet=False):
    """
    Repack the local store, leaving out every object the scratch clone has.

    The scratch clone's object directory is visible to git as an alternate
    for the repack command only. Any alternates the caller already had in
    the environment are kept behind it.
    """
    alternates = [str(scratch_repo / 'objects')]
    prior = os.environ.get('GIT_ALTERNATE_OBJECT_DIRECTORIES')
    if prior:
        alternates.append(prior)

    run_git(
        ['repack', '-a', '-d', '-l', '-f'] + (['-q'] if quiet else []),
        ctx.cwd,
        capture=quiet,
        env={'GIT_ALTERNATE_OBJECT_DIRECTORIES': os.pathsep.join(alternates)},
        config=NO_MAINTENANCE
    )

    progress("Removed objects the remote already provides", quiet)


def configure_filter(ctx, remote, envelope, quiet=False):
    """Mark the remote as a promisor that omits all blobs."""
    envelope.mark_remote_config_touched()
    run_git(['config', f'remote.{remote.name}.promisor', 'true'], ctx.cwd)
    run_git(['config', f'remote.{remote.name}.partialclonefilter', FILTER_SPEC], ctx.cwd)

    progress(f"Configured remote '{remote.name}' with filter {FILTER_SPEC}", quiet)


def refetch_metadata(ctx, remote, quiet=False):
    """
    Refetch every commit and tree from the remote, without blobs.

    The remote's configured refspecs (which carry the current branch's
    upstream) and all tags are fetched from scratch, restoring the history
    the repack removed.
    """
    run_git(
        ['fetch', '--refetch', '--no-auto-maintenance', f'--filter={FILTER_SPEC}',
         '--tags'] + _quiet_flag(quiet) + [remote.name],
        ctx.cwd,
        capture=quiet,
        config=NO_MAINTENANCE
    )

    progress(f"Refetched commits and trees from '{remote.name}'", quiet)


def complete_tip_objects(ctx, scratch_repo, quiet=False):
    """
    Make the branch tip fully available without network access.

    Returns:
        int: Number of objects copied from the scratch clone
    """
    tip = git_output(['rev-parse', '--verify', f'{ctx.branch_ref}^{{commit}}'], ctx.cwd)
    fetched = complete_commit(ctx.objects_dir, scratch_repo / 'objects', tip)

    if fetched == 0:
        progress("No objects needed fetching (repository is already blobless)", quiet)
    else:
        progress(f"Fetched {fetched} object(s) needed by {ctx.branch}", quiet)
    return fetched


def describe_plan(ctx, remote):
    print(f"\n=== DRY RUN: {ctx.cwd} ===")
    print(f"Git directory: {ctx.git_dir}")
    print(f"Object store: {ctx.objects_dir} ({disk_usage_kb(ctx.objects_dir)} KB)")
    print(f"Branch: {ctx.branch}")
    print(f"Remote: {remote.name} ({remote.url})")
    if remote.merge_ref:
        print(f"Upstream: {remote.merge_ref}")
    print(f"Would set remote.{remote.name}.promisor=true")
    print(f"Would set remote.{remote.name}.partialclonefilter={FILTER_SPEC}")
    print("No changes made (dry run).")


def convert(target, quiet=False, dry_run=False) -> Optional[ConversionResult]:
    """
    Convert the repository containing ``target`` into a blobless clone.

    Args:
        target: Directory inside the repository
        quiet: Whether to suppress progress output
        dry_run: Only resolve and verify, then describe what would happen

    Returns:
        ConversionResult: Sizes and fetch count, or None for a dry run

    Raises:
        BloblessError: the conversion failed; the object store and refs have been
            restored to its state before the run
    """
    ctx = resolve_context(target)
    remote = resolve_remote(ctx)
    progress(f"Repository {ctx.target} on branch {ctx.branch}, remote '{remote.name}'", quiet)

    for stale in find_stale_backups(ctx):
        diagnostic(f"leftover backup from an earlier run found: {stale}")

    check_consistency(ctx, "before", quiet)

    if dry_run:
        describe_plan(ctx, remote)
        return None

    with SafetyEnvelope(ctx, remote, quiet) as envelope:
        size_before = disk_usage_kb(ctx.objects_dir)
        envelope.take_backup()

        scratch_repo = clone_scratch(ctx, remote, envelope.scratch_dir, quiet)
        deduplicate(ctx, scratch_repo, quiet)
        configure_filter(ctx, remote, envelope, quiet)
        refetch_metadata(ctx, remote, quiet)
        fetched = complete_tip_objects(ctx, scratch_repo, quiet)

        check_consistency(ctx, "after", quiet)
        size_after = disk_usage_kb(ctx.objects_dir)
        envelope.mark_complete()

    result = ConversionResult(size_before, size_after, fetched)
    progress(
        f"Object store shrank by {result.decrease_kb} KB "
        f"({size_before} KB -> {size_after} KB)",
        quiet
    )
    return result
