"""Tests for the command-line surface."""

import shutil

import pytest

from conftest import git, requires_refetch, snapshot_tree
from git_blobless import transition
from git_blobless.cli import main


def run_main(*argv):
    with pytest.raises(SystemExit) as excinfo:
        main(list(argv))
    return excinfo.value.code


def test_not_a_repository_exits_1(tmp_path, capsys):
    plain = tmp_path / 'plain'
    plain.mkdir()

    assert run_main('--quiet', str(plain)) == 1

    err = capsys.readouterr().err
    assert 'not a git repository' in err
    assert 'exiting with status 1' in err


def test_detached_head_exits_1_without_changes(work, capsys):
    git('checkout', '--detach', 'HEAD', cwd=work)
    before = snapshot_tree(work / '.git' / 'objects')

    assert run_main(str(work)) == 1

    assert 'HEAD is detached' in capsys.readouterr().err
    assert snapshot_tree(work / '.git' / 'objects') == before


def test_ambiguous_remote_exits_1(work, tmp_path, capsys):
    git('remote', 'add', 'backup', str(tmp_path / 'elsewhere.git'), cwd=work)
    git('config', '--unset', 'branch.main.remote', cwd=work)

    assert run_main(str(work)) == 1
    assert 'no upstream remote' in capsys.readouterr().err


def test_dry_run_uses_current_directory(work, monkeypatch, capsys):
    monkeypatch.chdir(work / 'src')

    assert run_main('--dry-run') == 0

    out = capsys.readouterr().out
    assert f'=== DRY RUN: {work.resolve()} ===' in out
    assert 'Remote: origin' in out


def test_consistency_failure_is_reported(work, capsys):
    git('update-ref', 'refs/heads/broken', 'HEAD', cwd=work)
    (work / '.git' / 'refs' / 'heads' / 'broken').write_text('1' * 40 + '\n')

    status = run_main('--quiet', str(work))

    assert status != 0
    assert 'consistency check failed before conversion' in capsys.readouterr().err
    assert git('config', '--get', 'remote.origin.promisor', cwd=work, check=False) == ''


@requires_refetch
def test_converts_each_directory(make_clone):
    first = make_clone('first')
    second = make_clone('second')

    assert run_main('--quiet', str(first), str(second)) == 0

    for repo in (first, second):
        assert git('config', '--get', 'remote.origin.promisor', cwd=repo) == 'true'


@requires_refetch
def test_missing_second_directory(work, tmp_path, capsys):
    missing = tmp_path / 'does-not-exist'

    assert run_main('--quiet', str(work), str(missing)) == 1

    assert git('config', '--get', 'remote.origin.promisor', cwd=work) == 'true'
    err = capsys.readouterr().err
    assert f'not a directory: {missing}' in err
    assert 'exiting with status 1' in err


def test_backup_failure_is_reported(work, monkeypatch, capsys):
    def full_disk(src, dst, **kwargs):
        raise OSError(28, "No space left on device")

    monkeypatch.setattr(shutil, 'copytree', full_disk)
    before = snapshot_tree(work / '.git' / 'objects')

    assert run_main('--quiet', str(work)) == 1

    err = capsys.readouterr().err
    assert 'error: could not back up' in err
    assert 'exiting with status 1' in err
    assert snapshot_tree(work / '.git' / 'objects') == before


def test_unexpected_error_is_reported_without_traceback(work, monkeypatch, capsys):
    def broken_clone(ctx, remote, scratch_dir, quiet=False):
        raise ValueError("unexpected clone state")

    monkeypatch.setattr(transition, 'clone_scratch', broken_clone)
    before = snapshot_tree(work / '.git' / 'objects')

    assert run_main('--quiet', str(work)) == 1

    err = capsys.readouterr().err
    assert 'error: unexpected clone state' in err
    assert 'exiting with status 1' in err
    assert 'Traceback' not in err
    assert snapshot_tree(work / '.git' / 'objects') == before
