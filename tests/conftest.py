"""
Pytest fixtures for blobless conversion tests.

Builds real repositories on disk:
- a bare "origin" with several commits of incompressible file content,
  configured to serve filtered fetches
- working clones of it over file://, so fetches behave like network ones
"""

import os
import re
import subprocess
from pathlib import Path

import pytest

FILES = ['README.bin', 'src/app.bin', 'src/lib/core.bin', 'data/sample.bin']
FILE_SIZE = 64 * 1024
COMMITS = 3


def git(*args, cwd, check=True):
    """Run git and return its stripped stdout."""
    result = subprocess.run(
        ['git'] + list(args),
        cwd=cwd,
        capture_output=True,
        text=True,
    )
    if check and result.returncode != 0:
        raise AssertionError(f"git {' '.join(args)} failed:\n{result.stderr}")
    return result.stdout.strip()


def git_version():
    output = subprocess.run(['git', '--version'], capture_output=True, text=True).stdout
    match = re.search(r'(\d+)\.(\d+)', output)
    return (int(match.group(1)), int(match.group(2))) if match else (0, 0)


requires_refetch = pytest.mark.skipif(
    git_version() < (2, 36), reason="git fetch --refetch needs git >= 2.36"
)


def snapshot_tree(path):
    """Map every file below ``path`` to its bytes."""
    root = Path(path)
    return {
        str(p.relative_to(root)): p.read_bytes()
        for p in sorted(root.rglob('*'))
        if p.is_file()
    }


@pytest.fixture(autouse=True)
def isolated_git(tmp_path, monkeypatch):
    """Keep the user's git configuration and identity out of the tests."""
    home = tmp_path / 'home'
    home.mkdir()
    monkeypatch.setenv('HOME', str(home))
    monkeypatch.setenv('GIT_CONFIG_NOSYSTEM', '1')
    monkeypatch.setenv('GIT_AUTHOR_NAME', 'Test Author')
    monkeypatch.setenv('GIT_AUTHOR_EMAIL', 'author@example.com')
    monkeypatch.setenv('GIT_COMMITTER_NAME', 'Test Committer')
    monkeypatch.setenv('GIT_COMMITTER_EMAIL', 'committer@example.com')
    for name in ('GIT_DIR', 'GIT_WORK_TREE', 'GIT_OBJECT_DIRECTORY',
                 'GIT_ALTERNATE_OBJECT_DIRECTORIES', 'GIT_INDEX_FILE'):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def origin(tmp_path):
    """Bare repository with COMMITS commits rewriting every file."""
    source = tmp_path / 'source'
    source.mkdir()
    git('init', '--initial-branch=main', cwd=source)

    for number in range(COMMITS):
        for name in FILES:
            file_path = source / name
            file_path.parent.mkdir(parents=True, exist_ok=True)
            file_path.write_bytes(os.urandom(FILE_SIZE))
        git('add', '.', cwd=source)
        git('commit', '-m', f'Revision {number}', cwd=source)
    git('tag', 'v1.0', cwd=source)

    bare = tmp_path / 'origin.git'
    git('clone', '--bare', str(source), str(bare), cwd=tmp_path)
    git('config', 'uploadpack.allowFilter', 'true', cwd=bare)
    git('config', 'uploadpack.allowAnySHA1InWant', 'true', cwd=bare)
    return bare


@pytest.fixture
def make_clone(tmp_path, origin):
    """Factory for full working clones of origin."""
    def _make_clone(name='work', *extra):
        dest = tmp_path / name
        git('clone', *extra, origin.as_uri(), str(dest), cwd=tmp_path)
        return dest
    return _make_clone


@pytest.fixture
def work(make_clone):
    return make_clone()
