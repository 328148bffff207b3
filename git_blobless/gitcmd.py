"""Running git as a subprocess."""

import os
import subprocess

from .errors import SubprocessFailure

GIT = "git"


def git_env(overrides=None):
    """
    Build the environment for one git invocation.

    Args:
        overrides: Mapping of variables to set for this call only

    Returns:
        dict: A copy of the process environment with the overrides applied
    """
    env = dict(os.environ)
    if overrides:
        env.update(overrides)
    return env


def run_git(args, cwd, capture=True, check=True, input_data=None, env=None,
            config=None):
    """
    Execute a git command with consistent error handling.

    Args:
        args: Command arguments after ``git`` (e.g. ``['rev-parse', 'HEAD']``)
        cwd: Working directory for the command
        capture: Capture stdout/stderr instead of passing them through
        check: Raise SubprocessFailure on a non-zero return code
        input_data: Optional text passed to the command on stdin
        env: Optional mapping of environment overrides for this call only
        config: Optional mapping of ``-c key=value`` settings for this call

    Returns:
        subprocess.CompletedProcess: Result with returncode, stdout, stderr
    """
    command = [GIT]
    for key, value in (config or {}).items():
        command += ['-c', f'{key}={value}']
    command += list(args)

    try:
        result = subprocess.run(
            command,
            cwd=cwd,
            capture_output=capture,
            text=True,
            input=input_data,
            env=git_env(env),
            check=False
        )
    except FileNotFoundError as e:
        raise SubprocessFailure(command, 127, str(e)) from e

    if check and result.returncode != 0:
        raise SubprocessFailure(command, result.returncode, result.stderr if capture else "")

    return result


def git_output(args, cwd, **kwargs):
    """Run a git command and return its stripped stdout."""
    return run_git(args, cwd, **kwargs).stdout.strip()


def git_config_get(key, cwd):
    """
    Read a single git config value.

    Returns:
        str: The value, or None if the key is unset
    """
    result = run_git(['config', '--get', key], cwd, check=False)
    if result.returncode == 1:
        return None
    if result.returncode != 0:
        raise SubprocessFailure([GIT, 'config', '--get', key], result.returncode, result.stderr)
    return result.stdout.strip()
