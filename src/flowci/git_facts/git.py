# git.py
# Small, focused wrapper around the Git CLI.
# The orchestrator only needs Git for one thing: a sensible default event
# (which ref are we "pushing"?) when the caller does not pass --ref.

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Optional


def _git(args: list[str], cwd: Optional[str] = None) -> str:
    """
    Execute a git command and return its stdout as a clean string.

    This is the single low-level entry point for all Git operations in this file.

    Args:
        args: List of git arguments (e.g. ["symbolic-ref", "-q", "HEAD"])
        cwd: Optional working directory in which to run the git command.

    Returns:
        Stdout from the git command with surrounding whitespace removed.

    Raises:
        subprocess.CalledProcessError: git exited non-zero
        FileNotFoundError: git is not installed
    """
    out = subprocess.check_output(
        ["git", *args],
        cwd=cwd,
        text=True,   # return output as str instead of bytes
        stderr=subprocess.DEVNULL,
    )
    return out.strip()


def repo_root(cwd: Optional[str] = None) -> Path:
    """
    Return the absolute path to the root of the current Git repository.

    Used as the default working directory for steps.
    """
    return Path(_git(["rev-parse", "--show-toplevel"], cwd=cwd))


def head_sha(cwd: Optional[str] = None) -> str:
    """Return the full SHA hash of the current HEAD commit."""
    return _git(["rev-parse", "HEAD"], cwd=cwd)


def current_ref(cwd: Optional[str] = None) -> str:
    """
    Return the fully qualified ref HEAD points at.

    Resolution order:
      1. the checked-out branch           -> refs/heads/<branch>
      2. a tag sitting exactly on HEAD    -> refs/tags/<tag>
      3. detached HEAD without a tag      -> the commit SHA
    """
    # `git symbolic-ref -q HEAD` fails on a detached HEAD
    try:
        return _git(["symbolic-ref", "-q", "HEAD"], cwd=cwd)
    except subprocess.CalledProcessError:
        pass

    try:
        tag = _git(["describe", "--tags", "--exact-match", "HEAD"], cwd=cwd)
        return f"refs/tags/{tag}"
    except subprocess.CalledProcessError:
        return head_sha(cwd=cwd)

