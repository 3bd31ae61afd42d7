# git.py
# Small, focused wrapper around the Git CLI.
# The engine only needs a few facts about the workspace (branch, commit)
# to evaluate pipeline triggers and label runs.

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Optional


def _git(args: list[str], cwd: Optional[str | Path] = None) -> str:
    """
    Execute a git command and return its stdout as a clean string.

    Args:
        args: List of git arguments (e.g. ["rev-parse", "HEAD"])
        cwd: Optional working directory in which to run the git command.

    Returns:
        Stdout from the git command with surrounding whitespace removed.

    Raises:
        subprocess.CalledProcessError: git exited nonzero (e.g. not a repo).
        FileNotFoundError: git is not installed.
    """
    out = subprocess.check_output(
        ["git", *args],
        cwd=cwd,
        text=True,
        stderr=subprocess.DEVNULL,
    )
    return out.strip()


def head_sha(cwd: Optional[str | Path] = None) -> str:
    """Full SHA of the current HEAD commit."""
    return _git(["rev-parse", "HEAD"], cwd=cwd)


def current_branch(cwd: Optional[str | Path] = None) -> Optional[str]:
    """
    Name of the checked-out branch, or None on a detached HEAD.

    `git rev-parse --abbrev-ref HEAD` prints the literal "HEAD" when detached.
    """
    name = _git(["rev-parse", "--abbrev-ref", "HEAD"], cwd=cwd)
    return None if name == "HEAD" else name


def workspace_facts(cwd: Optional[str | Path] = None) -> tuple[Optional[str], Optional[str]]:
    """
    (branch, sha) for the workspace, or (None, None) outside a git repo.
    """
    try:
        return current_branch(cwd), head_sha(cwd)
    except (subprocess.CalledProcessError, FileNotFoundError):
        return None, None
