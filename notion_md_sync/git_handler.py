"""
Git operations handler for the sync system.

Handles:
- Project name detection from repository metadata
- Pre-commit hook installation for the staleness check
"""

import re
import stat
import subprocess
from pathlib import Path
from typing import Optional

from rich.console import Console

console = Console()

HOOK_MARKER = "# notion-md-sync"

PRE_COMMIT_HOOK = f"""#!/bin/sh
{HOOK_MARKER}
# Refuse to commit while Notion holds edits that were never pulled.
exec notion-md-sync precommit-check
"""


class GitHandler:
    """
    Handles Git operations for the sync system.

    Only reads repository metadata; never stages, commits or pushes.
    """

    def __init__(self, repo_root: Path, debug: bool = False):
        """
        Initialize git handler.

        Args:
            repo_root: Directory inside the working tree.
            debug: Print every git command before running it.
        """
        self.repo_root = Path(repo_root)
        self.debug = debug

    def _run_git(
        self,
        *args: str,
        capture_output: bool = True,
        check: bool = True,
    ) -> subprocess.CompletedProcess:
        """Run a git command."""
        cmd = ["git", "-C", str(self.repo_root)] + list(args)

        if self.debug:
            console.print(f"[dim]Running: {' '.join(cmd)}[/dim]")

        return subprocess.run(
            cmd,
            capture_output=capture_output,
            text=True,
            check=check,
        )

    def is_git_repo(self) -> bool:
        """Check if repo_root is inside a git repository."""
        try:
            self._run_git("rev-parse", "--git-dir")
            return True
        except (subprocess.CalledProcessError, OSError):
            return False

    def get_remote_url(self, remote: str = "origin") -> Optional[str]:
        """Get the URL of a remote."""
        try:
            result = self._run_git("remote", "get-url", remote)
            return result.stdout.strip() or None
        except (subprocess.CalledProcessError, OSError):
            return None

    def get_toplevel(self) -> Optional[Path]:
        """Get the root directory of the working tree."""
        try:
            result = self._run_git("rev-parse", "--show-toplevel")
            return Path(result.stdout.strip())
        except (subprocess.CalledProcessError, OSError):
            return None

    def get_hooks_dir(self) -> Optional[Path]:
        """Get the directory git runs hooks from."""
        try:
            result = self._run_git("rev-parse", "--git-path", "hooks")
        except (subprocess.CalledProcessError, OSError):
            return None
        hooks_dir = Path(result.stdout.strip())
        if not hooks_dir.is_absolute():
            hooks_dir = self.repo_root / hooks_dir
        return hooks_dir

    def install_pre_commit_hook(self, force: bool = False) -> Path:
        """
        Write a pre-commit hook that runs the staleness check.

        Args:
            force: Replace an existing hook that was not written by us.

        Returns:
            Path of the installed hook.

        Raises:
            RuntimeError: If repo_root is not a git repository, or a
                          foreign hook exists and force is False.
        """
        hooks_dir = self.get_hooks_dir()
        if hooks_dir is None:
            raise RuntimeError(f"{self.repo_root} is not a git repository")

        hook_path = hooks_dir / "pre-commit"
        if hook_path.exists() and not force:
            existing = hook_path.read_text(encoding="utf-8")
            if HOOK_MARKER not in existing:
                raise RuntimeError(
                    f"{hook_path} already exists; use --force to replace it"
                )

        hooks_dir.mkdir(parents=True, exist_ok=True)
        hook_path.write_text(PRE_COMMIT_HOOK, encoding="utf-8")
        mode = hook_path.stat().st_mode
        hook_path.chmod(mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return hook_path


def repo_name_from_url(url: str) -> Optional[str]:
    """
    Extract the repository name from a remote URL.

    Examples:
        git@github.com:acme/handbook.git -> "handbook"
        https://github.com/acme/handbook -> "handbook"
    """
    cleaned = url.strip().rstrip("/")
    cleaned = re.sub(r"\.git$", "", cleaned)
    name = re.split(r"[/:]", cleaned)[-1]
    return name or None


def detect_project_name(repo_root: Path, debug: bool = False) -> str:
    """
    Derive the project tag from repository metadata.

    Tries the origin remote's repository name, then the name of the
    working tree's top-level directory, then the directory itself.
    """
    git = GitHandler(repo_root, debug=debug)

    remote_url = git.get_remote_url()
    if remote_url:
        name = repo_name_from_url(remote_url)
        if name:
            return name

    toplevel = git.get_toplevel()
    if toplevel is not None and toplevel.name:
        return toplevel.name

    return Path(repo_root).resolve().name
