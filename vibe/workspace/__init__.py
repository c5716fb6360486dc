"""
VIBE Workspace

The project a session operates on: its root directory plus the git
introspection the checkpoint store and git tools need. Works on plain
directories too; git-only queries degrade to a filesystem walk.
"""

from __future__ import annotations

import os
import subprocess
from pathlib import Path

from loguru import logger

SKIP_DIRS = {
    ".git", ".vibe", ".venv", "venv", "env",
    "node_modules", "target", "dist", "build", "__pycache__",
    ".tox", ".mypy_cache", ".pytest_cache", ".ruff_cache",
    ".next", ".nuxt", "coverage", ".cargo", "vendor",
}


class WorkspaceError(Exception):
    pass


class Workspace:
    def __init__(self, root: Path, skip_dirs: set[str] | None = None, timeout: float = 60.0):
        self.root = Path(root).resolve()
        self.skip_dirs = SKIP_DIRS if skip_dirs is None else skip_dirs
        self.timeout = timeout
        self._is_git: bool | None = None

    # -----------------------------------------------------------------------
    # Paths
    # -----------------------------------------------------------------------

    def resolve(self, path: str | Path) -> Path:
        candidate = Path(path).expanduser()
        if not candidate.is_absolute():
            candidate = self.root / candidate
        return candidate.resolve()

    def relative(self, path: str | Path) -> str:
        resolved = self.resolve(path)
        try:
            return resolved.relative_to(self.root).as_posix()
        except ValueError:
            return str(resolved)

    # -----------------------------------------------------------------------
    # File discovery
    # -----------------------------------------------------------------------

    @property
    def is_git_repo(self) -> bool:
        if self._is_git is None:
            out = self._git("rev-parse", "--is-inside-work-tree", check=False, capture=True)
            self._is_git = out.strip() == "true"
        return self._is_git

    def walk_files(self, limit: int | None = None) -> list[str]:
        """Every regular file under root, skipping VCS/vendor/build dirs."""
        found: list[str] = []
        for dirpath, dirnames, filenames in os.walk(self.root):
            dirnames[:] = sorted(d for d in dirnames if d not in self.skip_dirs)
            for name in sorted(filenames):
                full = Path(dirpath) / name
                if full.is_symlink() or not full.is_file():
                    continue
                found.append(full.relative_to(self.root).as_posix())
                if limit is not None and len(found) >= limit:
                    return found
        return found

    def modified_files(self) -> list[str]:
        if not self.is_git_repo:
            return []
        return _lines(self._git("ls-files", "-m", check=False, capture=True))

    def tracked_files(self) -> list[str]:
        """Tracked plus untracked-but-not-ignored files; a full walk outside git."""
        if not self.is_git_repo:
            return self.walk_files()
        tracked = _lines(self._git("ls-files", check=False, capture=True))
        untracked = _lines(self._git("ls-files", "--others", "--exclude-standard", check=False, capture=True))
        seen: dict[str, None] = dict.fromkeys(tracked + untracked)
        return [p for p in seen if (self.root / p).is_file()]

    def checkpoint_candidates(self, scope: str = "tracked") -> list[str]:
        if scope == "modified":
            modified = self.modified_files()
            if modified:
                return modified
        return self.tracked_files()

    # -----------------------------------------------------------------------
    # Git
    # -----------------------------------------------------------------------

    def status(self) -> str:
        return self._git("status", "--short", "--branch", capture=True)

    def diff(self, staged: bool = False, path: str | None = None) -> str:
        args = ["diff"]
        if staged:
            args.append("--cached")
        if path:
            args += ["--", path]
        return self._git(*args, capture=True)

    def commit(self, message: str, files: list[str] | None = None, add_all: bool = False) -> str | None:
        """Stage and commit. Returns the new sha, or None when there is nothing to commit."""
        if add_all:
            self._git("add", "-A")
        elif files:
            self._git("add", "--", *files)

        staged = self._git("diff", "--cached", "--name-only", capture=True)
        if not staged.strip():
            logger.info("[WORKSPACE] Nothing to commit.")
            return None

        self._git("commit", "-m", message)
        return self._git("rev-parse", "HEAD", capture=True).strip()

    def branches(self) -> list[str]:
        return [b.lstrip("* ").strip() for b in _lines(self._git("branch", "--list", capture=True))]

    def current_branch(self) -> str:
        return self._git("rev-parse", "--abbrev-ref", "HEAD", capture=True).strip()

    def create_branch(self, name: str) -> None:
        self._git("checkout", "-b", name)
        logger.info(f"[WORKSPACE] Created branch {name}")

    def switch_branch(self, name: str) -> None:
        self._git("checkout", name)

    def delete_branch(self, name: str) -> None:
        if name == self.current_branch():
            raise WorkspaceError(f"Cannot delete the checked-out branch: {name}")
        self._git("branch", "-d", name)
        logger.info(f"[WORKSPACE] Deleted branch {name}")

    def _git(self, *args: str, check: bool = True, capture: bool = False) -> str:
        return self._run_cmd(["git", *args], cwd=self.root, check=check, capture=capture, timeout=self.timeout)

    @staticmethod
    def _run_cmd(cmd: list[str], cwd: Path, check: bool = True, capture: bool = False,
                 timeout: float = 60.0) -> str:
        try:
            result = subprocess.run(cmd, cwd=cwd, capture_output=True, text=True, timeout=timeout)
        except FileNotFoundError as e:
            if check:
                raise WorkspaceError(f"Command not found: {cmd[0]}") from e
            return ""
        except subprocess.TimeoutExpired as e:
            raise WorkspaceError(f"Timed out: {' '.join(cmd)}") from e
        if check and result.returncode != 0:
            raise WorkspaceError(f"Git failed: {' '.join(cmd)}\n{result.stderr}")
        return result.stdout if capture else ""


def _lines(text: str) -> list[str]:
    return [line for line in text.splitlines() if line.strip()]
