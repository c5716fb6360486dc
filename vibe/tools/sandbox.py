"""
VIBE Sandbox — Path, Command and Network Policy

Decides whether a working directory, a file path, a shell command or a
URL is permitted, and executes shell commands under that policy with a
wall-clock timeout and a byte-capped output buffer.

Policy is evaluated even when the sandbox is disabled (callers may ask);
enforcement in `execute_command` only applies while it is enabled.
Sandboxed commands get `temp_dir` as TMPDIR; it is removed on close().
"""

from __future__ import annotations

import os
import shutil
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

from loguru import logger

from vibe.config_loader import SandboxSettings
from vibe.errors import SandboxRejected
from vibe.tools.base import ToolResult
from vibe.tools.security import max_severity, sanitize_command, scan_command
from vibe.tools.shell import run_command


@dataclass(frozen=True)
class PathCheck:
    allowed: bool
    path: Path
    reason: str = ""


class Sandbox:
    def __init__(self, settings: SandboxSettings, project_root: Path):
        self.settings = settings.model_copy(deep=True)
        self.project_root = Path(project_root).resolve()
        self._temp_dir: Path | None = None

    # -----------------------------------------------------------------------
    # Configuration
    # -----------------------------------------------------------------------

    @property
    def enabled(self) -> bool:
        return self.settings.enabled

    def set_enabled(self, enabled: bool) -> None:
        self.settings.enabled = enabled
        logger.info(f"[SANDBOX] {'Enabled' if enabled else 'Disabled'}")

    def update_config(self, **changes: Any) -> None:
        self.settings = self.settings.model_copy(update=changes)

    # -----------------------------------------------------------------------
    # Path policy
    # -----------------------------------------------------------------------

    def _resolve(self, path: str | Path) -> Path:
        candidate = Path(path).expanduser()
        if not candidate.is_absolute():
            candidate = self.project_root / candidate
        return candidate.resolve()

    def check_path(self, path: str | Path) -> PathCheck:
        resolved = self._resolve(path)

        for entry in self.settings.blocked_paths:
            if _matches_blocked(resolved, entry):
                return PathCheck(False, resolved, f"Path is in blocked location: {entry}")

        roots = [self.project_root] + [self._resolve(p) for p in self.settings.allowed_paths]
        if not any(_is_within(resolved, root) for root in roots):
            return PathCheck(False, resolved, "Path is outside the project root and allowed paths")

        return PathCheck(True, resolved)

    def is_path_allowed(self, path: str | Path) -> bool:
        return self.check_path(path).allowed

    # -----------------------------------------------------------------------
    # Command policy
    # -----------------------------------------------------------------------

    def check_command(self, command: str) -> tuple[bool, str]:
        parts = command.strip().split()
        if not parts:
            return False, "Empty command"

        base = parts[0].lower()
        for blocked in self.settings.blocked_commands:
            if blocked.lower() in base:
                return False, f"Command is blocked: {blocked}"

        allowed = [c.lower() for c in self.settings.allowed_commands]
        if allowed and base not in allowed and os.path.basename(base) not in allowed:
            return False, f"Command not in allow-list: {base}"

        return True, ""

    def is_command_allowed(self, command: str) -> bool:
        return self.check_command(command)[0]

    # -----------------------------------------------------------------------
    # Network policy
    # -----------------------------------------------------------------------

    def is_network_allowed(self, url: str) -> bool:
        host = (urlparse(url).hostname or "").lower()
        if not host:
            return False
        if not self.settings.allow_network:
            return False
        domains = [d.lower() for d in self.settings.allowed_domains]
        if not self.settings.enabled or not domains:
            return True
        return any(host == d or host.endswith("." + d) for d in domains)

    # -----------------------------------------------------------------------
    # Execution
    # -----------------------------------------------------------------------

    def execute_command(
        self,
        command: str,
        cwd: Path | None = None,
        env: dict[str, str] | None = None,
        timeout: float | None = None,
        dry_run: bool = False,
    ) -> ToolResult:
        cwd = Path(cwd).resolve() if cwd else self.project_root
        timeout = timeout or self.settings.max_cpu_time
        safe_label = sanitize_command(command)

        if not self.settings.enabled:
            if dry_run:
                return ToolResult.ok(f"Would execute: {safe_label}", data={"dry_run": True})
            return self._run(command, cwd, env, timeout, sandboxed=False)

        issues = scan_command(command)
        worst = max_severity(issues)
        if worst is not None and any(issue.blocking for issue in issues):
            reasons = "; ".join(i.message for i in issues if i.blocking)
            logger.warning(f"[SANDBOX] Security scan rejected ({worst.value}): {safe_label}")
            return ToolResult.fail(
                f"Security check failed: {reasons}",
                code=SandboxRejected.code,
                data={"issues": [i.rule for i in issues]},
            )

        allowed, reason = self.check_command(command)
        if not allowed:
            logger.warning(f"[SANDBOX] Command rejected: {safe_label} ({reason})")
            return ToolResult.fail(reason, code=SandboxRejected.code)

        path_check = self.check_path(cwd)
        if not path_check.allowed:
            logger.warning(f"[SANDBOX] Working directory rejected: {cwd}")
            return ToolResult.fail(f"Working directory not allowed: {path_check.reason}", code=SandboxRejected.code)

        if dry_run:
            return ToolResult.ok(f"[SANDBOX] Would execute: {safe_label}", data={"dry_run": True})

        return self._run(command, cwd, env, timeout, sandboxed=True)

    def _run(self, command: str, cwd: Path, env: dict[str, str] | None, timeout: float, sandboxed: bool) -> ToolResult:
        merged_env = {**os.environ, **self.settings.environment, **(env or {})}
        if sandboxed:
            merged_env["SANDBOX"] = "true"
            merged_env["TMPDIR"] = str(self.temp_dir)

        logger.debug(f"[SANDBOX] exec (sandboxed={sandboxed}, timeout={timeout}s): {sanitize_command(command)}")
        result = run_command(
            command,
            cwd=cwd,
            env=merged_env,
            timeout=timeout,
            max_output_bytes=self.settings.max_output_bytes,
        )

        output = result.stdout
        if result.ok and result.stderr.strip():
            output = "\n".join(part for part in (output.rstrip("\n"), result.stderr) if part)

        data = {"stderr": result.stderr, "truncated": result.truncated, "signal": result.signal}
        if result.ok:
            return ToolResult.ok(output, exit_code=result.returncode, duration_ms=result.duration_ms, data=data)

        return ToolResult.fail(
            result.describe_failure(),
            code="TIMEOUT" if result.timed_out else "TOOL_EXECUTION_FAILED",
            output=result.stdout,
            exit_code=result.returncode,
            timed_out=result.timed_out,
            retryable=result.timed_out,
            duration_ms=result.duration_ms,
            data=data,
        )

    # -----------------------------------------------------------------------
    # Lifecycle
    # -----------------------------------------------------------------------

    @property
    def temp_dir(self) -> Path:
        """Scratch directory for sandboxed work, removed on close()."""
        if self._temp_dir is None:
            self._temp_dir = Path(tempfile.mkdtemp(prefix="vibe-sandbox-"))
        return self._temp_dir

    def status(self) -> dict[str, Any]:
        return {
            "enabled": self.settings.enabled,
            "project_root": str(self.project_root),
            "allowed_paths": list(self.settings.allowed_paths),
            "blocked_paths": len(self.settings.blocked_paths),
            "allowed_commands": len(self.settings.allowed_commands),
            "blocked_commands": len(self.settings.blocked_commands),
            "allow_network": self.settings.allow_network,
            "allowed_domains": list(self.settings.allowed_domains),
            "max_cpu_time": self.settings.max_cpu_time,
            "max_output_bytes": self.settings.max_output_bytes,
        }

    def close(self) -> None:
        if self._temp_dir is not None:
            shutil.rmtree(self._temp_dir, ignore_errors=True)
            self._temp_dir = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _is_within(path: Path, root: Path) -> bool:
    try:
        path.relative_to(root)
        return True
    except ValueError:
        return False


def _matches_blocked(resolved: Path, entry: str) -> bool:
    """Absolute entries block a subtree; bare names block any path component."""
    entry_path = Path(entry).expanduser()
    if entry_path.is_absolute():
        return _is_within(resolved, entry_path) or _is_within(resolved, entry_path.resolve())
    return entry in resolved.parts
