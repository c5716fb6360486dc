"""
VIBE Shell Runner

Runs a child process with a wall-clock timeout and a byte-capped output
buffer. Exit code, timeout, signal and spawn errors are all fields on
CommandResult; nothing here raises for a failed command.
"""

from __future__ import annotations

import os
import signal as _signal
import subprocess
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Sequence

from loguru import logger

_CHUNK = 64 * 1024
_KILL_GRACE_SECONDS = 5.0


@dataclass(frozen=True)
class CommandResult:
    command: str
    returncode: int | None
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False
    truncated: bool = False
    signal: int | None = None
    duration_ms: int = 0
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out and self.error is None

    def describe_failure(self) -> str:
        if self.error:
            return self.error
        if self.timed_out:
            return "Command timed out"
        if self.signal:
            return f"Command killed by signal {self.signal}"
        detail = self.stderr.strip() or self.stdout.strip()
        message = f"Command exited with code {self.returncode}"
        return f"{message}: {detail[:2000]}" if detail else message


class _CappedReader(threading.Thread):
    """Drains a pipe, keeping at most `limit` bytes."""

    def __init__(self, stream: IO[bytes], limit: int):
        super().__init__(daemon=True)
        self.stream = stream
        self.limit = limit
        self.buffer = bytearray()
        self.truncated = False

    def run(self) -> None:
        try:
            while True:
                chunk = self.stream.read(_CHUNK)
                if not chunk:
                    break
                room = self.limit - len(self.buffer)
                if room > 0:
                    self.buffer.extend(chunk[:room])
                if len(chunk) > max(room, 0):
                    self.truncated = True
        except (OSError, ValueError):
            # Pipe closed underneath us after a kill
            pass
        finally:
            self.stream.close()

    def text(self) -> str:
        return self.buffer.decode("utf-8", errors="replace")


def _kill_tree(proc: subprocess.Popen) -> None:
    if os.name == "posix":
        try:
            os.killpg(proc.pid, _signal.SIGKILL)
            return
        except (ProcessLookupError, PermissionError):
            pass
    proc.kill()


def run_command(
    command: str | Sequence[str],
    cwd: Path,
    env: dict[str, str] | None = None,
    timeout: float = 60.0,
    max_output_bytes: int = 10 * 1024 * 1024,
) -> CommandResult:
    """
    Run `command` (a shell string, or an argv list run without a shell).

    The child gets its own process group so the whole tree is killed
    when the timeout elapses.
    """
    shell = isinstance(command, str)
    label = command if shell else " ".join(command)
    start = time.monotonic()

    def elapsed() -> int:
        return int((time.monotonic() - start) * 1000)

    try:
        proc = subprocess.Popen(
            command,
            cwd=str(cwd),
            env=env,
            shell=shell,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            start_new_session=(os.name == "posix"),
        )
    except (OSError, ValueError) as e:
        logger.warning(f"[SHELL] Failed to start '{label}': {e}")
        return CommandResult(command=label, returncode=None, duration_ms=elapsed(), error=str(e))

    out_reader = _CappedReader(proc.stdout, max_output_bytes)
    err_reader = _CappedReader(proc.stderr, max_output_bytes)
    out_reader.start()
    err_reader.start()

    timed_out = False
    try:
        proc.wait(timeout=timeout)
    except subprocess.TimeoutExpired:
        timed_out = True
        logger.warning(f"[SHELL] Timeout after {timeout}s, killing: {label}")
        _kill_tree(proc)
        try:
            proc.wait(timeout=_KILL_GRACE_SECONDS)
        except subprocess.TimeoutExpired:
            logger.error(f"[SHELL] Process {proc.pid} did not exit after SIGKILL")

    out_reader.join(timeout=_KILL_GRACE_SECONDS)
    err_reader.join(timeout=_KILL_GRACE_SECONDS)

    returncode = proc.returncode
    signum = -returncode if returncode is not None and returncode < 0 else None

    return CommandResult(
        command=label,
        returncode=returncode,
        stdout=out_reader.text(),
        stderr=err_reader.text(),
        timed_out=timed_out,
        truncated=out_reader.truncated or err_reader.truncated,
        signal=signum,
        duration_ms=elapsed(),
        error=f"Command timed out after {timeout}s" if timed_out else None,
    )
