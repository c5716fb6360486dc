"""
VIBE Tool Executor — the crash-safety boundary.

Every tool call goes through `execute()`:

  1. look up the tool, validate its arguments
  2. checkpoint the files it may touch ("Before: <tool>")
  3. approval gate (unless the tool is exempt or ctx.approved)
  4. dry run → describe, do nothing
  5. sandbox on + tool not sandbox-allowed → fail closed
  6. run the handler under a deadline
  7. record history, emit events

The checkpoint is taken before the gate is consulted so a rollback is
always possible, whatever the gate does. A handler that raises, times
out or reports failure has its checkpoint restored before the result is
returned. Nothing raised inside a tool call escapes this class.

Handler threads cannot be killed. After a timeout the executor waits up
to `settle_timeout` for the handler to return before rolling back. A
handler still running after that gets the rollback applied again when
it finally returns; writes to the same files in between are lost.
"""

from __future__ import annotations

import json
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from concurrent.futures import TimeoutError as FutureTimeout
from datetime import datetime, timezone
from typing import Any

from loguru import logger
from pydantic import BaseModel, Field

from vibe.approval import ApprovalGate, ApprovalType, callback_prompter
from vibe.errors import CheckpointError, SandboxRejected, ToolExecutionFailed, ToolTimeout, VibeError
from vibe.event_bus import EventBus
from vibe.tools.base import ExecutionContext, RiskLevel, ToolCategory, ToolResult
from vibe.tools.registry import ToolDefinition, ToolRegistry
from vibe.tools.sandbox import Sandbox
from vibe.tools.security import max_severity, sanitize_command, scan_command
from vibe.workspace.checkpoints import Checkpoint, CheckpointStore

# Extra wait past the tool timeout so a shell tool can report its own kill first
_HANDLER_GRACE = 2.0


class ToolConfig(BaseModel):
    """One requested tool call. Risk and approval can only be raised, never lowered."""
    name: str
    args: dict[str, Any] = Field(default_factory=dict)
    timeout: float | None = None
    requires_approval: bool | None = None
    risk_level: RiskLevel | None = None
    description: str | None = None


class ExecutionRecord(BaseModel):
    tool: str
    args: dict[str, Any]
    result: ToolResult
    rolled_back: bool = False
    timestamp: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


class ToolExecutor:
    def __init__(
        self,
        registry: ToolRegistry,
        checkpoints: CheckpointStore,
        approvals: ApprovalGate,
        sandbox: Sandbox | None = None,
        default_timeout: float = 60.0,
        event_bus: EventBus | None = None,
        settle_timeout: float = 10.0,
    ):
        self.registry = registry
        self.checkpoints = checkpoints
        self.approvals = approvals
        self.sandbox = sandbox
        self.default_timeout = default_timeout
        self.event_bus = event_bus
        self.settle_timeout = settle_timeout
        self._history: dict[str, list[ExecutionRecord]] = {}
        self._tool_checkpoints: dict[str, list[str]] = {}

    # -----------------------------------------------------------------------
    # Execute
    # -----------------------------------------------------------------------

    def execute(self, config: ToolConfig, ctx: ExecutionContext) -> ToolResult:
        start = time.monotonic()
        tool = self.registry.get(config.name)
        if tool is None:
            return ToolResult.fail(f"Tool not found: {config.name}", code="TOOL_NOT_FOUND")

        problems = tool.schema.validate_args(config.args)
        if problems:
            return ToolResult.fail(f"Invalid arguments for {tool.name}: {'; '.join(problems)}", code="INVALID_ARGS")

        risk = self._effective_risk(tool, config)
        timeout = config.timeout or ctx.timeout or self.default_timeout
        ctx = ctx.with_updates(timeout=timeout)

        # 1. Checkpoint
        checkpoint_id: str | None = None
        if not tool.read_only:
            try:
                checkpoint_id = self.checkpoints.create(
                    ctx.session_id,
                    f"Before: {tool.name}",
                    paths=tool.target_paths(config.args, ctx),
                )
            except CheckpointError as e:
                logger.error(f"[EXEC] Checkpoint failed for {tool.name}: {e}")
                return self._finish(tool, config, ctx, ToolResult.fail(str(e), code=e.code), start)

        # 2. Approval
        needs_approval = tool.requires_approval or bool(config.requires_approval)
        if needs_approval and not ctx.approved:
            prompter = callback_prompter(ctx.approval_callback) if ctx.approval_callback else None
            approved = self.approvals.request(
                config.description or f"Run {tool.name}",
                self._describe_operations(tool, config.args),
                risk,
                _approval_type(tool),
                prompter=prompter,
            )
            if not approved:
                self._drop(checkpoint_id)
                self._emit("tool_denied", tool, ctx, {"success": False, "error": "Execution cancelled by user"})
                return self._finish(
                    tool, config, ctx,
                    ToolResult.fail("Execution cancelled by user", code="POLICY_DENIED"),
                    start, record=False,
                )

        # 3. Dry run
        if ctx.dry_run:
            self._drop(checkpoint_id)
            return self._finish(
                tool, config, ctx,
                ToolResult.ok(self._format_dry_run(tool, config.args, risk), data={"dry_run": True}),
                start, record=False,
            )

        # 4. Sandbox
        if ctx.sandbox_enabled and not tool.sandbox_allowed:
            self._drop(checkpoint_id)
            rejection = SandboxRejected(f"{tool.name} is not allowed in sandbox mode")
            return self._finish(
                tool, config, ctx,
                ToolResult.fail(rejection.message, code=rejection.code),
                start, record=False,
            )

        # 5. Run
        self._emit("tool_started", tool, ctx, {"args": _loggable(config.args)})
        pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"tool-{tool.name}")
        future = pool.submit(tool.handler.run, config.args, ctx)
        pool.shutdown(wait=False)
        try:
            result = self._await(tool, future, timeout)
        except VibeError as e:
            result = ToolResult.fail(e.message, code=e.code, retryable=e.retryable,
                                     timed_out=isinstance(e, ToolTimeout))
        except Exception as e:
            logger.exception(f"[EXEC] {tool.name} raised")
            result = ToolResult.fail(f"{type(e).__name__}: {e}", code=ToolExecutionFailed.code)

        rolled_back = False
        if not result.success and checkpoint_id is not None:
            straggler = None if future.done() else self.checkpoints.get(checkpoint_id)
            rolled_back = self._rollback(tool, ctx, checkpoint_id)
            if straggler is not None:
                self._rollback_when_done(tool, ctx, future, straggler)
            checkpoint_id = None
        elif checkpoint_id is not None:
            self._tool_checkpoints.setdefault(ctx.session_id, []).append(checkpoint_id)

        result = result.model_copy(update={"checkpoint_id": checkpoint_id})
        self._emit(
            "tool_completed" if result.success else "tool_failed",
            tool, ctx,
            {"success": result.success, "error": result.error, "error_code": result.error_code},
        )
        return self._finish(tool, config, ctx, result, start, rolled_back=rolled_back)

    def run_shell(self, command: str, ctx: ExecutionContext, timeout: float | None = None) -> ToolResult:
        return self.execute(ToolConfig(name="shell_exec", args={"command": command}, timeout=timeout), ctx)

    # -----------------------------------------------------------------------
    # Internals
    # -----------------------------------------------------------------------

    def _await(self, tool: ToolDefinition, future: Future, timeout: float) -> ToolResult:
        try:
            result = future.result(timeout=timeout + _HANDLER_GRACE)
        except FutureTimeout:
            # The rollback must land after the handler's last write
            wait([future], timeout=self.settle_timeout)
            if not future.done():
                logger.warning(f"[EXEC] {tool.name} still running {self.settle_timeout:.0f}s past its deadline")
            raise ToolTimeout(f"{tool.name} timed out after {timeout:.0f}s", timeout=timeout)

        if not isinstance(result, ToolResult):
            raise ToolExecutionFailed(f"{tool.name} returned {type(result).__name__}, expected ToolResult")
        return result

    def _rollback(self, tool: ToolDefinition, ctx: ExecutionContext, checkpoint_id: str) -> bool:
        restored = self.checkpoints.restore(checkpoint_id)
        if restored:
            logger.info(f"[EXEC] Rolled back {tool.name} ({checkpoint_id})")
        else:
            logger.error(f"[EXEC] Rollback of {tool.name} failed; checkpoint {checkpoint_id} kept")
        self._emit("tool_rolled_back", tool, ctx, {"success": restored, "checkpoint_id": checkpoint_id})
        return restored

    def _rollback_when_done(
        self, tool: ToolDefinition, ctx: ExecutionContext, future: Future, checkpoint: Checkpoint
    ) -> None:
        def reapply(_: Future) -> None:
            restored = self.checkpoints.reapply(checkpoint)
            logger.warning(f"[EXEC] {tool.name} returned after its rollback; reapplied {checkpoint.id}")
            self._emit("tool_rolled_back", tool, ctx,
                       {"success": restored, "checkpoint_id": checkpoint.id, "late": True})

        future.add_done_callback(reapply)

    def _drop(self, checkpoint_id: str | None) -> None:
        if checkpoint_id is not None:
            self.checkpoints.discard(checkpoint_id)

    def _finish(
        self,
        tool: ToolDefinition,
        config: ToolConfig,
        ctx: ExecutionContext,
        result: ToolResult,
        start: float,
        record: bool = True,
        rolled_back: bool = False,
    ) -> ToolResult:
        if not result.duration_ms:
            result = result.model_copy(update={"duration_ms": int((time.monotonic() - start) * 1000)})
        if record:
            self._history.setdefault(ctx.session_id, []).append(
                ExecutionRecord(tool=tool.name, args=_loggable(config.args), result=result, rolled_back=rolled_back)
            )
        status = "ok" if result.success else f"failed ({result.error_code})"
        logger.debug(f"[EXEC] {tool.name} {status} in {result.duration_ms}ms")
        return result

    def _effective_risk(self, tool: ToolDefinition, config: ToolConfig) -> RiskLevel:
        risk = RiskLevel.highest(tool.risk_level, config.risk_level)
        if tool.category == ToolCategory.SHELL and isinstance(config.args.get("command"), str):
            risk = RiskLevel.highest(risk, max_severity(scan_command(config.args["command"])))
        return risk

    @staticmethod
    def _describe_operations(tool: ToolDefinition, args: dict[str, Any]) -> list[str]:
        if tool.category == ToolCategory.SHELL and "command" in args:
            return [f"$ {sanitize_command(str(args['command']))}"]
        ops = [f"{tool.name}"]
        for key, value in args.items():
            text = value if isinstance(value, str) else json.dumps(value, default=str)
            if len(text) > 200:
                text = text[:200] + "…"
            ops.append(f"{key}: {text}")
        return ops

    @staticmethod
    def _format_dry_run(tool: ToolDefinition, args: dict[str, Any], risk: RiskLevel) -> str:
        lines = [f"[DRY RUN] Would execute: {tool.name}", f"  risk: {risk.value}"]
        for key, value in args.items():
            text = sanitize_command(value) if key == "command" and isinstance(value, str) else value
            lines.append(f"  {key}: {json.dumps(text, default=str)[:200]}")
        return "\n".join(lines)

    def _emit(self, event_type: str, tool: ToolDefinition, ctx: ExecutionContext, payload: dict[str, Any]) -> None:
        if self.event_bus is None:
            return
        self.event_bus.emit(event_type, "executor", {"tool": tool.name, **payload}, session_id=ctx.session_id)

    # -----------------------------------------------------------------------
    # History / lifecycle
    # -----------------------------------------------------------------------

    def history(self, session_id: str) -> list[ExecutionRecord]:
        return list(self._history.get(session_id, []))

    def release_checkpoints(self, session_id: str) -> int:
        """Discard the per-call checkpoints kept for successful calls of a session."""
        ids = self._tool_checkpoints.pop(session_id, [])
        for checkpoint_id in ids:
            self.checkpoints.discard(checkpoint_id)
        return len(ids)

    def close(self) -> None:
        for session_id in list(self._tool_checkpoints):
            self.release_checkpoints(session_id)
        self._history.clear()


def _approval_type(tool: ToolDefinition) -> str:
    if tool.category == ToolCategory.SHELL:
        return ApprovalType.SHELL.value
    if tool.category == ToolCategory.GIT:
        return ApprovalType.GIT_MUTATION.value
    return ApprovalType.FILE_WRITE.value


def _loggable(args: dict[str, Any]) -> dict[str, Any]:
    return {
        k: sanitize_command(v) if k == "command" and isinstance(v, str) else v
        for k, v in args.items()
    }
