"""
VIBE Controller — The Pipeline

It is NOT smart. It is deterministic.

  PLAN → PROPOSE → APPROVE → EXECUTE → VERIFY → EXPLAIN

Responsibilities:
  - Build the session's services (sandbox, checkpoints, editor, registry,
    approval gate, executor) and own their lifecycle
  - Run the phases strictly in order, recording an AgentStep for each
  - Gate the whole plan once, on its effective risk
  - Keep the run-wide checkpoint so the user can undo the task
  - Turn every phase failure into a PipelineResult, never an exception

It never decides what to run. The planner proposes, the gate decides.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from loguru import logger
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from vibe import __version__
from vibe.agents import AgentExecutionContext
from vibe.agents.executor import ExecutorAgent
from vibe.agents.planner import ExecutionPlan, PlannerAgent
from vibe.agents.reviewer import ReviewerAgent
from vibe.approval import ApprovalGate, ApprovalType, ConsolePrompter, Prompter
from vibe.audit_logger import AuditLogger
from vibe.config_loader import VibeConfig, env_dry_run, load_config
from vibe.errors import PolicyDenied, VibeError, create_error_response
from vibe.event_bus import EventBus
from vibe.router import ChatProvider, Router
from vibe.state import AgentPhase, AgentStep, AgentTask, ApprovalMode, PipelineResult, RunState
from vibe.tools.base import RiskLevel
from vibe.tools.executor import ToolExecutor
from vibe.tools.registry import default_registry
from vibe.tools.sandbox import Sandbox
from vibe.workspace import Workspace
from vibe.workspace.checkpoints import CheckpointStore
from vibe.workspace.diff import DiffEngine
from vibe.workspace.editor import DiffEditor

_RISK_STYLE = {
    RiskLevel.LOW: "green",
    RiskLevel.MEDIUM: "yellow",
    RiskLevel.HIGH: "red",
    RiskLevel.CRITICAL: "bold red",
}


def new_session_id() -> str:
    ts = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
    return f"vibe-{ts}-{uuid.uuid4().hex[:6]}"


class AgentPipeline:
    def __init__(
        self,
        repo_path: Path,
        config: VibeConfig | None = None,
        router: ChatProvider | None = None,
        prompter: Prompter | None = None,
        auto_approve: bool = False,
        event_bus: EventBus | None = None,
        console: Console | None = None,
    ):
        self.repo_path = Path(repo_path).resolve()
        self.config = config or load_config(self.repo_path)
        self.console = console or Console()
        self._owns_bus = event_bus is None
        self.event_bus = event_bus or EventBus()

        # Core services
        self.workspace = Workspace(self.repo_path)
        self.sandbox = Sandbox(self.config.sandbox, self.repo_path)
        self.checkpoints = CheckpointStore.from_settings(self.workspace, self.config.checkpoints)
        self.diff_engine = DiffEngine(
            lookahead=self.config.diff.lookahead,
            max_hunk_lines=self.config.diff.max_hunk_lines,
        )
        self.editor = DiffEditor(self.checkpoints, self.diff_engine, self.sandbox)
        self.registry = default_registry(self.sandbox, self.editor)
        self.approvals = ApprovalGate.from_settings(
            self.config.approvals,
            prompter=prompter or ConsolePrompter(self.console),
        )
        if auto_approve:
            self.approvals.set_auto_approve(True)
        self.executor = ToolExecutor(
            self.registry,
            self.checkpoints,
            self.approvals,
            sandbox=self.sandbox,
            default_timeout=self.config.executor.default_timeout,
            settle_timeout=self.config.executor.settle_timeout,
            event_bus=self.event_bus,
        )

        # Audit trail
        self.audit = AuditLogger(self.repo_path / self.config.workspace.audit_file)
        self.audit.attach(self.event_bus)

        # Agents
        self.provider = router if router is not None else Router(self.config)
        self.planner = PlannerAgent(self.provider, self.registry)
        self.executor_agent = ExecutorAgent()
        self.reviewer = ReviewerAgent(self.provider)

    # -----------------------------------------------------------------------
    # Run
    # -----------------------------------------------------------------------

    def run(self, task: AgentTask | str, dry_run: bool = False, session_id: str | None = None) -> PipelineResult:
        """Execute the full phase pipeline for one task."""
        if isinstance(task, str):
            task = AgentTask(
                task=task,
                approval_mode=ApprovalMode(self.config.pipeline.approval_mode),
                max_steps=self.config.pipeline.max_steps,
            )
        session_id = session_id or new_session_id()
        dry_run = dry_run or env_dry_run()
        self.approvals.start_session(session_id)

        state = RunState(session_id=session_id, task=task.task)
        ctx = AgentExecutionContext(
            working_dir=self.repo_path,
            session_id=session_id,
            executor=self.executor,
            registry=self.registry,
            dry_run=dry_run,
            sandbox_enabled=self.sandbox.enabled,
        )

        self.console.print(Panel(
            f"[bold green]Task:[/] {escape(task.task[:120])}\n"
            f"[bold]Session:[/] {session_id}  |  [bold]Approval:[/] {task.approval_mode.value}"
            f"{'  |  [yellow]DRY RUN[/]' if dry_run else ''}"
            f"{'  |  [cyan]SANDBOX[/]' if self.sandbox.enabled else ''}",
            title=f"⚡ VIBE v{__version__}",
            subtitle="Plan it. Approve it. Run it. Undo it.",
            border_style="bright_green",
        ))

        try:
            result = self._run_phases(task, state, ctx)
        except Exception as e:
            logger.exception(f"[PIPELINE] {session_id} crashed")
            error = create_error_response(e)["error"]
            result = self._result(state, ctx, success=False, error=f"{error['code']}: {error['message']}")
        finally:
            self.executor.release_checkpoints(session_id)

        state.status = "succeeded" if result.success else "failed"
        state.error = result.error
        state.finished_at = datetime.now(timezone.utc).isoformat()
        state_dir = self.repo_path / self.config.workspace.state_dir
        result.artifacts["approvals"] = self.approvals.get_status()
        result.artifacts["state_file"] = str(state.persist(state_dir))

        self.event_bus.emit(
            "pipeline_completed",
            "pipeline",
            {"success": result.success, "error": result.error, "checkpoint_id": result.checkpoint_id},
            session_id=session_id,
        )
        self._print_result(result)
        return result

    def _run_phases(self, task: AgentTask, state: RunState, ctx: AgentExecutionContext) -> PipelineResult:
        # ── PLAN ──
        self.console.print("\n[bold magenta]🧠 Planning...[/]")
        start = _now_ms()
        try:
            plan = self.planner.plan(task)
        except (VibeError, ValueError) as e:
            message = e.message if isinstance(e, VibeError) else str(e)
            self._record(state, AgentPhase.PLAN, "Create plan", f"Planning failed: {message}", start)
            return self._result(state, ctx, success=False, error=f"Planning failed: {message}")
        state.plan = plan.model_dump(mode="json")
        self._record(state, AgentPhase.PLAN, "Create plan", plan.render(), start)
        state.persist(self.repo_path / self.config.workspace.state_dir)

        # ── PROPOSE ──
        start = _now_ms()
        self._print_plan(plan)
        self._record(state, AgentPhase.PROPOSE, "Present plan", f"{len(plan.steps)} step(s)", start)

        # ── APPROVE ──
        start = _now_ms()
        approved, reason = self._approve(task, plan)
        self._record(state, AgentPhase.APPROVE, "Approve plan", reason, start, approved=approved)
        if not approved:
            denial = PolicyDenied(f"Plan not approved: {reason}")
            return self._result(state, ctx, success=False, error=f"{denial.code}: {denial.message}")
        ctx.approved = True

        # ── EXECUTE ──
        self.console.print("\n[bold blue]🔧 Executing...[/]")
        execution = self.executor_agent.run(
            task, plan, ctx, stop_on_failure=self.config.pipeline.stop_on_failure
        )
        for step in execution.steps:
            self._record_step(state, step)
        state.checkpoint_id = execution.artifacts.get("checkpoint_id")

        # ── VERIFY + EXPLAIN ──
        self.console.print("\n[bold cyan]🔍 Reviewing...[/]")
        review = self.reviewer.review(task, ctx.results)
        for step in review.steps:
            self._record_step(state, step)

        success = execution.success and review.success
        error = None if success else (execution.error or review.error)
        return self._result(
            state, ctx,
            success=success,
            output=review.output,
            error=error,
            artifacts={"files_changed": execution.artifacts.get("files_changed", [])},
        )

    def _approve(self, task: AgentTask, plan: ExecutionPlan) -> tuple[bool, str]:
        risk = plan.estimated_risk
        if risk == RiskLevel.LOW:
            return True, "Skipped (low risk)"
        if task.approval_mode == ApprovalMode.AUTO:
            return True, f"Auto-approved ({risk.value} risk)"
        if task.approval_mode == ApprovalMode.NEVER:
            return False, f"Approval mode 'never' refuses {risk.value}-risk plans"

        operations = [
            f"{idx}. [{step.risk.value}] {step.tool}: {step.description}"
            for idx, step in enumerate(plan.steps, start=1)
        ]
        approved = self.approvals.request(
            f"Execute plan: {task.task}",
            operations,
            risk,
            ApprovalType.PLAN.value,
        )
        return approved, "Approved" if approved else "Denied"

    # -----------------------------------------------------------------------
    # Recording
    # -----------------------------------------------------------------------

    def _record(
        self,
        state: RunState,
        phase: AgentPhase,
        action: str,
        result: str,
        start_ms: int,
        approved: bool | None = None,
    ) -> None:
        self._record_step(state, AgentStep(
            phase=phase,
            action=action,
            result=result,
            approved=approved,
            duration_ms=_now_ms() - start_ms,
        ))

    def _record_step(self, state: RunState, step: AgentStep) -> None:
        state.record(step)
        self.event_bus.emit("agent_step", "pipeline", step.model_dump(mode="json"), session_id=state.session_id)

    @staticmethod
    def _result(
        state: RunState,
        ctx: AgentExecutionContext,
        success: bool,
        output: str = "",
        error: str | None = None,
        artifacts: dict[str, Any] | None = None,
    ) -> PipelineResult:
        return PipelineResult(
            success=success,
            session_id=state.session_id,
            output=output,
            error=error,
            steps=list(state.steps),
            plan=state.plan,
            results=list(ctx.results),
            checkpoint_id=state.checkpoint_id,
            artifacts=artifacts or {},
        )

    # -----------------------------------------------------------------------
    # Display Helpers
    # -----------------------------------------------------------------------

    def _print_plan(self, plan: ExecutionPlan) -> None:
        table = Table(title="Execution Plan", border_style="magenta")
        table.add_column("#", style="dim")
        table.add_column("Tool")
        table.add_column("Risk")
        table.add_column("Description")

        for idx, step in enumerate(plan.steps, start=1):
            style = _RISK_STYLE.get(step.risk, "white")
            table.add_row(str(idx), escape(step.tool), f"[{style}]{step.risk.value}[/]", escape(step.description))

        self.console.print(table)
        if plan.summary:
            self.console.print(f"[dim]{escape(plan.summary)}[/]")
        style = _RISK_STYLE.get(plan.estimated_risk, "white")
        self.console.print(f"Risk: [{style}]{plan.estimated_risk.value}[/]")

    def _print_result(self, result: PipelineResult) -> None:
        if result.success:
            body = escape(result.output) or "Done."
            if result.checkpoint_id:
                body += f"\n\n[dim]Undo with: vibe undo {result.checkpoint_id}[/]"
            self.console.print(Panel(body, title="✅ Done", border_style="green"))
        else:
            self.console.print(Panel(
                f"[red]{escape(result.error or 'Failed')}[/]" + (f"\n\n{escape(result.output)}" if result.output else ""),
                title="❌ Failed",
                border_style="red",
            ))

    # -----------------------------------------------------------------------
    # Lifecycle
    # -----------------------------------------------------------------------

    def close(self) -> None:
        self.executor.close()
        self.approvals.close()
        self.checkpoints.close()
        self.sandbox.close()
        self.audit.close()
        if self._owns_bus:
            self.event_bus.close()

    def __enter__(self) -> "AgentPipeline":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()


def _now_ms() -> int:
    return int(datetime.now(timezone.utc).timestamp() * 1000)
