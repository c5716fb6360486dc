"""
VIBE Executor Agent — EXECUTE phase

Dispatches each plan step through the ToolExecutor. Holds no model: the
plan already says what to run. A run-wide checkpoint is taken first so
the whole task can be undone as one unit.
"""

from __future__ import annotations

import time

from loguru import logger

from vibe.agents import AgentExecutionContext, AgentResult, BaseAgent
from vibe.agents.planner import ExecutionPlan
from vibe.state import AgentPhase, AgentStep, AgentTask


class ExecutorAgent(BaseAgent):
    role = "executor"

    def run(
        self,
        task: AgentTask,
        plan: ExecutionPlan,
        ctx: AgentExecutionContext,
        stop_on_failure: bool = True,
    ) -> AgentResult:
        steps: list[AgentStep] = []
        checkpoint_id: str | None = None

        if task.checkpoint and not ctx.dry_run:
            started = time.monotonic()
            checkpoint_id = ctx.create_checkpoint(f"Before: {task.task[:80]}")
            steps.append(self._step(AgentPhase.EXECUTE, "Create checkpoint", checkpoint_id, started))

        # Only the steps that went through APPROVE are run.
        plan_steps = plan.steps
        outputs: list[str] = []
        failed: str | None = None
        files_changed: list[str] = []

        for idx, step in enumerate(plan_steps, start=1):
            started = time.monotonic()
            logger.info(f"[EXECUTOR] Step {idx}/{len(plan_steps)}: {step.tool} — {step.description}")
            result = ctx.execute_tool(
                step.tool,
                step.args,
                risk_level=step.risk,
                description=step.description,
            )
            summary = result.output if result.success else f"{result.error_code}: {result.error}"
            steps.append(self._step(
                AgentPhase.EXECUTE,
                f"{step.tool}: {step.description}",
                summary,
                started,
                approved=result.error_code != "POLICY_DENIED",
            ))

            if result.success:
                outputs.append(result.output)
                files_changed.extend(result.files_changed)
                continue

            failed = f"Step {idx} ({step.tool}) failed: {result.error}"
            logger.warning(f"[EXECUTOR] {failed}")
            if stop_on_failure:
                break

        return AgentResult(
            success=failed is None,
            output="\n".join(o for o in outputs if o),
            error=failed,
            steps=steps,
            artifacts={"checkpoint_id": checkpoint_id, "files_changed": files_changed},
        )
