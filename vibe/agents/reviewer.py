"""
VIBE Reviewer — VERIFY and EXPLAIN phases

VERIFY is deterministic and looks only at the last tool result.
EXPLAIN asks the model for a short summary; it never gates the flow,
so any provider failure falls back to a plain summary.
"""

from __future__ import annotations

import json
import time

from loguru import logger

from vibe.agents import AgentResult, BaseAgent
from vibe.errors import VibeError
from vibe.state import AgentPhase, AgentTask
from vibe.tools.base import ToolResult


def verify_result(result: ToolResult | None) -> tuple[bool, str]:
    if result is None:
        return False, "No results to verify"
    if not result.success:
        return False, f"Execution failed: {result.error}"
    if not result.output or not result.output.strip():
        return False, "No output produced"
    return True, "Execution completed successfully"


class ReviewerAgent(BaseAgent):
    role = "reviewer"
    system_prompt = "You are a helpful assistant that explains code changes. Be concise and concrete."

    def review(self, task: AgentTask, results: list[ToolResult]) -> AgentResult:
        started = time.monotonic()
        last = results[-1] if results else None
        valid, message = verify_result(last)
        verify_step = self._step(AgentPhase.VERIFY, "Verify execution result", message, started)

        started = time.monotonic()
        explanation = self.explain(task, results, message)
        explain_step = self._step(AgentPhase.EXPLAIN, "Explain actions taken", explanation, started)

        return AgentResult(
            success=valid,
            output=f"Verification: {message}\n\nExplanation:\n{explanation}",
            error=None if valid else "Verification failed",
            steps=[verify_step, explain_step],
        )

    def explain(self, task: AgentTask, results: list[ToolResult], verification: str) -> str:
        if self.provider is None:
            return fallback_summary(task, results, verification)

        last = results[-1].model_dump(exclude={"data"}) if results else None
        prompt = (
            f"Task: {task.task}\n\n"
            f"Tool calls: {len(results)}\n"
            f"Last result: {json.dumps(last, indent=2, default=str)[:4000]}\n\n"
            f"Verification: {verification}\n\n"
            "Explain what was done and why. Keep it concise and actionable."
        )
        try:
            response = self.chat([self._system_msg(), self._user_msg(prompt)])
        except VibeError as e:
            logger.warning(f"[REVIEWER] Explanation unavailable: {e}")
            return fallback_summary(task, results, verification)
        return response.content.strip() or fallback_summary(task, results, verification)


def fallback_summary(task: AgentTask, results: list[ToolResult], verification: str) -> str:
    ok = sum(1 for r in results if r.success)
    changed = sorted({f for r in results for f in r.files_changed})
    lines = [f"Task: {task.task}", f"{ok}/{len(results)} tool call(s) succeeded. {verification}."]
    if changed:
        lines.append("Files changed: " + ", ".join(changed))
    return "\n".join(lines)
