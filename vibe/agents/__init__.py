"""
VIBE Agent Roster

  - PlannerAgent   — PLAN:    task → validated ExecutionPlan
  - ExecutorAgent  — EXECUTE: plan steps → ToolExecutor calls
  - ReviewerAgent  — VERIFY + EXPLAIN

Agents are stateless between runs. Everything a run produces lives in
the AgentExecutionContext and the RunState the controller owns.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from vibe.errors import ProviderError
from vibe.router import ChatProvider, ChatResponse
from vibe.state import AgentPhase, AgentStep
from vibe.tools.base import ApprovalCallback, ExecutionContext, ToolResult
from vibe.tools.executor import ToolConfig, ToolExecutor
from vibe.tools.registry import ToolRegistry


class AgentResult(BaseModel):
    success: bool
    output: str = ""
    error: str | None = None
    steps: list[AgentStep] = Field(default_factory=list)
    artifacts: dict[str, Any] = Field(default_factory=dict)


@dataclass
class AgentExecutionContext:
    """Everything the agents of one session share: services plus the tool results so far."""
    working_dir: Path
    session_id: str
    executor: ToolExecutor
    registry: ToolRegistry
    dry_run: bool = False
    sandbox_enabled: bool = False
    approved: bool = False
    approval_callback: ApprovalCallback | None = None
    results: list[ToolResult] = field(default_factory=list)

    def tool_context(self) -> ExecutionContext:
        return ExecutionContext(
            working_dir=self.working_dir,
            session_id=self.session_id,
            dry_run=self.dry_run,
            sandbox_enabled=self.sandbox_enabled,
            approved=self.approved,
            approval_callback=self.approval_callback,
        )

    def execute_tool(self, name: str, args: dict[str, Any], **config: Any) -> ToolResult:
        result = self.executor.execute(ToolConfig(name=name, args=args, **config), self.tool_context())
        self.results.append(result)
        return result

    def create_checkpoint(self, description: str) -> str:
        return self.executor.checkpoints.create(self.session_id, description)


class BaseAgent:
    """
    Base class for VIBE agents.

    Subclasses set `role` (maps to a routed model) and `system_prompt`.
    The provider is optional: agents that can work without a model
    fall back to deterministic behavior when it is None.
    """

    role: str = "unknown"
    system_prompt: str = "You are a helpful assistant."

    def __init__(self, provider: ChatProvider | None = None):
        self.provider = provider

    def chat(self, messages: list[dict[str, str]], **kwargs: Any) -> ChatResponse:
        if self.provider is None:
            raise ProviderError(f"{type(self).__name__} has no provider configured")
        return self.provider.chat(messages, role=self.role, **kwargs)

    def _system_msg(self) -> dict[str, str]:
        return {"role": "system", "content": self.system_prompt}

    def _user_msg(self, content: str) -> dict[str, str]:
        return {"role": "user", "content": content}

    @staticmethod
    def _step(
        phase: AgentPhase,
        action: str,
        result: str,
        started: float,
        approved: bool | None = None,
    ) -> AgentStep:
        return AgentStep(
            phase=phase,
            action=action,
            result=result,
            approved=approved,
            duration_ms=int((time.monotonic() - started) * 1000),
        )
