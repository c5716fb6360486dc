"""
VIBE Run State

The task that comes in, the steps recorded while it runs, and the
result that goes out. RunState is the working memory of one pipeline
run; the controller owns it and persists it after every phase.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field

from vibe.errors import ConfigurationError
from vibe.tools.base import ToolResult


class AgentPhase(str, Enum):
    PLAN = "plan"
    PROPOSE = "propose"
    APPROVE = "approve"
    EXECUTE = "execute"
    VERIFY = "verify"
    EXPLAIN = "explain"


class ApprovalMode(str, Enum):
    AUTO = "auto"
    PROMPT = "prompt"
    NEVER = "never"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Task
# ---------------------------------------------------------------------------

class AgentTask(BaseModel):
    """
    One unit of work. `steps`, when given, is a pre-written plan that
    bypasses the planner model but is validated the same way.
    """
    task: str
    context: dict[str, Any] = Field(default_factory=dict)
    approval_mode: ApprovalMode = ApprovalMode.PROMPT
    max_steps: int = 20
    checkpoint: bool = True
    steps: list[dict[str, Any]] | None = None
    file_path: Path | None = Field(default=None, exclude=True)

    @classmethod
    def from_yaml(cls, path: Path) -> "AgentTask":
        try:
            with open(path) as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Cannot load task file {path}: {e}", path=str(path))
        if not isinstance(data, dict):
            raise ConfigurationError(f"Task file must be a mapping: {path}", path=str(path))
        # `objective` is accepted as an alias for `task`
        if "task" not in data and "objective" in data:
            data["task"] = data.pop("objective")
        data["file_path"] = path
        return cls(**data)


# ---------------------------------------------------------------------------
# Steps
# ---------------------------------------------------------------------------

class AgentStep(BaseModel):
    model_config = ConfigDict(frozen=True)

    phase: AgentPhase
    action: str
    result: str = ""
    approved: bool | None = None
    duration_ms: int = 0
    timestamp: str = Field(default_factory=_now)


class RunState(BaseModel):
    session_id: str
    task: str
    phase: AgentPhase | None = None
    started_at: str = Field(default_factory=_now)
    finished_at: str | None = None
    steps: list[AgentStep] = Field(default_factory=list)
    plan: dict[str, Any] | None = None
    checkpoint_id: str | None = None
    status: str = "pending"
    error: str | None = None

    def record(self, step: AgentStep) -> None:
        self.phase = step.phase
        self.steps.append(step)

    def persist(self, state_dir: Path) -> Path:
        """Write to `<state_dir>/runs/<session_id>.json`."""
        runs = state_dir / "runs"
        runs.mkdir(parents=True, exist_ok=True)
        path = runs / f"{self.session_id}.json"
        path.write_text(self.model_dump_json(indent=2))
        return path


class PipelineResult(BaseModel):
    success: bool
    session_id: str
    output: str = ""
    error: str | None = None
    steps: list[AgentStep] = Field(default_factory=list)
    plan: dict[str, Any] | None = None
    results: list[ToolResult] = Field(default_factory=list)
    checkpoint_id: str | None = None
    artifacts: dict[str, Any] = Field(default_factory=dict)
