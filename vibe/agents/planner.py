"""
VIBE Planner — PLAN phase

Turns a task into an ordered list of tool calls. Never executes
anything. The model proposes; validation decides: an unknown tool, bad
arguments or too many steps fail the phase before anything is touched.
"""

from __future__ import annotations

import json
import re
from typing import Any

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from vibe.agents import BaseAgent
from vibe.errors import PlanValidationError
from vibe.router import ChatProvider
from vibe.state import AgentTask
from vibe.tools.base import RiskLevel
from vibe.tools.registry import ToolRegistry
from vibe.tools.security import max_severity, scan_command


# ---------------------------------------------------------------------------
# Strict Output Schemas
# ---------------------------------------------------------------------------

class PlanStep(BaseModel):
    model_config = ConfigDict(extra="forbid")

    description: str
    tool: str
    args: dict[str, Any] = Field(default_factory=dict)
    reason: str = ""
    risk: RiskLevel = RiskLevel.LOW


class ExecutionPlan(BaseModel):
    model_config = ConfigDict(extra="forbid")

    steps: list[PlanStep] = Field(default_factory=list)
    estimated_risk: RiskLevel = RiskLevel.LOW
    summary: str = ""

    def render(self) -> str:
        if not self.steps:
            return f"{self.summary or 'No steps planned.'}\n(risk: {self.estimated_risk.value})"
        lines = [self.summary] if self.summary else []
        for idx, step in enumerate(self.steps, start=1):
            lines.append(f"{idx}. [{step.risk.value}] {step.description} → {step.tool}")
        lines.append(f"Overall risk: {self.estimated_risk.value}")
        return "\n".join(lines)


# ---------------------------------------------------------------------------
# Risk heuristics
# ---------------------------------------------------------------------------

CRITICAL_KEYWORDS = ("delete all", "drop database", "production", "rm -rf", "sudo")
HIGH_KEYWORDS = ("delete", "remove", "deploy", "database", "migration", "api-key", "secret")
MEDIUM_KEYWORDS = ("modify", "change", "update", "refactor", "api", "endpoint", "write")

_RISK_SCORE = {RiskLevel.LOW: 1, RiskLevel.MEDIUM: 2, RiskLevel.HIGH: 3, RiskLevel.CRITICAL: 4}


def infer_risk_from_description(description: str) -> RiskLevel:
    text = description.lower()
    if any(kw in text for kw in CRITICAL_KEYWORDS):
        return RiskLevel.CRITICAL
    if any(kw in text for kw in HIGH_KEYWORDS):
        return RiskLevel.HIGH
    if any(kw in text for kw in MEDIUM_KEYWORDS):
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def calculate_total_risk(risks: list[RiskLevel]) -> RiskLevel:
    """Average-score aggregate. Coarser than the max; used for reporting only."""
    if not risks:
        return RiskLevel.LOW
    avg = sum(_RISK_SCORE[RiskLevel(r)] for r in risks) / len(risks)
    if avg >= 3:
        return RiskLevel.HIGH
    if avg >= 1.5:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def parse_execution(task: str) -> tuple[str, dict[str, Any]]:
    """Best-effort single tool call for a task that came with no plan."""
    lower = task.lower()

    if "read" in lower or "cat" in lower:
        m = re.search(r"(?:read|cat)\s+(\S+)", task, re.IGNORECASE)
        return "file_read", {"path": m.group(1) if m else task}

    if "search" in lower or "find" in lower:
        m = re.search(r"(?:search|find)\s+(?:for\s+)?[\"']?([^\"'\n]+)[\"']?", task, re.IGNORECASE)
        return "file_search", {"pattern": (m.group(1) if m else task).strip()}

    m = re.search(r"(?:run|execute)\s+(.+)", task, re.IGNORECASE)
    return "shell_exec", {"command": (m.group(1) if m else task).strip()}


def validate_plan(plan: ExecutionPlan, registry: ToolRegistry, max_steps: int) -> list[str]:
    issues: list[str] = []
    if len(plan.steps) > max_steps:
        issues.append(f"Plan has {len(plan.steps)} steps, the limit is {max_steps}")
    for idx, step in enumerate(plan.steps, start=1):
        tool = registry.get(step.tool)
        if tool is None:
            issues.append(f"Step {idx}: unknown tool '{step.tool}'")
            continue
        for problem in tool.schema.validate_args(step.args):
            issues.append(f"Step {idx} ({step.tool}): {problem}")
    return issues


def score_plan(plan: ExecutionPlan, registry: ToolRegistry) -> ExecutionPlan:
    """Raise every step to at least its tool's, its wording's and its command's risk; the plan to its riskiest step."""
    steps = []
    for step in plan.steps:
        tool = registry.get(step.tool)
        command = step.args.get("command")
        risk = RiskLevel.highest(
            step.risk,
            tool.risk_level if tool else None,
            infer_risk_from_description(step.description),
            max_severity(scan_command(command)) if isinstance(command, str) else None,
        )
        steps.append(step.model_copy(update={"risk": risk}))
    overall = RiskLevel.highest(plan.estimated_risk, *(s.risk for s in steps))
    return plan.model_copy(update={"steps": steps, "estimated_risk": overall})


def extract_json_object(text: str) -> str:
    """First balanced {...} in text, tolerating code fences and prose around it."""
    text = re.sub(r"```(?:json)?", "", text, flags=re.IGNORECASE)
    start = text.find("{")
    if start < 0:
        raise ValueError("No JSON object found")
    depth = 0
    in_string = escaped = False
    for idx in range(start, len(text)):
        ch = text[idx]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
        elif ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[start:idx + 1]
    raise ValueError("Unterminated JSON object")


# ---------------------------------------------------------------------------
# Agent
# ---------------------------------------------------------------------------

class PlannerAgent(BaseAgent):
    role = "planner"

    system_prompt = """You are the planning engine inside VIBE, a safety-gated command runner.

Turn the user's task into an ordered list of tool calls. You never run anything yourself.

You MUST respond with a valid JSON object ONLY. No markdown, no commentary.

Output schema:
{
  "steps": [
    {
      "description": "What this step does",
      "tool": "one of the available tool names",
      "args": {"param": "value"},
      "reason": "Why this step is needed",
      "risk": "low|medium|high|critical"
    }
  ],
  "estimated_risk": "low|medium|high|critical",
  "summary": "One sentence describing the plan"
}

Rules:
- Use only the tools listed. Use their exact parameter names.
- Prefer file_edit over file_write for changes to existing files.
- Prefer read-only tools when the task only asks for information.
- Keep steps minimal. Never act outside the task scope.
- Rate risk honestly: deletes, pushes, deploys and secrets are high or critical.
"""

    def __init__(self, provider: ChatProvider | None, registry: ToolRegistry):
        super().__init__(provider)
        self.registry = registry

    def plan(self, task: AgentTask) -> ExecutionPlan:
        if task.steps is not None:
            logger.info(f"[PLANNER] Using pre-written plan ({len(task.steps)} steps)")
            raw: Any = {"steps": task.steps, "summary": task.task}
        else:
            response = self.chat(self.build_messages(task), response_format={"type": "json_object"})
            try:
                raw = json.loads(extract_json_object(response.content))
            except ValueError as e:
                logger.debug(f"[PLANNER] Raw response: {response.content[:500]}")
                raise PlanValidationError(f"Planner returned no usable JSON: {e}")

        try:
            plan = ExecutionPlan.model_validate(raw)
        except ValidationError as e:
            raise PlanValidationError(f"Plan does not match the schema: {e}", errors=e.errors())

        if not plan.steps:
            tool, args = parse_execution(task.task)
            logger.info(f"[PLANNER] No steps planned; falling back to {tool}")
            plan = plan.model_copy(update={
                "steps": [PlanStep(description=task.task, tool=tool, args=args, reason="No plan steps")],
            })

        issues = validate_plan(plan, self.registry, task.max_steps)
        if issues:
            raise PlanValidationError("Plan rejected: " + "; ".join(issues), issues=issues)

        plan = score_plan(plan, self.registry)
        logger.info(f"[PLANNER] Plan ready — {len(plan.steps)} steps, risk={plan.estimated_risk.value}")
        return plan

    def build_messages(self, task: AgentTask) -> list[dict[str, str]]:
        tools = "\n".join(f"- {t.describe()}" for t in self.registry.list())
        context = ""
        if task.context:
            context = "\n\nContext:\n" + json.dumps(task.context, indent=2, default=str)

        user_content = f"""Task: {task.task}

Available tools:
{tools}
{context}

Maximum steps: {task.max_steps}

Produce your plan as JSON."""
        return [self._system_msg(), self._user_msg(user_content)]
