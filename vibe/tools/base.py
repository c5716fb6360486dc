"""
VIBE Tool Primitives

The vocabulary every tool speaks:
  - RiskLevel / ToolCategory — tagged enums driving approval and dispatch
  - ToolSchema              — JSON-schema-like parameter description
  - ExecutionContext        — per-call value object
  - ToolResult              — immutable outcome of one call
  - ToolHandler             — capability interface: run(args, ctx) -> ToolResult
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Any, Callable, Literal, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _RISK_RANK[self]

    @classmethod
    def highest(cls, *levels: "RiskLevel | str | None") -> "RiskLevel":
        found = [cls(level) for level in levels if level]
        if not found:
            return cls.LOW
        return max(found, key=lambda level: level.rank)


_RISK_RANK = {
    RiskLevel.LOW: 0,
    RiskLevel.MEDIUM: 1,
    RiskLevel.HIGH: 2,
    RiskLevel.CRITICAL: 3,
}


class ToolCategory(str, Enum):
    FILESYSTEM = "filesystem"
    SHELL = "shell"
    GIT = "git"
    SEARCH = "search"
    WEB = "web"
    CODE = "code"


# ---------------------------------------------------------------------------
# Parameter schema
# ---------------------------------------------------------------------------

JsonType = Literal["string", "number", "integer", "boolean", "array", "object"]

_JSON_CHECKS: dict[str, Callable[[Any], bool]] = {
    "string": lambda v: isinstance(v, str),
    "number": lambda v: isinstance(v, (int, float)) and not isinstance(v, bool),
    "integer": lambda v: isinstance(v, int) and not isinstance(v, bool),
    "boolean": lambda v: isinstance(v, bool),
    "array": lambda v: isinstance(v, list),
    "object": lambda v: isinstance(v, dict),
}


class SchemaProperty(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: JsonType
    description: str = ""
    enum: list[str] | None = None


class ToolSchema(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["object"] = "object"
    properties: dict[str, SchemaProperty] = Field(default_factory=dict)
    required: list[str] = Field(default_factory=list)

    def validate_args(self, args: dict[str, Any]) -> list[str]:
        """Return a list of problems; empty means the args are acceptable."""
        errors = [f"Missing required argument: {name}" for name in self.required if name not in args]

        for name, value in args.items():
            prop = self.properties.get(name)
            if prop is None or value is None:
                continue
            if not _JSON_CHECKS[prop.type](value):
                errors.append(f"Argument '{name}' must be of type {prop.type}")
            elif prop.enum is not None and value not in prop.enum:
                errors.append(f"Argument '{name}' must be one of {prop.enum}")
        return errors


# ---------------------------------------------------------------------------
# Context + Result
# ---------------------------------------------------------------------------

ApprovalCallback = Callable[[str, list[str], RiskLevel], Any]


class ExecutionContext(BaseModel):
    """Per-call value object. Build a new one (or `with_updates`) per invocation."""
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    working_dir: Path
    session_id: str = "default"
    dry_run: bool = False
    sandbox_enabled: bool = False
    approved: bool = False
    approval_callback: ApprovalCallback | None = None
    timeout: float | None = None

    def with_updates(self, **changes: Any) -> "ExecutionContext":
        return self.model_copy(update=changes)

    def resolve(self, path: str | Path) -> Path:
        candidate = Path(path).expanduser()
        if not candidate.is_absolute():
            candidate = Path(self.working_dir) / candidate
        return candidate.resolve()


class ToolResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool
    output: str = ""
    error: str | None = None
    error_code: str | None = None
    files_changed: list[str] = Field(default_factory=list)
    duration_ms: int = 0
    exit_code: int | None = None
    timed_out: bool = False
    retryable: bool = False
    checkpoint_id: str | None = None
    data: Any = None

    @classmethod
    def ok(cls, output: str = "", **kwargs: Any) -> "ToolResult":
        return cls(success=True, output=output, **kwargs)

    @classmethod
    def fail(cls, error: str, code: str = "TOOL_EXECUTION_FAILED", **kwargs: Any) -> "ToolResult":
        return cls(success=False, error=error, error_code=code, **kwargs)


# ---------------------------------------------------------------------------
# Handler capability
# ---------------------------------------------------------------------------

@runtime_checkable
class ToolHandler(Protocol):
    def run(self, args: dict[str, Any], ctx: ExecutionContext) -> ToolResult:
        ...


class FunctionTool:
    """Adapts a plain `fn(args, ctx) -> ToolResult` to the ToolHandler interface."""

    def __init__(self, fn: Callable[[dict[str, Any], ExecutionContext], ToolResult]):
        self.fn = fn

    def run(self, args: dict[str, Any], ctx: ExecutionContext) -> ToolResult:
        return self.fn(args, ctx)

    def __repr__(self) -> str:
        return f"FunctionTool({getattr(self.fn, '__name__', self.fn)!r})"
