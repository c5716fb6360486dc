"""
VIBE Tool Registry

Holds tool definitions by name. Definitions are immutable; registering
an existing name replaces it (last write wins). Not thread-safe:
concurrent registration must be serialized by the caller.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

from loguru import logger

from vibe.tools.base import (
    ExecutionContext,
    RiskLevel,
    ToolCategory,
    ToolHandler,
    ToolSchema,
)

if TYPE_CHECKING:
    from vibe.tools.sandbox import Sandbox
    from vibe.workspace.editor import DiffEditor


@dataclass(frozen=True)
class ToolDefinition:
    name: str
    description: str
    category: ToolCategory
    schema: ToolSchema
    risk_level: RiskLevel
    requires_approval: bool
    handler: ToolHandler
    sandbox_allowed: bool = True
    read_only: bool = False
    # Names of arguments that point at files the tool may create or modify
    path_args: tuple[str, ...] = field(default_factory=tuple)

    def target_paths(self, args: dict[str, Any], ctx: ExecutionContext) -> list[Path]:
        paths: list[Path] = []
        for name in self.path_args:
            value = args.get(name)
            if isinstance(value, str) and value:
                paths.append(ctx.resolve(value))
            elif isinstance(value, list):
                paths.extend(ctx.resolve(v) for v in value if isinstance(v, str) and v)
        return paths

    def describe(self) -> str:
        """One-line description used in planner prompts."""
        params = []
        for pname, prop in self.schema.properties.items():
            marker = "" if pname in self.schema.required else "?"
            params.append(f"{pname}{marker}: {prop.type}")
        return (
            f"{self.name} [{self.category.value}, risk={self.risk_level.value}]"
            f"({', '.join(params)}) — {self.description}"
        )


class ToolRegistry:
    def __init__(self):
        self._tools: dict[str, ToolDefinition] = {}

    def register(self, tool: ToolDefinition) -> None:
        if tool.name in self._tools:
            logger.debug(f"[REGISTRY] Replacing tool: {tool.name}")
        self._tools[tool.name] = tool

    def unregister(self, name: str) -> bool:
        return self._tools.pop(name, None) is not None

    def get(self, name: str) -> ToolDefinition | None:
        return self._tools.get(name)

    def list(self) -> list[ToolDefinition]:
        return list(self._tools.values())

    def list_by_category(self, category: ToolCategory | str) -> list[ToolDefinition]:
        category = ToolCategory(category)
        return [t for t in self._tools.values() if t.category == category]

    def get_approval_required(self) -> list[ToolDefinition]:
        return [t for t in self._tools.values() if t.requires_approval]

    def names(self) -> list[str]:
        return list(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)


def default_registry(sandbox: "Sandbox", editor: "DiffEditor") -> ToolRegistry:
    """Registry pre-loaded with the built-in file, shell and git tools."""
    from vibe.tools.builtin import builtin_tools

    registry = ToolRegistry()
    for tool in builtin_tools(sandbox, editor):
        registry.register(tool)
    logger.debug(f"[REGISTRY] {len(registry)} built-in tools registered")
    return registry
