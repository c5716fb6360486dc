"""
VIBE Tools

Registry, sandbox and executor for everything an agent can do to a
project. Only the primitives are re-exported here; import the
registry, sandbox and executor from their modules.
"""

from vibe.tools.base import (
    ExecutionContext,
    FunctionTool,
    RiskLevel,
    ToolCategory,
    ToolHandler,
    ToolResult,
    ToolSchema,
)

__all__ = [
    "ExecutionContext",
    "FunctionTool",
    "RiskLevel",
    "ToolCategory",
    "ToolHandler",
    "ToolResult",
    "ToolSchema",
]
