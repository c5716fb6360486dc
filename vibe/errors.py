"""
VIBE Errors — one taxonomy for the whole execution core.

Components raise these. Two boundaries convert them into values:
  - ToolExecutor      → failed ToolResult
  - AgentPipeline     → PipelineResult(success=False)
"""

from __future__ import annotations

from typing import Any


class VibeError(Exception):
    """Base class. `code` is stable and safe to show to users."""

    code: str = "VIBE_ERROR"
    retryable: bool = False

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "retryable": self.retryable,
            "details": self.details,
        }


class PolicyDenied(VibeError):
    """Approval was explicitly refused (or expired)."""
    code = "POLICY_DENIED"


class SandboxRejected(VibeError):
    """A path, command or URL is outside the sandbox policy."""
    code = "SANDBOX_REJECTED"


class ToolExecutionFailed(VibeError):
    code = "TOOL_EXECUTION_FAILED"

    def __init__(self, message: str, retryable: bool = False, **details: Any):
        super().__init__(message, **details)
        self.retryable = retryable


class ToolTimeout(ToolExecutionFailed):
    code = "TIMEOUT"

    def __init__(self, message: str, timeout: float | None = None, **details: Any):
        super().__init__(message, retryable=True, timeout=timeout, **details)


class CheckpointMiss(VibeError):
    """Restore requested for an unknown or already consumed checkpoint."""
    code = "CHECKPOINT_MISS"


class CheckpointError(VibeError):
    """Capture failed while the store runs in strict mode."""
    code = "CHECKPOINT_ERROR"


class ProviderError(VibeError):
    code = "PROVIDER_ERROR"

    def __init__(
        self,
        message: str,
        provider: str = "unknown",
        model: str | None = None,
        status_code: int | None = None,
        retryable: bool = False,
    ):
        super().__init__(message, provider=provider, model=model, status_code=status_code)
        self.provider = provider
        self.model = model
        self.status_code = status_code
        self.retryable = retryable


class ConfigurationError(VibeError):
    code = "CONFIGURATION_ERROR"


class PlanValidationError(VibeError):
    code = "PLAN_INVALID"


def create_error_response(exc: BaseException) -> dict[str, Any]:
    """Render any exception as a JSON-safe failure payload."""
    if isinstance(exc, VibeError):
        error = exc.to_dict()
    else:
        error = {
            "code": "INTERNAL_ERROR",
            "message": str(exc) or exc.__class__.__name__,
            "retryable": False,
            "details": {"type": exc.__class__.__name__},
        }
    return {"success": False, "error": error}
