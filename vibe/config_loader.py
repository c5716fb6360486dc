"""
Configuration loader for VIBE.
Merges defaults with per-repo .vibe/config.yaml overrides.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, ValidationError

from vibe.errors import ConfigurationError


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

class RoutingConfig(BaseModel):
    planner: str = "openai/gpt-4o-mini"
    reviewer: str = "openai/gpt-4o-mini"


class ProviderConfig(BaseModel):
    timeout_seconds: float = 60.0
    max_retries: int = Field(default=3, ge=1)
    temperature: float = 0.2
    max_tokens: int = 4096


class SandboxSettings(BaseModel):
    enabled: bool = False
    allowed_paths: list[str] = Field(default_factory=list)
    blocked_paths: list[str] = Field(default_factory=list)
    allowed_commands: list[str] = Field(default_factory=list)
    blocked_commands: list[str] = Field(default_factory=list)
    max_cpu_time: float = 60.0
    max_output_bytes: int = 10 * 1024 * 1024
    allow_network: bool = True
    allowed_domains: list[str] = Field(default_factory=list)
    environment: dict[str, str] = Field(default_factory=dict)


class ApprovalSettings(BaseModel):
    auto_approve: bool = False
    auto_approve_low_risk: bool = True
    auto_approve_medium_risk: bool = False
    confirm_high_risk: bool = True
    confirm_critical_risk: bool = True
    ttl_seconds: float = 300.0
    remember_preferences: bool = True
    preferences: dict[str, Literal["always", "never", "ask"]] = Field(default_factory=dict)


class CheckpointSettings(BaseModel):
    persist: bool = True
    directory: str = ".vibe/checkpoints"
    # "tracked": every tracked/untracked-not-ignored file; "modified": VCS modified list
    scope: Literal["tracked", "modified"] = "tracked"
    max_files: int = 2000
    max_file_bytes: int = 2 * 1024 * 1024
    strict: bool = False


class DiffSettings(BaseModel):
    lookahead: int = Field(default=10, ge=1)
    max_hunk_lines: int = Field(default=50, ge=1)


class ExecutorSettings(BaseModel):
    default_timeout: float = 60.0
    settle_timeout: float = 10.0


class PipelineSettings(BaseModel):
    approval_mode: Literal["auto", "prompt", "never"] = "prompt"
    max_steps: int = 20
    stop_on_failure: bool = True


class WorkspaceConfig(BaseModel):
    state_dir: str = ".vibe"
    log_dir: str = ".vibe/logs"
    audit_file: str = ".vibe/audit.log"


class VibeConfig(BaseModel):
    routing: RoutingConfig = Field(default_factory=RoutingConfig)
    provider: ProviderConfig = Field(default_factory=ProviderConfig)
    sandbox: SandboxSettings = Field(default_factory=SandboxSettings)
    approvals: ApprovalSettings = Field(default_factory=ApprovalSettings)
    checkpoints: CheckpointSettings = Field(default_factory=CheckpointSettings)
    diff: DiffSettings = Field(default_factory=DiffSettings)
    executor: ExecutorSettings = Field(default_factory=ExecutorSettings)
    pipeline: PipelineSettings = Field(default_factory=PipelineSettings)
    workspace: WorkspaceConfig = Field(default_factory=WorkspaceConfig)


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------

_DEFAULT_CONFIG_PATH = Path(__file__).parent / "config.yaml"

_TRUTHY = {"1", "true", "yes", "on"}


def _deep_merge(base: dict, override: dict) -> dict:
    """Recursively merge override into base."""
    merged = base.copy()
    for key, value in override.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {path}: {e}", path=str(path))
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config root must be a mapping: {path}", path=str(path))
    return data


def _env_overrides(environ: dict[str, str]) -> dict[str, Any]:
    overrides: dict[str, Any] = {}

    def flag(name: str) -> bool | None:
        raw = environ.get(name)
        if raw is None or raw == "":
            return None
        return raw.strip().lower() in _TRUTHY

    auto = flag("VIBE_AUTO_APPROVE")
    if auto is not None:
        overrides.setdefault("approvals", {})["auto_approve"] = auto

    sandbox = flag("VIBE_SANDBOX")
    if sandbox is not None:
        overrides.setdefault("sandbox", {})["enabled"] = sandbox

    planner = environ.get("VIBE_PLANNER_MODEL")
    if planner:
        overrides.setdefault("routing", {})["planner"] = planner

    return overrides


def env_dry_run(environ: dict[str, str] | None = None) -> bool:
    environ = os.environ if environ is None else environ
    return environ.get("VIBE_DRY_RUN", "").strip().lower() in _TRUTHY


def load_config(repo_path: Path | None = None, environ: dict[str, str] | None = None) -> VibeConfig:
    """
    Load config by merging:
      1. Built-in defaults (vibe/config.yaml)
      2. Repo-level overrides (<repo>/.vibe/config.yaml)
      3. Environment variable overrides (VIBE_*)
    """
    # 1. Built-in defaults
    base = _read_yaml(_DEFAULT_CONFIG_PATH)

    # 2. Repo overrides
    if repo_path:
        repo_config = repo_path / ".vibe" / "config.yaml"
        if repo_config.exists():
            base = _deep_merge(base, _read_yaml(repo_config))

    # 3. Env overrides
    base = _deep_merge(base, _env_overrides(dict(os.environ if environ is None else environ)))

    try:
        return VibeConfig(**base)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}")


def validate_api_keys() -> dict[str, bool]:
    """Check which API keys are available."""
    return {
        "ANTHROPIC_API_KEY":  bool(os.environ.get("ANTHROPIC_API_KEY")),
        "OPENAI_API_KEY":     bool(os.environ.get("OPENAI_API_KEY")),
        "GEMINI_API_KEY":     bool(os.environ.get("GEMINI_API_KEY")),
        "OPENROUTER_API_KEY": bool(os.environ.get("OPENROUTER_API_KEY")),
    }
