"""
VIBE CLI — The Interface

  vibe run "task" --repo <path>            (plan, approve, run, review)
  vibe run --task-file task.yaml           (task or pre-written plan from YAML)

Plus utilities:
  - vibe tools                 (registered tools and their risk)
  - vibe status                (API keys, sandbox, approval policy)
  - vibe init <path>           (bootstrap .vibe in a repo)
  - vibe batch                 (independent task files, one session each)
  - vibe checkpoints / undo    (list and restore checkpoints)
  - vibe history               (audit log)
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from dotenv import load_dotenv
from loguru import logger
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from vibe import BANNER, __codename__, __tagline__, __version__
from vibe.audit_logger import AuditLogger
from vibe.config_loader import VibeConfig, load_config, validate_api_keys
from vibe.controller import AgentPipeline
from vibe.errors import CheckpointMiss, ConfigurationError
from vibe.parallel import run_parallel
from vibe.state import AgentTask, ApprovalMode
from vibe.tools.registry import ToolRegistry, default_registry
from vibe.tools.sandbox import Sandbox
from vibe.workspace import Workspace
from vibe.workspace.checkpoints import CheckpointStore
from vibe.workspace.editor import DiffEditor

# Load .env from current directory or home
load_dotenv()
load_dotenv(Path.home() / ".vibe" / ".env")

app = typer.Typer(
    name="vibe",
    help=f"{__codename__} — {__tagline__}\nSafety-gated agentic command runner.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

console = Console()


def version_callback(value: bool):
    if value:
        console.print(f"{__codename__} v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        callback=version_callback,
        is_eager=True,
        help="Show the version and exit.",
    ),
):
    pass


def _print_banner():
    console.print(f"[bright_green]{BANNER}[/]")
    console.print(f"  [dim]v{__version__} — {__tagline__}[/]\n")


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

@app.command()
def run(
    task: Optional[str] = typer.Argument(None, help="What to do, in plain language"),
    repo: Path = typer.Option(Path("."), "--repo", "-r", help="Path to the target project"),
    task_file: Optional[Path] = typer.Option(None, "--task-file", "-f", help="Path to task YAML"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Plan and describe, change nothing"),
    auto_approve: bool = typer.Option(False, "--auto-approve", "-y", help="Approve every request"),
    sandbox: bool = typer.Option(False, "--sandbox", help="Enforce the sandbox policy"),
    approval_mode: Optional[ApprovalMode] = typer.Option(
        None, "--approval-mode", help="How the plan is approved: auto, prompt or never"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Run a task through PLAN → APPROVE → EXECUTE → VERIFY."""
    _print_banner()
    repo = _resolve_repo(repo)
    config = _load(repo)
    _configure_logging(verbose, repo / config.workspace.log_dir)

    if sandbox:
        config.sandbox.enabled = True

    if task_file:
        if not task_file.exists():
            console.print(f"[red]Task file not found: {task_file}[/]")
            raise typer.Exit(1)
        try:
            agent_task = AgentTask.from_yaml(task_file)
        except ConfigurationError as e:
            console.print(f"[red]{e.message}[/]")
            raise typer.Exit(1)
    elif task:
        agent_task = AgentTask(
            task=task,
            approval_mode=ApprovalMode(config.pipeline.approval_mode),
            max_steps=config.pipeline.max_steps,
        )
    else:
        console.print("[red]Give a task or --task-file[/]")
        raise typer.Exit(1)

    if approval_mode is not None:
        agent_task = agent_task.model_copy(update={"approval_mode": approval_mode})

    with AgentPipeline(repo, config=config, auto_approve=auto_approve, console=console) as pipeline:
        result = pipeline.run(agent_task, dry_run=dry_run)

    raise typer.Exit(0 if result.success else 1)


@app.command()
def batch(
    repo: Path = typer.Option(..., "--repo", "-r", help="Path to the target project"),
    tasks_dir: Optional[Path] = typer.Option(None, "--tasks-dir", "-d", help="Directory of task YAMLs"),
    workers: int = typer.Option(3, "--workers", "-w", help="Max concurrent sessions"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
):
    """Run every task file in a directory as its own session (plans auto-approved)."""
    _print_banner()
    repo = _resolve_repo(repo)
    _configure_logging(verbose)

    td = tasks_dir or (repo / ".vibe" / "tasks")
    if not td.exists():
        console.print(f"[red]Tasks directory not found: {td}[/]")
        raise typer.Exit(1)

    task_files = sorted(td.glob("*.yaml")) + sorted(td.glob("*.yml"))
    task_files = [f for f in task_files if "example" not in f.name.lower()]
    if not task_files:
        console.print(f"[red]No task files found in {td}[/]")
        raise typer.Exit(1)

    console.print(f"[cyan]Found {len(task_files)} tasks in {td}[/]")
    results = run_parallel(repo_path=repo, task_files=task_files, max_workers=workers)

    if any(not r.get("success") for r in results):
        raise typer.Exit(1)


@app.command()
def tools(
    repo: Path = typer.Option(Path("."), "--repo", "-r"),
):
    """List the registered tools."""
    repo = _resolve_repo(repo)
    registry = _registry(repo, _load(repo))

    table = Table(title="Tools", border_style="cyan")
    table.add_column("Name")
    table.add_column("Category")
    table.add_column("Risk")
    table.add_column("Approval")
    table.add_column("Sandbox")
    table.add_column("Description")

    for tool in sorted(registry.list(), key=lambda t: (t.category.value, t.name)):
        table.add_row(
            tool.name,
            tool.category.value,
            tool.risk_level.value,
            "yes" if tool.requires_approval else "no",
            "yes" if tool.sandbox_allowed else "[red]no[/]",
            tool.description,
        )
    console.print(table)


@app.command()
def status(
    repo: Optional[Path] = typer.Option(None, "--repo", "-r"),
):
    """Check VIBE configuration and readiness."""
    _print_banner()

    keys = validate_api_keys()
    key_table = Table(title="API Keys", border_style="cyan")
    key_table.add_column("Key")
    key_table.add_column("Status")
    for key, available in keys.items():
        key_table.add_row(key, "[green]✓ Available[/]" if available else "[red]✗ Missing[/]")
    console.print(key_table)

    config = _load(repo.resolve() if repo else None)

    console.print("\n[bold]Routing:[/]")
    console.print(f"  Planner:  {config.routing.planner}")
    console.print(f"  Reviewer: {config.routing.reviewer}")

    sb = config.sandbox
    console.print("\n[bold]Sandbox:[/]")
    console.print(f"  Enabled:          {'yes' if sb.enabled else 'no'}")
    console.print(f"  Blocked paths:    {len(sb.blocked_paths)}")
    console.print(f"  Allowed commands: {len(sb.allowed_commands)}")
    console.print(f"  Timeout:          {sb.max_cpu_time:.0f}s")

    ap = config.approvals
    console.print("\n[bold]Approvals:[/]")
    console.print(f"  Auto-approve:        {'yes' if ap.auto_approve else 'no'}")
    console.print(f"  Low risk auto:       {'yes' if ap.auto_approve_low_risk else 'no'}")
    console.print(f"  Medium risk auto:    {'yes' if ap.auto_approve_medium_risk else 'no'}")
    console.print(f"  Confirm high/crit:   {'yes' if ap.confirm_high_risk else 'no'}"
                  f" / {'yes' if ap.confirm_critical_risk else 'no'}")
    console.print(f"  Plan approval mode:  {config.pipeline.approval_mode}")
    for type_name, pref in ap.preferences.items():
        console.print(f"  Remembered: {type_name} → {pref}")


@app.command()
def init(
    repo: Optional[Path] = typer.Argument(None, help="Path to the project"),
):
    """Initialize the .vibe directory in a project."""
    _print_banner()

    repo = (repo or Path.cwd()).resolve()
    vibe_dir = repo / ".vibe"
    vibe_dir.mkdir(exist_ok=True)
    (vibe_dir / "tasks").mkdir(exist_ok=True)
    (vibe_dir / "logs").mkdir(exist_ok=True)

    config_path = vibe_dir / "config.yaml"
    if not config_path.exists():
        config_path.write_text("""# VIBE project-level config overrides
# These merge with the built-in defaults.

# routing:
#   planner: "anthropic/claude-sonnet-4-20250514"

# sandbox:
#   enabled: true
#   allowed_paths:
#     - /tmp/scratch

# approvals:
#   auto_approve_medium_risk: true
#   preferences:
#     shell: ask

# pipeline:
#   approval_mode: prompt
""")

    task_path = vibe_dir / "tasks" / "example.yaml"
    if not task_path.exists():
        task_path.write_text("""task: "List the Python files and show the git status"
approval_mode: prompt
max_steps: 5
# Optional pre-written plan; the planner model is skipped when present.
# steps:
#   - description: "List Python files"
#     tool: file_glob
#     args: {pattern: "**/*.py"}
#   - description: "Show git status"
#     tool: git_status
#     args: {}
""")

    gitignore = repo / ".gitignore"
    ignore_entries = [".vibe/checkpoints/", ".vibe/logs/", ".vibe/runs/", ".vibe/audit.log"]
    if gitignore.exists():
        content = gitignore.read_text()
        additions = [e for e in ignore_entries if e not in content]
        if additions:
            with open(gitignore, "a") as f:
                f.write("\n# VIBE\n")
                for e in additions:
                    f.write(f"{e}\n")
    else:
        gitignore.write_text("# VIBE\n" + "\n".join(ignore_entries) + "\n")

    console.print(f"[green]✅ Initialized VIBE in {vibe_dir}[/]")
    console.print(f"  Config:  {config_path}")
    console.print(f"  Example: {task_path}")


@app.command()
def checkpoints(
    repo: Path = typer.Option(Path("."), "--repo", "-r"),
    session: Optional[str] = typer.Option(None, "--session", "-s", help="Only this session"),
):
    """List checkpoints that can be restored with `vibe undo`."""
    repo = _resolve_repo(repo)
    store = CheckpointStore.from_settings(Workspace(repo), _load(repo).checkpoints)
    found = store.list(session)
    if not found:
        console.print("[dim]No checkpoints.[/]")
        return

    table = Table(title="Checkpoints", border_style="cyan")
    table.add_column("ID")
    table.add_column("Session", style="dim")
    table.add_column("Created", style="dim")
    table.add_column("Files")
    table.add_column("Description")
    for cp in found:
        table.add_row(cp.id, cp.session_id, cp.created_at.isoformat()[:19], str(len(cp.files)), cp.description)
    console.print(table)


@app.command()
def undo(
    checkpoint_id: str = typer.Argument(..., help="Checkpoint to restore"),
    repo: Path = typer.Option(Path("."), "--repo", "-r"),
):
    """Restore a checkpoint. Each checkpoint can be restored once."""
    repo = _resolve_repo(repo)
    store = CheckpointStore.from_settings(Workspace(repo), _load(repo).checkpoints)
    checkpoint = store.get(checkpoint_id)
    if checkpoint is None:
        miss = CheckpointMiss(f"Unknown or already restored checkpoint: {checkpoint_id}")
        console.print(f"[red]{miss.message}[/]")
        raise typer.Exit(1)

    if not store.restore(checkpoint_id):
        console.print(f"[red]Restore of {checkpoint_id} was incomplete; see the log.[/]")
        raise typer.Exit(1)
    console.print(f"[green]✅ Restored {len(checkpoint.files)} file(s) from {checkpoint_id}[/]")


@app.command()
def history(
    repo: Path = typer.Option(Path("."), "--repo", "-r"),
    session: Optional[str] = typer.Option(None, "--session", "-s"),
    count: int = typer.Option(20, "--count", "-n", help="Number of entries to show"),
):
    """View the audit log."""
    repo = _resolve_repo(repo)
    audit = AuditLogger(repo / _load(repo).workspace.audit_file)
    entries = audit.get_logs(session_id=session, limit=count)
    if not entries:
        console.print("[dim]No history yet. Run some tasks first.[/]")
        return

    table = Table(title=f"Audit Log (last {count})", border_style="cyan")
    table.add_column("Time", style="dim")
    table.add_column("Session", style="dim")
    table.add_column("Event")
    table.add_column("Result")

    for entry in entries:
        ts = str(entry.get("timestamp", "?"))[:19]
        if "phase" in entry:
            event = f"{entry['phase']}: {entry.get('action', '')}"
            ok = entry.get("approved")
            result = escape(str(entry.get("result", ""))[:60])
            if ok is False:
                result = f"[red]{result}[/]"
        else:
            event = f"{entry.get('event')}: {entry.get('tool')}"
            color = "green" if entry.get("success") else "red"
            result = f"[{color}]{escape(str(entry.get('error') or ('ok' if entry.get('success') else 'failed')))}[/]"
        table.add_row(ts, str(entry.get("session_id") or "—"), escape(event), result)

    console.print(table)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _resolve_repo(repo: Path) -> Path:
    repo = repo.resolve()
    if not repo.is_dir():
        console.print(f"[red]Project not found: {repo}[/]")
        raise typer.Exit(1)
    return repo


def _load(repo: Path | None) -> VibeConfig:
    try:
        return load_config(repo)
    except ConfigurationError as e:
        console.print(f"[red]{e.message}[/]")
        raise typer.Exit(1)


def _registry(repo: Path, config: VibeConfig) -> ToolRegistry:
    sandbox = Sandbox(config.sandbox, repo)
    editor = DiffEditor(CheckpointStore(Workspace(repo)), sandbox=sandbox)
    return default_registry(sandbox, editor)


def _configure_logging(verbose: bool, log_dir: Path | None = None) -> None:
    logger.remove()
    if verbose:
        logger.add(
            lambda msg: console.print(f"[dim]{escape(str(msg))}[/]", highlight=False),
            level="DEBUG",
            format="{time:HH:mm:ss} | {level:<7} | {message}",
        )
    else:
        logger.add(
            lambda msg: console.print(f"[dim]{escape(str(msg))}[/]", highlight=False),
            level="WARNING",
            format="{message}",
        )
    if log_dir is not None:
        logger.add(
            log_dir / "vibe.log",
            level="DEBUG",
            rotation="10 MB",
            retention=5,
            format="{time:YYYY-MM-DD HH:mm:ss} | {level:<7} | {message}",
        )


# ---------------------------------------------------------------------------
# Entry
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    app()
