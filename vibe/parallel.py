"""
VIBE Batch Runner

Runs independent task files as separate sessions, one process each.
Every worker builds its own pipeline (own gate, own checkpoint store,
own executor history), so nothing is shared between sessions except the
repository on disk. Tasks that touch the same files must not be batched
together: concurrent runs against the same files may race.
"""

from __future__ import annotations

import concurrent.futures
from pathlib import Path
from typing import Any

from loguru import logger
from rich.console import Console
from rich.markup import escape
from rich.table import Table

console = Console()


def _run_single_task(task_file: Path, repo_path: Path) -> dict[str, Any]:
    """Worker entry point. Returns a plain dict so it crosses the process boundary."""
    from vibe.approval import deny_all
    from vibe.config_loader import load_config
    from vibe.controller import AgentPipeline, new_session_id
    from vibe.errors import VibeError
    from vibe.state import AgentTask, ApprovalMode

    session_id = f"{task_file.stem}-{new_session_id()}"
    try:
        config = load_config(repo_path)
        task = AgentTask.from_yaml(task_file).model_copy(update={"approval_mode": ApprovalMode.AUTO})
        # Batch mode is non-interactive: anything still needing a human is denied
        with AgentPipeline(
            repo_path,
            config=config,
            prompter=deny_all,
            console=Console(quiet=True),
        ) as pipeline:
            result = pipeline.run(task, session_id=session_id)
    except VibeError as e:
        logger.error(f"[BATCH] {task_file.name} — {e.message}")
        return {"task": task_file.stem, "session_id": session_id, "success": False, "error": e.message}

    return {"task": task_file.stem, **result.model_dump(mode="json", include={
        "success", "session_id", "error", "checkpoint_id",
    })}


def run_parallel(repo_path: Path, task_files: list[Path], max_workers: int = 3) -> list[dict[str, Any]]:
    repo_path = repo_path.resolve()
    _print_header(len(task_files), max_workers)

    results: list[dict[str, Any]] = []
    with concurrent.futures.ProcessPoolExecutor(max_workers=max_workers) as executor:
        future_to_file = {executor.submit(_run_single_task, tf, repo_path): tf for tf in task_files}

        for future in concurrent.futures.as_completed(future_to_file):
            task_file = future_to_file[future]
            try:
                result = future.result()
            except Exception as e:
                logger.error(f"[BATCH] Worker for {task_file.name} died: {e}")
                result = {"task": task_file.stem, "session_id": None, "success": False, "error": str(e)}
            results.append(result)
            _log_completion(result)

    _print_summary(results)
    return results


# --- Helpers ---

def _print_header(count: int, workers: int) -> None:
    console.print(f"\n[bold]⚡ VIBE Batch Mode — {count} tasks, {workers} workers[/]")
    console.print("[dim]Each task runs as its own session with auto-approved plans.[/]\n")


def _log_completion(result: dict[str, Any]) -> None:
    color = "green" if result.get("success") else "red"
    status = "ok" if result.get("success") else "failed"
    console.print(f"  [{color}]{result.get('task')}: {status}[/]")


def _print_summary(results: list[dict[str, Any]]) -> None:
    table = Table(title="Batch Results", border_style="bright_green")
    table.add_column("Task")
    table.add_column("Status")
    table.add_column("Checkpoint")
    table.add_column("Error")

    for r in results:
        ok = r.get("success")
        table.add_row(
            str(r.get("task", "?")),
            "[green]ok[/]" if ok else "[red]failed[/]",
            r.get("checkpoint_id") or "—",
            escape((r.get("error") or "")[:60]),
        )

    console.print(table)
    successes = sum(1 for r in results if r.get("success"))
    console.print(f"\n[bold]{successes}/{len(results)} succeeded[/]")
