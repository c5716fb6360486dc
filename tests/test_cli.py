from typer.testing import CliRunner
from vibe.cli import app
from vibe import __version__

runner = CliRunner()

def test_version():
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert f"VIBE v{__version__}" in result.stdout


def test_init_creates_project_layout(tmp_path):
    result = runner.invoke(app, ["init", str(tmp_path)])
    assert result.exit_code == 0

    vibe_dir = tmp_path / ".vibe"
    assert (vibe_dir / "config.yaml").exists()
    assert (vibe_dir / "tasks" / "example.yaml").exists()
    assert (vibe_dir / "logs").is_dir()
    assert ".vibe/checkpoints/" in (tmp_path / ".gitignore").read_text()


def test_init_does_not_duplicate_gitignore_entries(tmp_path):
    runner.invoke(app, ["init", str(tmp_path)])
    runner.invoke(app, ["init", str(tmp_path)])
    assert (tmp_path / ".gitignore").read_text().count(".vibe/checkpoints/") == 1


def test_tools_lists_builtins(tmp_path):
    result = runner.invoke(app, ["tools", "--repo", str(tmp_path)])
    assert result.exit_code == 0
    assert "file_read" in result.stdout
    assert "shell_exec" in result.stdout


def test_undo_unknown_checkpoint_exits_nonzero(tmp_path):
    result = runner.invoke(app, ["undo", "chk-0-000000", "--repo", str(tmp_path)])
    assert result.exit_code == 1
    assert "Unknown or already restored" in result.stdout


def test_history_empty(tmp_path):
    result = runner.invoke(app, ["history", "--repo", str(tmp_path)])
    assert result.exit_code == 0
    assert "No history yet" in result.stdout


def test_run_without_task_fails(tmp_path):
    result = runner.invoke(app, ["run", "--repo", str(tmp_path)])
    assert result.exit_code == 1
