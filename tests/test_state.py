import pytest

from vibe.errors import ConfigurationError
from vibe.state import AgentPhase, AgentStep, AgentTask, ApprovalMode, RunState


def test_task_from_yaml_accepts_objective(tmp_path):
    path = tmp_path / "task.yaml"
    path.write_text("objective: Tidy imports\napproval_mode: auto\nsteps:\n  - description: x\n    tool: git_status\n")
    task = AgentTask.from_yaml(path)
    assert task.task == "Tidy imports"
    assert task.approval_mode == ApprovalMode.AUTO
    assert task.steps == [{"description": "x", "tool": "git_status"}]
    assert task.file_path == path


def test_task_from_bad_yaml(tmp_path):
    path = tmp_path / "task.yaml"
    path.write_text("- just\n- a list\n")
    with pytest.raises(ConfigurationError):
        AgentTask.from_yaml(path)
    with pytest.raises(ConfigurationError):
        AgentTask.from_yaml(tmp_path / "missing.yaml")


def test_run_state_persists(tmp_path):
    state = RunState(session_id="s1", task="t")
    state.record(AgentStep(phase=AgentPhase.PLAN, action="Create plan"))
    path = state.persist(tmp_path)
    assert path == tmp_path / "runs" / "s1.json"
    assert RunState.model_validate_json(path.read_text()).phase == AgentPhase.PLAN
