import json

import pytest
from rich.console import Console

from vibe.approval import ApprovalDecision, ApprovalStatus, ApprovalType
from vibe.config_loader import load_config
from vibe.controller import AgentPipeline
from vibe.router import ChatResponse
from vibe.state import AgentPhase, AgentTask, ApprovalMode
from vibe.tools.base import RiskLevel


class ScriptedProvider:
    """Planner gets the scripted plan, reviewer gets a fixed explanation."""

    def __init__(self, plan):
        self.plan = plan if isinstance(plan, str) else json.dumps(plan)
        self.roles = []

    def chat(self, messages, role="planner", **kwargs):
        self.roles.append(role)
        content = self.plan if role == "planner" else "Explained."
        return ChatResponse(content=content, model="fake/model", provider="fake")


class RecordingPrompter:
    def __init__(self, answer):
        self.answer = answer
        self.requests = []

    def __call__(self, request):
        self.requests.append(request)
        return self.answer


def _plan(*steps, risk="low"):
    return {"steps": list(steps), "estimated_risk": risk, "summary": "scripted"}


def _step(tool, args, description="step"):
    return {"description": description, "tool": tool, "args": args}


@pytest.fixture(autouse=True)
def no_env_dry_run(monkeypatch):
    monkeypatch.delenv("VIBE_DRY_RUN", raising=False)


@pytest.fixture
def repo(tmp_path):
    (tmp_path / "a.txt").write_text("hello world\n")
    return tmp_path


def _pipeline(repo, plan, answer=False):
    prompter = RecordingPrompter(answer)
    pipeline = AgentPipeline(
        repo,
        config=load_config(repo, environ={}),
        router=ScriptedProvider(plan),
        prompter=prompter,
        console=Console(quiet=True),
    )
    return pipeline, prompter


def _task(text="do it", mode=ApprovalMode.PROMPT):
    return AgentTask(task=text, approval_mode=mode)


def test_low_risk_plan_skips_approval(repo):
    pipeline, prompter = _pipeline(repo, _plan(_step("file_read", {"path": "a.txt"}, "Show a.txt")))
    with pipeline:
        result = pipeline.run(_task())

    assert result.success
    assert pipeline.approvals.list_requests() == []
    assert prompter.requests == []
    assert result.results[0].output == "hello world\n"
    assert "Verification: Execution completed successfully" in result.output
    assert [s.phase for s in result.steps][:3] == [AgentPhase.PLAN, AgentPhase.PROPOSE, AgentPhase.APPROVE]
    assert result.steps[-1].phase == AgentPhase.EXPLAIN


def test_high_risk_plan_denied_stops_before_execute(repo):
    plan = _plan(_step("shell_exec", {"command": "touch made.txt"}, "Create a marker"))
    pipeline, prompter = _pipeline(repo, plan, answer=False)
    with pipeline:
        result = pipeline.run(_task())
        requests = pipeline.approvals.list_requests()

    assert not result.success
    assert result.error.startswith("POLICY_DENIED")
    assert len(requests) == 1
    assert requests[0].type == ApprovalType.PLAN.value
    assert requests[0].status == ApprovalStatus.DENIED
    assert result.results == []
    assert AgentPhase.EXECUTE not in [s.phase for s in result.steps]
    assert not (repo / "made.txt").exists()


def test_approved_plan_is_gated_once(repo):
    plan = _plan(_step("shell_exec", {"command": "echo hi"}), _step("shell_exec", {"command": "echo there"}))
    pipeline, prompter = _pipeline(repo, plan, answer=True)
    with pipeline:
        result = pipeline.run(_task())

    assert result.success
    assert len(prompter.requests) == 1
    assert [r.output.strip() for r in result.results] == ["hi", "there"]


def test_run_checkpoint_undoes_the_task(repo):
    edit = _step("file_edit", {"type": "replace", "file": "a.txt", "search_pattern": "world",
                               "replacement": "there"}, "Edit a.txt")
    pipeline, _ = _pipeline(repo, _plan(edit, risk="medium"), answer=True)
    with pipeline:
        result = pipeline.run(_task())
        assert (repo / "a.txt").read_text() == "hello there\n"
        assert result.checkpoint_id
        # Only the run-wide checkpoint survives the session
        assert [c.id for c in pipeline.checkpoints.list(result.session_id)] == [result.checkpoint_id]
        assert pipeline.checkpoints.restore(result.checkpoint_id)

    assert (repo / "a.txt").read_text() == "hello world\n"


def test_never_mode_refuses_risky_plans_without_asking(repo):
    plan = _plan(_step("shell_exec", {"command": "echo hi"}))
    pipeline, prompter = _pipeline(repo, plan, answer=True)
    with pipeline:
        result = pipeline.run(_task(mode=ApprovalMode.NEVER))

    assert not result.success
    assert prompter.requests == []
    assert result.results == []


def test_planning_failure_aborts_before_anything_runs(repo):
    pipeline, _ = _pipeline(repo, "not a plan")
    with pipeline:
        result = pipeline.run(_task())

    assert not result.success
    assert result.error.startswith("Planning failed")
    assert [s.phase for s in result.steps] == [AgentPhase.PLAN]
    assert result.results == []


def test_execution_failure_is_reported(repo):
    plan = _plan(_step("file_read", {"path": "missing.txt"}, "Read a missing file"))
    pipeline, _ = _pipeline(repo, plan)
    with pipeline:
        result = pipeline.run(_task())

    assert not result.success
    assert "Step 1 (file_read) failed" in result.error
    assert "Execution failed" in result.output


def test_dry_run_changes_nothing(repo):
    plan = _plan(_step("shell_exec", {"command": "touch made.txt"}))
    pipeline, _ = _pipeline(repo, plan)
    with pipeline:
        result = pipeline.run(_task(mode=ApprovalMode.AUTO), dry_run=True)

    assert result.success
    assert result.results[0].output.startswith("[DRY RUN]")
    assert result.checkpoint_id is None
    assert not (repo / "made.txt").exists()


def test_state_and_audit_are_written(repo):
    pipeline, _ = _pipeline(repo, _plan(_step("file_read", {"path": "a.txt"})))
    with pipeline:
        result = pipeline.run(_task(), session_id="sess-1")
        entries = pipeline.audit.get_logs(session_id="sess-1")

    state = json.loads((repo / ".vibe" / "runs" / "sess-1.json").read_text())
    assert result.artifacts["state_file"].endswith("sess-1.json")
    assert state["status"] == "succeeded"
    assert {e.get("phase") for e in entries} >= {"plan", "execute", "verify"}


def test_plain_string_task(repo):
    pipeline, _ = _pipeline(repo, _plan(_step("file_glob", {"pattern": "*.txt"})))
    with pipeline:
        result = pipeline.run("list the text files")
    assert result.success
    assert result.results[0].output == "a.txt"


def test_empty_plan_fallback_goes_through_approval(repo):
    (repo / "keep.txt").write_text("precious\n")
    pipeline, prompter = _pipeline(repo, _plan(), answer=False)
    with pipeline:
        result = pipeline.run(_task("rm keep.txt"))

    assert not result.success
    assert len(prompter.requests) == 1
    assert prompter.requests[0].risk == RiskLevel.HIGH
    assert "shell_exec" in prompter.requests[0].operations[0]
    assert result.results == []
    assert (repo / "keep.txt").exists()


def test_remembered_answers_do_not_leak_into_the_next_session(repo):
    plan = _plan(_step("shell_exec", {"command": "echo hi"}))
    pipeline, prompter = _pipeline(repo, plan, answer=ApprovalDecision.ALWAYS)
    with pipeline:
        first = pipeline.run(_task())
        second = pipeline.run(_task())

    assert first.success and second.success
    assert len(prompter.requests) == 2
    assert prompter.requests[1].session_id == second.session_id
    assert second.artifacts["approvals"]["total"] == 1
    assert second.artifacts["approvals"]["approved"] == 1
