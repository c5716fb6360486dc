import time

import pytest

from vibe.approval import ApprovalGate, deny_all
from vibe.event_bus import EventBus
from vibe.tools.base import ExecutionContext, FunctionTool, RiskLevel, ToolCategory, ToolResult, ToolSchema
from vibe.tools.executor import ToolConfig, ToolExecutor
from vibe.tools.registry import ToolDefinition


def _define(name, fn, approval=False, risk=RiskLevel.LOW, sandbox_allowed=True, read_only=False):
    return ToolDefinition(
        name=name,
        description=name,
        category=ToolCategory.FILESYSTEM,
        schema=ToolSchema(),
        risk_level=risk,
        requires_approval=approval,
        handler=FunctionTool(fn),
        sandbox_allowed=sandbox_allowed,
        read_only=read_only,
    )


@pytest.fixture
def events():
    return []


@pytest.fixture
def executor(registry, store, sandbox, events):
    bus = EventBus()
    bus.subscribe(events.append)
    return ToolExecutor(registry, store, ApprovalGate(prompter=deny_all), sandbox=sandbox, event_bus=bus)


@pytest.fixture
def ctx(tmp_path):
    return ExecutionContext(working_dir=tmp_path, session_id="exec")


@pytest.fixture
def files(tmp_path):
    originals = {}
    for name in ("one.txt", "two.txt", "three.txt"):
        (tmp_path / name).write_text(f"original {name}\n")
        originals[name] = (tmp_path / name).read_bytes()
    return originals


def test_crash_mid_write_restores_every_file(executor, registry, ctx, tmp_path, files, events):
    def half_done(args, ctx):
        (tmp_path / "one.txt").write_text("clobbered")
        (tmp_path / "two.txt").write_text("clobbered")
        raise RuntimeError("disk on fire")

    registry.register(_define("half_done", half_done))
    result = executor.execute(ToolConfig(name="half_done"), ctx)

    assert not result.success
    assert "disk on fire" in result.error
    for name, data in files.items():
        assert (tmp_path / name).read_bytes() == data

    [record] = executor.history("exec")
    assert record.rolled_back
    assert "tool_rolled_back" in [e.event_type for e in events]


def test_reported_failure_also_rolls_back(executor, registry, ctx, tmp_path, files):
    def soft_fail(args, ctx):
        (tmp_path / "three.txt").write_text("partial")
        return ToolResult.fail("could not finish")

    registry.register(_define("soft_fail", soft_fail))
    result = executor.execute(ToolConfig(name="soft_fail"), ctx)

    assert result.error == "could not finish"
    assert result.checkpoint_id is None
    assert (tmp_path / "three.txt").read_bytes() == files["three.txt"]


def test_success_keeps_checkpoint_for_undo(executor, registry, store, ctx, tmp_path, files):
    def write(args, ctx):
        (tmp_path / "one.txt").write_text("new")
        return ToolResult.ok("done")

    registry.register(_define("write", write))
    result = executor.execute(ToolConfig(name="write"), ctx)

    assert result.success
    assert store.restore(result.checkpoint_id)
    assert (tmp_path / "one.txt").read_bytes() == files["one.txt"]


def test_denied_tool_never_runs(executor, registry, store, ctx, events):
    calls = []
    registry.register(_define("risky", lambda a, c: calls.append(1) or ToolResult.ok(), approval=True,
                              risk=RiskLevel.HIGH))

    result = executor.execute(ToolConfig(name="risky"), ctx)

    assert result.error_code == "POLICY_DENIED"
    assert result.error == "Execution cancelled by user"
    assert calls == []
    assert store.list("exec") == []
    assert executor.history("exec") == []
    assert [e.event_type for e in events] == ["tool_denied"]


def test_context_callback_can_approve(executor, registry, ctx):
    registry.register(_define("risky", lambda a, c: ToolResult.ok("ran"), approval=True, risk=RiskLevel.HIGH))
    result = executor.execute(ToolConfig(name="risky"), ctx.with_updates(approval_callback=lambda d, o, r: True))
    assert result.output == "ran"


def test_pre_approved_context_skips_gate(executor, registry, ctx):
    registry.register(_define("risky", lambda a, c: ToolResult.ok("ran"), approval=True, risk=RiskLevel.HIGH))
    assert executor.execute(ToolConfig(name="risky"), ctx.with_updates(approved=True)).success


def test_dry_run_describes_without_running(executor, registry, store, ctx):
    calls = []
    registry.register(_define("noop", lambda a, c: calls.append(1) or ToolResult.ok()))

    result = executor.execute(ToolConfig(name="noop", args={}), ctx.with_updates(dry_run=True))

    assert result.success
    assert result.output.startswith("[DRY RUN] Would execute: noop")
    assert calls == []
    assert store.list("exec") == []


def test_sandbox_rejects_disallowed_tool(executor, registry, ctx):
    registry.register(_define("host_only", lambda a, c: ToolResult.ok(), sandbox_allowed=False))
    result = executor.execute(ToolConfig(name="host_only"), ctx.with_updates(sandbox_enabled=True))
    assert result.error_code == "SANDBOX_REJECTED"


def test_handler_deadline_produces_timeout(registry, store, ctx):
    executor = ToolExecutor(registry, store, ApprovalGate(prompter=deny_all), settle_timeout=0)
    registry.register(_define("stuck", lambda a, c: time.sleep(3) or ToolResult.ok(), read_only=True))
    started = time.monotonic()
    result = executor.execute(ToolConfig(name="stuck", timeout=0.1), ctx)
    assert result.error_code == "TIMEOUT"
    assert result.timed_out
    assert time.monotonic() - started < 3


def _late_writer(path):
    def handler(args, ctx):
        time.sleep(2.5)
        path.write_text("mutated")
        return ToolResult.ok()
    return handler


def test_timeout_rollback_waits_for_the_handler(executor, registry, ctx, tmp_path):
    target = tmp_path / "f.txt"
    target.write_text("orig")
    registry.register(_define("late", _late_writer(target)))

    result = executor.execute(ToolConfig(name="late", timeout=0.1), ctx)

    assert result.error_code == "TIMEOUT"
    assert target.read_text() == "orig"


def test_handler_outliving_the_settle_wait_is_rolled_back_again(registry, store, ctx, tmp_path, events):
    bus = EventBus()
    bus.subscribe(events.append)
    executor = ToolExecutor(registry, store, ApprovalGate(prompter=deny_all), event_bus=bus, settle_timeout=0)
    target = tmp_path / "f.txt"
    target.write_text("orig")
    registry.register(_define("late", _late_writer(target)))

    result = executor.execute(ToolConfig(name="late", timeout=0.1), ctx)
    assert result.error_code == "TIMEOUT"

    deadline = time.monotonic() + 5
    while time.monotonic() < deadline and not any(e.payload.get("late") for e in events):
        time.sleep(0.05)

    assert [e.payload.get("late", False) for e in events if e.event_type == "tool_rolled_back"] == [False, True]
    assert target.read_text() == "orig"


def test_unknown_tool_and_bad_args(executor, ctx):
    assert executor.execute(ToolConfig(name="nope"), ctx).error_code == "TOOL_NOT_FOUND"
    bad = executor.execute(ToolConfig(name="file_read", args={}), ctx)
    assert bad.error_code == "INVALID_ARGS"


def test_read_only_tools_take_no_checkpoint(executor, store, ctx, files):
    assert executor.execute(ToolConfig(name="file_read", args={"path": "one.txt"}), ctx).success
    assert store.list("exec") == []


def test_dangerous_shell_command_is_escalated_and_denied(executor, ctx):
    result = executor.run_shell("rm -rf build", ctx)
    assert result.error_code == "POLICY_DENIED"


def test_history_is_per_session(executor, ctx, files):
    executor.execute(ToolConfig(name="file_read", args={"path": "one.txt"}), ctx)
    assert len(executor.history("exec")) == 1
    assert executor.history("other") == []


def test_release_checkpoints(executor, registry, store, ctx, files):
    registry.register(_define("ok", lambda a, c: ToolResult.ok("x")))
    executor.execute(ToolConfig(name="ok"), ctx)
    assert len(store.list("exec")) == 1
    assert executor.release_checkpoints("exec") == 1
    assert store.list("exec") == []
