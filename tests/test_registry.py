from vibe.tools.base import (
    ExecutionContext,
    FunctionTool,
    RiskLevel,
    ToolCategory,
    ToolHandler,
    ToolResult,
    ToolSchema,
    SchemaProperty,
)
from vibe.tools.registry import ToolDefinition, ToolRegistry


def _tool(name="echo", risk=RiskLevel.LOW, approval=False, category=ToolCategory.SHELL):
    return ToolDefinition(
        name=name,
        description="Echo the message back",
        category=category,
        schema=ToolSchema(properties={"msg": SchemaProperty(type="string")}, required=["msg"]),
        risk_level=risk,
        requires_approval=approval,
        handler=FunctionTool(lambda args, ctx: ToolResult.ok(args["msg"])),
    )


def test_register_and_lookup():
    registry = ToolRegistry()
    registry.register(_tool())
    assert "echo" in registry
    assert registry.get("echo").description == "Echo the message back"
    assert registry.get("missing") is None


def test_last_registration_wins():
    registry = ToolRegistry()
    registry.register(_tool(risk=RiskLevel.LOW))
    registry.register(_tool(risk=RiskLevel.HIGH))
    assert len(registry) == 1
    assert registry.get("echo").risk_level == RiskLevel.HIGH


def test_unregister():
    registry = ToolRegistry()
    registry.register(_tool())
    assert registry.unregister("echo") is True
    assert registry.unregister("echo") is False


def test_filters():
    registry = ToolRegistry()
    registry.register(_tool("a", approval=True, category=ToolCategory.GIT))
    registry.register(_tool("b"))
    assert [t.name for t in registry.list_by_category("git")] == ["a"]
    assert [t.name for t in registry.get_approval_required()] == ["a"]


def test_function_tool_satisfies_handler_protocol(tmp_path):
    tool = _tool()
    assert isinstance(tool.handler, ToolHandler)
    result = tool.handler.run({"msg": "hi"}, ExecutionContext(working_dir=tmp_path))
    assert result.output == "hi"


def test_schema_validation():
    schema = _tool().schema
    assert schema.validate_args({"msg": "x"}) == []
    assert schema.validate_args({}) == ["Missing required argument: msg"]
    assert schema.validate_args({"msg": 3}) == ["Argument 'msg' must be of type string"]


def test_risk_ordering():
    assert RiskLevel.highest("low", RiskLevel.HIGH, None, "medium") == RiskLevel.HIGH
    assert RiskLevel.highest() == RiskLevel.LOW


def test_builtin_tools_are_registered(registry):
    names = set(registry.names())
    assert {"file_read", "file_write", "file_edit", "file_search", "shell_exec",
            "git_status", "git_commit", "git_branch"} <= names
    assert registry.get("file_read").read_only
    assert not registry.get("git_commit").sandbox_allowed
    assert "path" in registry.get("file_write").describe()


def test_builtin_file_write_and_read(registry, tmp_path):
    ctx = ExecutionContext(working_dir=tmp_path)
    written = registry.get("file_write").handler.run({"path": "a/b.txt", "content": "one\ntwo\nthree"}, ctx)
    assert written.success
    assert written.files_changed == ["a/b.txt"]

    read = registry.get("file_read").handler.run({"path": "a/b.txt", "start_line": 2, "end_line": 3}, ctx)
    assert read.output == "two\nthree"


def test_builtin_file_write_dry_run_touches_nothing(registry, tmp_path):
    ctx = ExecutionContext(working_dir=tmp_path, dry_run=True)
    result = registry.get("file_write").handler.run({"path": "x.txt", "content": "data"}, ctx)
    assert result.success
    assert not (tmp_path / "x.txt").exists()


def test_builtin_file_search(registry, tmp_path):
    (tmp_path / "src").mkdir()
    (tmp_path / "src" / "app.py").write_text("import os\nTODO = 1\n")
    ctx = ExecutionContext(working_dir=tmp_path)
    result = registry.get("file_search").handler.run({"pattern": "TODO"}, ctx)
    assert result.output == "src/app.py:2: TODO = 1"


def test_builtin_read_is_sandboxed(registry, tmp_path):
    ctx = ExecutionContext(working_dir=tmp_path, sandbox_enabled=True)
    result = registry.get("file_read").handler.run({"path": "/etc/hostname"}, ctx)
    assert result.error_code == "SANDBOX_REJECTED"
