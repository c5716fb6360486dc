from vibe.config_loader import SandboxSettings
from vibe.tools.sandbox import Sandbox


def test_default_path_policy(sandbox, tmp_path):
    assert sandbox.is_path_allowed("/etc/passwd") is False
    assert sandbox.is_path_allowed(tmp_path / "src" / "index.ts") is True
    assert sandbox.is_path_allowed("src/index.ts") is True


def test_path_outside_project_is_rejected(sandbox, tmp_path):
    check = sandbox.check_path(tmp_path.parent / "elsewhere.txt")
    assert not check.allowed
    assert "outside" in check.reason


def test_traversal_is_resolved_before_checking(sandbox):
    assert sandbox.is_path_allowed("../../../../etc/passwd") is False


def test_bare_blocked_name_matches_any_component(sandbox, tmp_path):
    assert sandbox.is_path_allowed(tmp_path / "home" / ".ssh" / "id_rsa") is False


def test_allowed_paths_extend_the_root(tmp_path):
    extra = tmp_path.parent / f"{tmp_path.name}-extra"
    box = Sandbox(SandboxSettings(allowed_paths=[str(extra)]), tmp_path / "project")
    assert box.is_path_allowed(extra / "notes.txt")


def test_default_command_policy(sandbox):
    assert sandbox.is_command_allowed("rm -rf /") is False
    assert sandbox.is_command_allowed("git status") is True
    assert sandbox.is_command_allowed("sudo ls") is False
    assert sandbox.is_command_allowed("") is False


def test_allow_list_rejects_unknown_commands(sandbox):
    allowed, reason = sandbox.check_command("terraform apply")
    assert not allowed
    assert "allow-list" in reason


def test_network_policy(tmp_path):
    box = Sandbox(SandboxSettings(enabled=True, allowed_domains=["pypi.org"]), tmp_path)
    assert box.is_network_allowed("https://pypi.org/simple")
    assert box.is_network_allowed("https://files.pypi.org/x")
    assert not box.is_network_allowed("https://example.com")
    assert not box.is_network_allowed("not a url")

    offline = Sandbox(SandboxSettings(allow_network=False), tmp_path)
    assert not offline.is_network_allowed("https://pypi.org")


def test_enabled_sandbox_rejects_blocked_command(tmp_path, config):
    settings = config.sandbox.model_copy(update={"enabled": True})
    box = Sandbox(settings, tmp_path)
    result = box.execute_command("rm -rf build")
    assert not result.success
    assert result.error_code == "SANDBOX_REJECTED"


def test_enabled_sandbox_runs_allowed_command(tmp_path, config):
    settings = config.sandbox.model_copy(update={"enabled": True})
    box = Sandbox(settings, tmp_path)
    result = box.execute_command("echo hello")
    assert result.success
    assert result.output.strip() == "hello"


def test_dry_run_does_not_execute(sandbox, tmp_path):
    result = sandbox.execute_command("touch made.txt", dry_run=True)
    assert result.success
    assert "Would execute" in result.output
    assert not (tmp_path / "made.txt").exists()


def test_timeout_produces_failed_result(sandbox):
    result = sandbox.execute_command("sleep 5", timeout=0.5)
    assert not result.success
    assert result.timed_out
    assert result.error_code == "TIMEOUT"
    assert result.retryable


def test_nonzero_exit_is_a_failed_result(sandbox):
    result = sandbox.execute_command("exit 3")
    assert not result.success
    assert result.exit_code == 3


def test_sandboxed_commands_use_a_private_temp_dir(tmp_path, config):
    box = Sandbox(config.sandbox.model_copy(update={"enabled": True}), tmp_path)
    result = box.execute_command("echo $TMPDIR")
    scratch = box.temp_dir
    assert result.output.strip() == str(scratch)
    assert scratch.is_dir()
    box.close()
    assert not scratch.exists()


def test_toggle_and_update_config(tmp_path):
    box = Sandbox(SandboxSettings(), tmp_path)
    assert not box.enabled
    box.set_enabled(True)
    box.update_config(allowed_commands=["echo"])
    assert box.status()["enabled"] is True
    assert box.is_command_allowed("echo hi")
    assert not box.is_command_allowed("ls")
