import time

import pytest

from vibe.approval import (
    ApprovalDecision,
    ApprovalGate,
    ApprovalPolicy,
    ApprovalStatus,
    ApprovalType,
    callback_prompter,
    deny_all,
)
from vibe.config_loader import ApprovalSettings
from vibe.tools.base import RiskLevel


class CountingPrompter:
    def __init__(self, answer):
        self.answer = answer
        self.calls = 0

    def __call__(self, request):
        self.calls += 1
        return self.answer


def test_policy_verdicts_are_deterministic_without_prompting():
    prompter = CountingPrompter(False)
    gate = ApprovalGate(ApprovalPolicy(auto_approve_medium_risk=True), prompter=prompter)

    verdicts = {gate.request("edit", ["a.py"], RiskLevel.MEDIUM, "file-write") for _ in range(5)}

    assert verdicts == {True}
    assert prompter.calls == 0
    assert gate.list_requests() == []


def test_low_risk_is_auto_approved_by_default():
    gate = ApprovalGate(prompter=deny_all)
    assert gate.request("read", risk="low") is True
    assert gate.get_status()["total"] == 0


def test_high_risk_prompts_and_records_request():
    prompter = CountingPrompter(True)
    gate = ApprovalGate(prompter=prompter, session_id="s1")

    assert gate.request("Run make deploy", ["make deploy"], "high", ApprovalType.SHELL.value) is True
    assert prompter.calls == 1

    [req] = gate.list_requests()
    assert req.status == ApprovalStatus.APPROVED
    assert req.type == ApprovalType.SHELL.value
    assert req.session_id == "s1"
    assert req.operations == ["make deploy"]


def test_global_auto_approve_skips_everything():
    prompter = CountingPrompter(False)
    gate = ApprovalGate(prompter=prompter, auto_approve=True)
    assert gate.request("drop db", risk=RiskLevel.CRITICAL) is True
    assert prompter.calls == 0


def test_disabled_confirmation_approves_high_risk():
    gate = ApprovalGate(ApprovalPolicy(confirm_high_risk=False), prompter=deny_all)
    assert gate.request("x", risk="high") is True
    assert gate.request("x", risk="critical") is False


def test_always_answer_is_remembered_per_type():
    prompter = CountingPrompter(ApprovalDecision.ALWAYS)
    gate = ApprovalGate(prompter=prompter)

    assert gate.request("push", risk="high", type="git-mutation") is True
    assert gate.request("push again", risk="high", type="git-mutation") is True
    assert prompter.calls == 1
    assert gate.get_status()["preferences"] == {"git-mutation": "always"}

    # Other types still ask
    assert gate.request("Delete a.txt", ["a.txt"], "high", "delete") is True
    assert prompter.calls == 2


def test_never_answer_denies_future_requests():
    prompter = CountingPrompter(ApprovalDecision.NEVER)
    gate = ApprovalGate(prompter=prompter)
    assert gate.request("ls", risk="high", type="shell") is False
    assert gate.request("ls", risk="high", type="shell") is False
    assert prompter.calls == 1


def test_remembered_preferences_from_settings():
    settings = ApprovalSettings(preferences={"shell": "never"})
    gate = ApprovalGate.from_settings(settings, prompter=CountingPrompter(True))
    assert gate.request("echo hi", risk="low", type="shell") is False


def test_non_bool_answer_is_a_denial():
    gate = ApprovalGate(prompter=CountingPrompter("yes please"))
    assert gate.request("x", risk="high") is False
    assert gate.list_requests()[0].status == ApprovalStatus.DENIED


def test_raising_prompter_is_a_denial():
    def broken(request):
        raise RuntimeError("terminal gone")

    gate = ApprovalGate(prompter=broken)
    assert gate.request("x", risk="high") is False


def test_unanswered_request_expires_as_denied():
    def slow(request):
        time.sleep(2)
        return True

    gate = ApprovalGate(prompter=slow, ttl_seconds=0.2)
    started = time.monotonic()
    assert gate.request("x", risk="high") is False
    assert time.monotonic() - started < 1.5
    assert gate.list_requests()[0].status == ApprovalStatus.DENIED
    assert gate.list_pending() == []


def test_callback_prompter_receives_description_operations_and_risk():
    seen = []

    def callback(description, operations, risk):
        seen.append((description, operations, risk))
        return True

    gate = ApprovalGate(prompter=deny_all)
    assert gate.request("Write a.py", ["a.py"], "high", prompter=callback_prompter(callback)) is True
    assert seen == [("Write a.py", ["a.py"], RiskLevel.HIGH)]


def test_request_resolves_once():
    gate = ApprovalGate(prompter=CountingPrompter(True))
    gate.request("x", risk="high")
    req = gate.list_requests()[0]
    with pytest.raises(ValueError):
        req.resolve(False)
    assert req.status == ApprovalStatus.APPROVED


def test_new_session_forgets_answers_but_keeps_configured_preferences():
    settings = ApprovalSettings(preferences={"deploy": "never"})
    prompter = CountingPrompter(ApprovalDecision.ALWAYS)
    gate = ApprovalGate.from_settings(settings, prompter=prompter, session_id="s1")
    assert gate.request("make", risk="high", type="shell") is True
    assert gate.request("make", risk="high", type="shell") is True
    assert prompter.calls == 1

    gate.start_session("s2")

    assert gate.list_requests() == []
    assert gate.get_status()["preferences"] == {"deploy": "never"}
    assert gate.request("make", risk="high", type="shell") is True
    assert prompter.calls == 2
    assert gate.list_requests()[0].session_id == "s2"


def test_pending_requests_are_listed_while_the_prompt_is_open():
    seen = []

    def prompter(request):
        seen.extend(gate.list_pending())
        return True

    gate = ApprovalGate(prompter=prompter)
    assert gate.request("x", risk="high") is True
    assert [r.status for r in seen] == [ApprovalStatus.PENDING]
    assert gate.list_pending() == []
