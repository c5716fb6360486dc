"""
VIBE Approval Gate

Given a risk level and the remembered policy, decide whether an
operation proceeds automatically, is denied automatically, or must be
confirmed by a human.

Decision order for `request(description, operations, risk, type)`:
  1. global auto-approve on                       → approved
  2. remembered preference for `type`             → always / never
  3. low + auto_approve_low_risk,
     medium + auto_approve_medium_risk            → approved
  4. high/critical with its confirm flag disabled → approved
  5. otherwise create an ApprovalRequest and block on the prompter
     until it answers or the request TTL expires (expiry = denied)

A prompter that raises, answers late, or returns anything other than a
decision or a bool counts as a denial.
"""

from __future__ import annotations

import threading
import uuid
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable

from loguru import logger
from pydantic import BaseModel, Field
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.prompt import Prompt

from vibe.config_loader import ApprovalSettings
from vibe.tools.base import RiskLevel


# ---------------------------------------------------------------------------
# Types
# ---------------------------------------------------------------------------

class ApprovalType(str, Enum):
    FILE_WRITE = "file-write"
    SHELL = "shell"
    GIT_MUTATION = "git-mutation"
    DELETE = "delete"
    DEPLOY = "deploy"
    PLAN = "plan"


class ApprovalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    DENIED = "denied"


class PolicyPreference(str, Enum):
    ALWAYS = "always"
    NEVER = "never"
    ASK = "ask"


class ApprovalDecision(str, Enum):
    APPROVE = "approve"
    DENY = "deny"
    ALWAYS = "always"   # approve and remember for this type
    NEVER = "never"     # deny and remember for this type


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ApprovalRequest(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    type: str
    description: str
    operations: list[str] = Field(default_factory=list)
    risk: RiskLevel
    session_id: str | None = None
    created_at: datetime = Field(default_factory=_utcnow)
    expires_at: datetime
    status: ApprovalStatus = ApprovalStatus.PENDING
    decided_at: datetime | None = None

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or _utcnow()) >= self.expires_at

    def resolve(self, approved: bool, now: datetime | None = None) -> None:
        """pending → approved | denied, exactly once."""
        if self.status != ApprovalStatus.PENDING:
            raise ValueError(f"Approval request {self.id} already {self.status.value}")
        self.status = ApprovalStatus.APPROVED if approved else ApprovalStatus.DENIED
        self.decided_at = now or _utcnow()


class ApprovalPolicy(BaseModel):
    auto_approve_low_risk: bool = True
    auto_approve_medium_risk: bool = False
    confirm_high_risk: bool = True
    confirm_critical_risk: bool = True
    remember_preferences: bool = True
    preferences: dict[str, PolicyPreference] = Field(default_factory=dict)

    @classmethod
    def from_settings(cls, settings: ApprovalSettings) -> "ApprovalPolicy":
        return cls(
            auto_approve_low_risk=settings.auto_approve_low_risk,
            auto_approve_medium_risk=settings.auto_approve_medium_risk,
            confirm_high_risk=settings.confirm_high_risk,
            confirm_critical_risk=settings.confirm_critical_risk,
            remember_preferences=settings.remember_preferences,
            preferences={k: PolicyPreference(v) for k, v in settings.preferences.items()},
        )

    def evaluate(self, risk: RiskLevel, type: str) -> bool | None:
        """Verdict from policy alone, or None when a human must decide."""
        pref = self.preferences.get(type)
        if pref == PolicyPreference.ALWAYS:
            return True
        if pref == PolicyPreference.NEVER:
            return False

        if risk == RiskLevel.LOW and self.auto_approve_low_risk:
            return True
        if risk == RiskLevel.MEDIUM and self.auto_approve_medium_risk:
            return True
        if risk == RiskLevel.HIGH and not self.confirm_high_risk:
            return True
        if risk == RiskLevel.CRITICAL and not self.confirm_critical_risk:
            return True
        return None


Prompter = Callable[[ApprovalRequest], Any]


# ---------------------------------------------------------------------------
# Prompters
# ---------------------------------------------------------------------------

_RISK_STYLE = {
    RiskLevel.LOW: "green",
    RiskLevel.MEDIUM: "yellow",
    RiskLevel.HIGH: "red",
    RiskLevel.CRITICAL: "bold red",
}

_CHOICES = {
    "y": ApprovalDecision.APPROVE,
    "n": ApprovalDecision.DENY,
    "a": ApprovalDecision.ALWAYS,
    "N": ApprovalDecision.NEVER,
    "q": ApprovalDecision.DENY,
}

_HELP = (
    "  y  approve this request\n"
    "  n  deny this request\n"
    "  a  approve, and always approve this type from now on\n"
    "  N  deny, and never approve this type from now on\n"
    "  v  show the operations again\n"
    "  q  cancel (deny)"
)


class ConsolePrompter:
    """Interactive terminal prompt rendered with rich."""

    def __init__(self, console: Console | None = None):
        self.console = console or Console()

    def __call__(self, request: ApprovalRequest) -> ApprovalDecision:
        self._show(request)
        while True:
            answer = Prompt.ask(
                "[bold]Approve?[/] [dim](y/n/a/N/v/?)[/]",
                console=self.console,
                default="n",
                show_default=True,
            ).strip()
            if answer in _CHOICES:
                return _CHOICES[answer]
            if answer.lower() in ("yes", "no"):
                return ApprovalDecision.APPROVE if answer.lower() == "yes" else ApprovalDecision.DENY
            if answer == "v":
                self._show(request)
            else:
                self.console.print(_HELP)

    def _show(self, request: ApprovalRequest) -> None:
        style = _RISK_STYLE.get(request.risk, "white")
        ops = "\n".join(f"  • {escape(op)}" for op in request.operations[:20]) or "  (no operations listed)"
        if len(request.operations) > 20:
            ops += f"\n  … and {len(request.operations) - 20} more"
        self.console.print(Panel(
            f"{escape(request.description)}\n\n{ops}",
            title=f"Approval required — {request.type}",
            subtitle=f"risk: {request.risk.value}",
            border_style=style,
        ))


def callback_prompter(callback: Callable[[str, list[str], RiskLevel], Any]) -> Prompter:
    """Adapt a `(description, operations, risk) -> bool` callback into a prompter."""

    def prompt(request: ApprovalRequest) -> Any:
        return callback(request.description, list(request.operations), request.risk)

    return prompt


def deny_all(request: ApprovalRequest) -> ApprovalDecision:
    """Prompter for non-interactive runs: anything that needs a human is denied."""
    return ApprovalDecision.DENY


# ---------------------------------------------------------------------------
# Gate
# ---------------------------------------------------------------------------

class ApprovalGate:
    """
    Serves one session at a time. start_session() clears the request log
    and resets remembered preferences to the configured ones, so nothing
    a user answered in one session carries into the next.
    """

    def __init__(
        self,
        policy: ApprovalPolicy | None = None,
        prompter: Prompter | None = None,
        auto_approve: bool = False,
        ttl_seconds: float = 300.0,
        session_id: str | None = None,
    ):
        self.policy = policy or ApprovalPolicy()
        self.prompter = prompter or ConsolePrompter()
        self.auto_approve = auto_approve
        self.ttl = timedelta(seconds=ttl_seconds)
        self.session_id = session_id
        self._configured = dict(self.policy.preferences)
        self._requests: dict[str, ApprovalRequest] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_settings(
        cls,
        settings: ApprovalSettings,
        prompter: Prompter | None = None,
        session_id: str | None = None,
    ) -> "ApprovalGate":
        return cls(
            policy=ApprovalPolicy.from_settings(settings),
            prompter=prompter,
            auto_approve=settings.auto_approve,
            ttl_seconds=settings.ttl_seconds,
            session_id=session_id,
        )

    # -----------------------------------------------------------------------
    # Decisions
    # -----------------------------------------------------------------------

    def request(
        self,
        description: str,
        operations: list[str] | None = None,
        risk: RiskLevel | str = RiskLevel.MEDIUM,
        type: str = ApprovalType.FILE_WRITE.value,
        prompter: Prompter | None = None,
    ) -> bool:
        risk = RiskLevel(risk)
        type = ApprovalType(type).value if type in ApprovalType._value2member_map_ else type

        if self.auto_approve:
            logger.debug(f"[APPROVAL] auto-approve on: {description}")
            return True

        verdict = self.policy.evaluate(risk, type)
        if verdict is not None:
            logger.debug(f"[APPROVAL] policy {'approved' if verdict else 'denied'} ({type}, {risk.value})")
            return verdict

        now = _utcnow()
        req = ApprovalRequest(
            type=type,
            description=description,
            operations=list(operations or []),
            risk=risk,
            session_id=self.session_id,
            created_at=now,
            expires_at=now + self.ttl,
        )
        with self._lock:
            self._requests[req.id] = req

        decision = self._await_decision(req, prompter or self.prompter)
        approved = decision in (ApprovalDecision.APPROVE, ApprovalDecision.ALWAYS)

        if decision in (ApprovalDecision.ALWAYS, ApprovalDecision.NEVER) and self.policy.remember_preferences:
            self.remember(type, PolicyPreference.ALWAYS if approved else PolicyPreference.NEVER)

        req.resolve(approved)
        logger.info(f"[APPROVAL] {req.id[:8]} {req.status.value}: {description}")
        return approved

    def _await_decision(self, req: ApprovalRequest, prompter: Prompter) -> ApprovalDecision:
        outcome: dict[str, Any] = {}
        done = threading.Event()

        def ask() -> None:
            try:
                outcome["answer"] = prompter(req)
            except Exception as e:
                outcome["error"] = e
            finally:
                done.set()

        remaining = (req.expires_at - _utcnow()).total_seconds()
        worker = threading.Thread(target=ask, name=f"approval-{req.id[:8]}", daemon=True)
        worker.start()

        if not done.wait(timeout=max(remaining, 0.0)):
            logger.warning(f"[APPROVAL] {req.id[:8]} expired after {self.ttl.total_seconds():.0f}s")
            return ApprovalDecision.DENY
        if "error" in outcome:
            logger.warning(f"[APPROVAL] Prompt failed, treating as denial: {outcome['error']}")
            return ApprovalDecision.DENY
        if req.is_expired():
            return ApprovalDecision.DENY
        return _coerce(outcome.get("answer"))

    # -----------------------------------------------------------------------
    # Policy
    # -----------------------------------------------------------------------

    def start_session(self, session_id: str) -> None:
        with self._lock:
            self._requests.clear()
        self.policy.preferences = dict(self._configured)
        self.session_id = session_id
        logger.debug(f"[APPROVAL] Session {session_id} started")

    def set_auto_approve(self, enabled: bool) -> None:
        self.auto_approve = enabled

    def remember(self, type: str, preference: PolicyPreference | str) -> None:
        preference = PolicyPreference(preference)
        if preference == PolicyPreference.ASK:
            self.policy.preferences.pop(type, None)
        else:
            self.policy.preferences[type] = preference
        logger.info(f"[APPROVAL] Remembered {type} → {preference.value}")

    # -----------------------------------------------------------------------
    # Listing
    # -----------------------------------------------------------------------

    def list_requests(self) -> list[ApprovalRequest]:
        with self._lock:
            return sorted(self._requests.values(), key=lambda r: r.created_at)

    def list_pending(self) -> list[ApprovalRequest]:
        now = _utcnow()
        return [r for r in self.list_requests() if r.status == ApprovalStatus.PENDING and not r.is_expired(now)]

    def get_status(self) -> dict[str, Any]:
        requests = self.list_requests()
        return {
            "auto_approve": self.auto_approve,
            "pending": len(self.list_pending()),
            "approved": sum(1 for r in requests if r.status == ApprovalStatus.APPROVED),
            "denied": sum(1 for r in requests if r.status == ApprovalStatus.DENIED),
            "total": len(requests),
            "preferences": {k: v.value for k, v in self.policy.preferences.items()},
        }

    def close(self) -> None:
        with self._lock:
            self._requests.clear()


def _coerce(answer: Any) -> ApprovalDecision:
    if isinstance(answer, ApprovalDecision):
        return answer
    if isinstance(answer, bool):
        return ApprovalDecision.APPROVE if answer else ApprovalDecision.DENY
    return ApprovalDecision.DENY
