"""
VIBE Command Scanner

Flags known-dangerous substrings in shell command text before it reaches
a process. Heuristic and regex-based: it catches the obvious, it does not
parse shell grammar.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from vibe.tools.base import RiskLevel


@dataclass(frozen=True)
class SecurityIssue:
    rule: str
    severity: RiskLevel
    message: str

    @property
    def blocking(self) -> bool:
        return self.severity.rank >= RiskLevel.HIGH.rank


_COMMAND_RULES: list[tuple[str, RiskLevel, str, re.Pattern[str]]] = [
    (rule, severity, message, re.compile(pattern, re.IGNORECASE))
    for rule, severity, message, pattern in (
        ("recursive-delete", RiskLevel.CRITICAL, "Recursive forced delete",
         r"\brm\s+(-[a-z]*r[a-z]*f|-[a-z]*f[a-z]*r|-r\s+-f|-f\s+-r|--recursive\s+--force|--force\s+--recursive)\b"),
        ("fork-bomb", RiskLevel.CRITICAL, "Fork bomb",
         r":\s*\(\s*\)\s*\{\s*:\s*\|\s*:\s*&\s*\}\s*;\s*:"),
        ("format-filesystem", RiskLevel.CRITICAL, "Filesystem formatting",
         r"\bmkfs(\.\w+)?\b|\bformat\s+[a-z]:"),
        ("raw-device-write", RiskLevel.CRITICAL, "Raw write to a block device",
         r"\bdd\b[^|;&]*\bof=/dev/|>\s*/dev/(sd[a-z]|nvme\d|disk\d|hd[a-z])"),
        ("pipe-to-shell", RiskLevel.HIGH, "Piping a remote script into a shell",
         r"\b(curl|wget)\b[^|;&]*\|\s*(sudo\s+)?(ba|z|k|da)?sh\b"),
        ("privilege-escalation", RiskLevel.HIGH, "Privilege escalation",
         r"(^|[;&|]\s*|\s)(sudo|su|doas)\s"),
        ("power-state", RiskLevel.HIGH, "Changes machine power state",
         r"\b(shutdown|reboot|halt|poweroff)\b"),
        ("destructive-sql", RiskLevel.HIGH, "Destructive SQL statement",
         r"\bdrop\s+(table|database|schema)\b|\btruncate\s+table\b"),
        ("world-writable", RiskLevel.MEDIUM, "World-writable permissions",
         r"\bchmod\s+(-R\s+)?0?777\b"),
        ("force-push", RiskLevel.MEDIUM, "Force push rewrites remote history",
         r"\bgit\s+push\b[^;&|]*(\s--force\b|\s-f\b)"),
        ("hard-reset", RiskLevel.MEDIUM, "Discards uncommitted work",
         r"\bgit\s+(reset\s+--hard|clean\s+-[a-z]*f)"),
        ("inline-secret", RiskLevel.MEDIUM, "Secret passed on the command line",
         r"--?(password|token|secret|api[-_]?key)(\s+|=)\S+"),
    )
]

_SECRET_PATTERNS = [
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"(--?(?:password|token|secret|api[-_]?key)\s+)([^\s]+)",
        r"((?:password|token|secret|api[-_]?key)\s*=\s*)([^\s]+)",
    )
]


def scan_command(command: str) -> list[SecurityIssue]:
    """Return every rule the command trips, most severe first."""
    issues = [
        SecurityIssue(rule=rule, severity=severity, message=message)
        for rule, severity, message, pattern in _COMMAND_RULES
        if pattern.search(command)
    ]
    return sorted(issues, key=lambda issue: issue.severity.rank, reverse=True)


def max_severity(issues: list[SecurityIssue]) -> RiskLevel | None:
    if not issues:
        return None
    return RiskLevel.highest(*(issue.severity for issue in issues))


def sanitize_command(command: str) -> str:
    """Mask secret values so the command can be logged."""
    sanitized = command
    for pattern in _SECRET_PATTERNS:
        sanitized = pattern.sub(r"\1***", sanitized)
    return sanitized
