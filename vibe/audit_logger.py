"""
VIBE Audit Logger

Append-only JSONL trail of what the agents did and which tools ran.
One line per AgentStep or tool event; readable back per session.
"""

from __future__ import annotations

import json
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from loguru import logger

from vibe.event_bus import EventBus, VibeEvent

MAX_RESULT_CHARS = 500

_TOOL_EVENTS = {"tool_completed", "tool_failed", "tool_denied", "tool_rolled_back"}


class AuditLogger:
    def __init__(self, log_file: Path):
        self.log_file = Path(log_file)
        self._lock = threading.Lock()
        self._bus: EventBus | None = None

    def attach(self, bus: EventBus) -> None:
        bus.subscribe(self.handle_event)
        self._bus = bus

    def close(self) -> None:
        if self._bus is not None:
            self._bus.unsubscribe(self.handle_event)
            self._bus = None

    def handle_event(self, event: VibeEvent) -> None:
        payload = event.payload
        if event.event_type == "agent_step":
            self.log({
                "timestamp": payload.get("timestamp", event.timestamp),
                "session_id": event.session_id,
                "phase": payload.get("phase"),
                "action": payload.get("action"),
                "result": str(payload.get("result", ""))[:MAX_RESULT_CHARS],
                "approved": payload.get("approved"),
                "duration_ms": payload.get("duration_ms", 0),
            })
        elif event.event_type in _TOOL_EVENTS:
            self.log({
                "timestamp": event.timestamp,
                "session_id": event.session_id,
                "event": event.event_type,
                "tool": payload.get("tool"),
                "success": payload.get("success"),
                "error": payload.get("error"),
            })

    def log(self, entry: dict[str, Any]) -> None:
        entry.setdefault("timestamp", datetime.now(timezone.utc).isoformat())
        line = json.dumps(entry, default=str)
        with self._lock:
            self.log_file.parent.mkdir(parents=True, exist_ok=True)
            with open(self.log_file, "a") as f:
                f.write(line + "\n")

    def get_logs(self, session_id: str | None = None, limit: int | None = None) -> list[dict[str, Any]]:
        if not self.log_file.exists():
            return []

        entries: list[dict[str, Any]] = []
        with open(self.log_file) as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    entry = json.loads(line)
                except json.JSONDecodeError:
                    logger.warning(f"[AUDIT] Skipping corrupt line in {self.log_file}")
                    continue
                if session_id and entry.get("session_id") != session_id:
                    continue
                entries.append(entry)

        if limit is not None:
            entries = entries[-limit:]
        return entries
