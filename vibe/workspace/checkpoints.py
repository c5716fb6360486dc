"""
VIBE Checkpoint Store — the undo unit.

A checkpoint snapshots file contents before a mutation. Restoring it
writes every `modified` file back byte-for-byte and deletes every
`created` file, then consumes the checkpoint: each one can be restored
at most once.

Checkpoints live in memory and, when a storage directory is given, are
also persisted as JSON under `<storage_dir>/<session_id>/<id>.json` so
a later process can restore them. Restore behaves the same either way.
"""

from __future__ import annotations

import base64
import re
import threading
import time
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Literal

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from vibe.config_loader import CheckpointSettings
from vibe.errors import CheckpointError
from vibe.workspace import Workspace


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

class FileSnapshot(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    path: str
    kind: Literal["created", "modified"] = Field(alias="type")
    original_content: str | None = Field(default=None, alias="originalContent")
    encoding: Literal["utf-8", "base64"] = "utf-8"

    @classmethod
    def capture(cls, path: str, data: bytes) -> "FileSnapshot":
        try:
            return cls(path=path, kind="modified", original_content=data.decode("utf-8"))
        except UnicodeDecodeError:
            return cls(
                path=path,
                kind="modified",
                original_content=base64.b64encode(data).decode("ascii"),
                encoding="base64",
            )

    def content_bytes(self) -> bytes:
        if self.original_content is None:
            return b""
        if self.encoding == "base64":
            return base64.b64decode(self.original_content)
        return self.original_content.encode("utf-8")


class Checkpoint(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    session_id: str = Field(alias="sessionId")
    description: str
    created_at: datetime = Field(alias="createdAt")
    files: list[FileSnapshot] = Field(default_factory=list)
    skipped: list[str] = Field(default_factory=list)

    @property
    def paths(self) -> list[str]:
        return [f.path for f in self.files]


def new_checkpoint_id() -> str:
    return f"chk-{int(time.time() * 1000)}-{uuid.uuid4().hex[:6]}"


def _safe_segment(value: str) -> str:
    return re.sub(r"[^A-Za-z0-9._-]", "_", value) or "_"


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------

class CheckpointStore:
    """
    Exclusive owner of the id → Checkpoint map.

    Capture scope:
      - "tracked":  every tracked and untracked-not-ignored file (a full walk outside git)
      - "modified": the VCS modified-file list, or all tracked files when it is empty
    plus any explicit `paths` handed to `create()`; explicit paths that do not
    exist yet are recorded as `created` so restore removes them.

    Unreadable or oversized files are left out of the checkpoint and listed
    in `Checkpoint.skipped`. With `strict=True` they abort the capture instead.
    """

    def __init__(
        self,
        workspace: Workspace,
        storage_dir: Path | None = None,
        scope: Literal["tracked", "modified"] = "tracked",
        max_files: int = 2000,
        max_file_bytes: int = 2 * 1024 * 1024,
        strict: bool = False,
    ):
        self.workspace = workspace
        self.storage_dir = Path(storage_dir) if storage_dir else None
        self.scope = scope
        self.max_files = max_files
        self.max_file_bytes = max_file_bytes
        self.strict = strict
        self._checkpoints: dict[str, Checkpoint] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, workspace: Workspace, settings: CheckpointSettings) -> "CheckpointStore":
        storage = workspace.resolve(settings.directory) if settings.persist else None
        return cls(
            workspace,
            storage_dir=storage,
            scope=settings.scope,
            max_files=settings.max_files,
            max_file_bytes=settings.max_file_bytes,
            strict=settings.strict,
        )

    # -----------------------------------------------------------------------
    # Create
    # -----------------------------------------------------------------------

    def create(
        self,
        session_id: str,
        description: str,
        paths: Iterable[str | Path] | None = None,
        include_tracked: bool = True,
    ) -> str:
        files: list[FileSnapshot] = []
        skipped: list[str] = []
        seen: set[str] = set()

        def skip(rel: str, reason: str) -> None:
            if self.strict:
                raise CheckpointError(f"Cannot checkpoint {rel}: {reason}", path=rel)
            logger.warning(f"[CHECKPOINT] Skipping {rel}: {reason}")
            skipped.append(rel)

        if include_tracked:
            candidates = [
                p for p in self.workspace.checkpoint_candidates(self.scope)
                if p.split("/", 1)[0] not in self.workspace.skip_dirs
            ]
            if len(candidates) > self.max_files:
                if self.strict:
                    raise CheckpointError(
                        f"{len(candidates)} files exceed the checkpoint limit of {self.max_files}"
                    )
                logger.warning(
                    f"[CHECKPOINT] {len(candidates)} files, capturing the first {self.max_files}"
                )
                skipped.extend(candidates[self.max_files:])
                candidates = candidates[:self.max_files]

            for rel in candidates:
                snapshot = self._capture(rel, skip)
                if snapshot is not None:
                    files.append(snapshot)
                    seen.add(snapshot.path)

        for raw in paths or []:
            rel = self.workspace.relative(raw)
            if rel in seen:
                continue
            target = self.workspace.resolve(raw)
            if target.exists():
                snapshot = self._capture(rel, skip)
                if snapshot is not None:
                    files.append(snapshot)
            else:
                files.append(FileSnapshot(path=rel, kind="created"))
            seen.add(rel)

        checkpoint = Checkpoint(
            id=new_checkpoint_id(),
            session_id=session_id,
            description=description,
            created_at=datetime.now(timezone.utc),
            files=files,
            skipped=skipped,
        )

        with self._lock:
            self._checkpoints[checkpoint.id] = checkpoint
        self._persist(checkpoint)

        logger.debug(
            f"[CHECKPOINT] {checkpoint.id} '{description}' — "
            f"{len(files)} files, {len(skipped)} skipped"
        )
        return checkpoint.id

    def _capture(self, rel: str, skip) -> FileSnapshot | None:
        target = self.workspace.resolve(rel)
        try:
            size = target.stat().st_size
            if size > self.max_file_bytes:
                skip(rel, f"{size} bytes exceeds {self.max_file_bytes}")
                return None
            data = target.read_bytes()
        except OSError as e:
            skip(rel, str(e))
            return None
        return FileSnapshot.capture(rel, data)

    # -----------------------------------------------------------------------
    # Restore / discard
    # -----------------------------------------------------------------------

    def restore(self, checkpoint_id: str) -> bool:
        checkpoint = self.get(checkpoint_id)
        if checkpoint is None:
            logger.warning(f"[CHECKPOINT] Unknown or consumed checkpoint: {checkpoint_id}")
            return False
        if not self.reapply(checkpoint):
            return False

        self.discard(checkpoint_id)
        logger.info(f"[CHECKPOINT] Restored {checkpoint_id} ({len(checkpoint.files)} files)")
        return True

    def reapply(self, checkpoint: Checkpoint) -> bool:
        """Write a checkpoint's snapshots back without consuming it."""
        failures: list[str] = []
        for snapshot in checkpoint.files:
            target = self.workspace.resolve(snapshot.path)
            try:
                if snapshot.kind == "modified":
                    target.parent.mkdir(parents=True, exist_ok=True)
                    target.write_bytes(snapshot.content_bytes())
                else:
                    target.unlink(missing_ok=True)
            except OSError as e:
                failures.append(f"{snapshot.path}: {e}")

        if failures:
            logger.error(f"[CHECKPOINT] Restore of {checkpoint.id} incomplete: {'; '.join(failures)}")
            return False
        return True

    def discard(self, checkpoint_id: str) -> bool:
        with self._lock:
            checkpoint = self._checkpoints.pop(checkpoint_id, None)
        path = self._find_file(checkpoint_id)
        if path is not None:
            path.unlink(missing_ok=True)
        return checkpoint is not None or path is not None

    def cleanup(self, session_id: str | None = None) -> int:
        """Discard every checkpoint (of one session). Returns how many were removed."""
        removed = 0
        for checkpoint in self.list(session_id):
            if self.discard(checkpoint.id):
                removed += 1
        return removed

    def close(self) -> None:
        """Drop in-memory state. Persisted checkpoints stay on disk for later undo."""
        with self._lock:
            self._checkpoints.clear()

    # -----------------------------------------------------------------------
    # Lookup
    # -----------------------------------------------------------------------

    def get(self, checkpoint_id: str) -> Checkpoint | None:
        with self._lock:
            checkpoint = self._checkpoints.get(checkpoint_id)
        if checkpoint is not None:
            return checkpoint
        path = self._find_file(checkpoint_id)
        return self._load(path) if path is not None else None

    def list(self, session_id: str | None = None) -> list[Checkpoint]:
        with self._lock:
            found = dict(self._checkpoints)

        if self.storage_dir is not None and self.storage_dir.exists():
            pattern = f"{_safe_segment(session_id)}/*.json" if session_id else "*/*.json"
            for path in self.storage_dir.glob(pattern):
                if path.stem not in found:
                    checkpoint = self._load(path)
                    if checkpoint is not None:
                        found[checkpoint.id] = checkpoint

        checkpoints = [c for c in found.values() if session_id is None or c.session_id == session_id]
        return sorted(checkpoints, key=lambda c: c.created_at)

    def __contains__(self, checkpoint_id: object) -> bool:
        return isinstance(checkpoint_id, str) and self.get(checkpoint_id) is not None

    # -----------------------------------------------------------------------
    # Persistence
    # -----------------------------------------------------------------------

    def _persist(self, checkpoint: Checkpoint) -> None:
        if self.storage_dir is None:
            return
        session_dir = self.storage_dir / _safe_segment(checkpoint.session_id)
        session_dir.mkdir(parents=True, exist_ok=True)
        (session_dir / f"{checkpoint.id}.json").write_text(
            checkpoint.model_dump_json(by_alias=True, indent=2)
        )

    def _find_file(self, checkpoint_id: str) -> Path | None:
        if self.storage_dir is None or not self.storage_dir.exists():
            return None
        for path in self.storage_dir.glob(f"*/{_safe_segment(checkpoint_id)}.json"):
            return path
        return None

    @staticmethod
    def _load(path: Path) -> Checkpoint | None:
        try:
            return Checkpoint.model_validate_json(path.read_text())
        except (OSError, ValidationError) as e:
            logger.warning(f"[CHECKPOINT] Unreadable checkpoint file {path}: {e}")
            return None
