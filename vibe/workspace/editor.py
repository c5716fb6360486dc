"""
VIBE Diff Editor

File mutation API on top of the DiffEngine and the CheckpointStore:
replace / insert / delete / append / patch, single or batched.

Every write is preceded by a checkpoint of the files it touches, and the
checkpoint id travels back on the result so callers can undo.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING

from loguru import logger
from pydantic import BaseModel, Field

from vibe.tools.base import ExecutionContext
from vibe.workspace.checkpoints import CheckpointStore
from vibe.workspace.diff import DiffEngine, PatchError, split_lines

if TYPE_CHECKING:
    from vibe.tools.sandbox import Sandbox


class EditType(str, Enum):
    REPLACE = "replace"
    INSERT = "insert"
    DELETE = "delete"
    APPEND = "append"
    PATCH = "patch"


class EditOperation(BaseModel):
    type: EditType
    file: str
    search_pattern: str | None = None
    replacement: str | None = None
    # insert: new text goes after this 1-based line (0 = top of file)
    # delete: first line of the inclusive range
    line_number: int | None = None
    end_line_number: int | None = None


class LineChange(BaseModel):
    type: EditType
    line_start: int | None = None
    line_end: int | None = None
    content: str | None = None


class EditResult(BaseModel):
    success: bool
    file: str
    changes: list[LineChange] = Field(default_factory=list)
    error: str | None = None
    diff: str | None = None
    checkpoint_id: str | None = None


class MultiEditResult(BaseModel):
    success: bool
    total_files: int
    successful_files: int
    failed_files: int
    results: list[EditResult] = Field(default_factory=list)
    checkpoint_id: str | None = None


class EditError(ValueError):
    pass


class DiffEditor:
    def __init__(
        self,
        checkpoints: CheckpointStore,
        engine: DiffEngine | None = None,
        sandbox: "Sandbox | None" = None,
    ):
        self.checkpoints = checkpoints
        self.engine = engine or DiffEngine()
        self.sandbox = sandbox

    # -----------------------------------------------------------------------
    # Single edit
    # -----------------------------------------------------------------------

    def apply_edit(self, op: EditOperation, ctx: ExecutionContext, checkpoint: bool = True) -> EditResult:
        target = ctx.resolve(op.file)

        if ctx.sandbox_enabled and self.sandbox is not None:
            check = self.sandbox.check_path(target)
            if not check.allowed:
                return EditResult(success=False, file=op.file, error=f"Access denied: {check.reason}")

        if not target.is_file():
            return EditResult(success=False, file=op.file, error="File not found")

        try:
            content = target.read_bytes().decode("utf-8")
        except (OSError, UnicodeDecodeError) as e:
            return EditResult(success=False, file=op.file, error=f"Cannot read file: {e}")

        try:
            new_content, changes = self.compute(content, op)
        except (EditError, PatchError) as e:
            return EditResult(success=False, file=op.file, error=str(e))

        diff = self.engine.generate(content, new_content, op.file)

        if ctx.dry_run:
            return EditResult(success=True, file=op.file, changes=changes, diff=diff)

        checkpoint_id = None
        if checkpoint:
            checkpoint_id = self.checkpoints.create(
                ctx.session_id, f"Before edit: {op.file}", paths=[target], include_tracked=False
            )

        try:
            _write_text(target, new_content)
        except OSError as e:
            logger.error(f"[EDIT] Write failed for {op.file}: {e}")
            if checkpoint_id:
                self.checkpoints.restore(checkpoint_id)
            return EditResult(success=False, file=op.file, error=f"Write failed: {e}", checkpoint_id=checkpoint_id)

        logger.debug(f"[EDIT] {op.type.value} {op.file} ({len(changes)} changes)")
        return EditResult(success=True, file=op.file, changes=changes, diff=diff, checkpoint_id=checkpoint_id)

    # -----------------------------------------------------------------------
    # Batch
    # -----------------------------------------------------------------------

    def apply_multi_edit(
        self, ops: list[EditOperation], ctx: ExecutionContext, checkpoint: bool = True
    ) -> MultiEditResult:
        """
        Apply every operation under one checkpoint.

        Does not stop at the first failure and does not roll back the
        successes; the returned checkpoint id lets the caller undo the
        whole batch. Pass checkpoint=False when the caller already holds one.
        """
        checkpoint_id = None
        if checkpoint and not ctx.dry_run:
            checkpoint_id = self.checkpoints.create(
                ctx.session_id,
                f"Before multi-edit ({len(ops)} ops)",
                paths=[ctx.resolve(op.file) for op in ops if ctx.resolve(op.file).is_file()],
                include_tracked=False,
            )

        results: list[EditResult] = []
        for op in ops:
            result = self.apply_edit(op, ctx, checkpoint=False)
            results.append(result.model_copy(update={"checkpoint_id": checkpoint_id}))

        failed = sum(1 for r in results if not r.success)
        return MultiEditResult(
            success=failed == 0,
            total_files=len(ops),
            successful_files=len(ops) - failed,
            failed_files=failed,
            results=results,
            checkpoint_id=checkpoint_id,
        )

    # -----------------------------------------------------------------------
    # Conveniences
    # -----------------------------------------------------------------------

    def replace_all(self, file: str, search: str, replacement: str, ctx: ExecutionContext) -> EditResult:
        return self.apply_edit(
            EditOperation(type=EditType.REPLACE, file=file, search_pattern=search, replacement=replacement), ctx
        )

    def insert_at(self, file: str, line_number: int, content: str, ctx: ExecutionContext) -> EditResult:
        return self.apply_edit(
            EditOperation(type=EditType.INSERT, file=file, line_number=line_number, replacement=content), ctx
        )

    def delete_lines(self, file: str, start: int, end: int, ctx: ExecutionContext) -> EditResult:
        return self.apply_edit(
            EditOperation(type=EditType.DELETE, file=file, line_number=start, end_line_number=end), ctx
        )

    def append(self, file: str, content: str, ctx: ExecutionContext) -> EditResult:
        return self.apply_edit(EditOperation(type=EditType.APPEND, file=file, replacement=content), ctx)

    # -----------------------------------------------------------------------
    # Pure edit computation
    # -----------------------------------------------------------------------

    def compute(self, content: str, op: EditOperation) -> tuple[str, list[LineChange]]:
        """Return (new_content, changes). Raises EditError on an impossible edit."""
        if op.type == EditType.REPLACE:
            if not op.search_pattern or op.replacement is None:
                raise EditError("replace needs search_pattern and replacement")
            count = content.count(op.search_pattern)
            if count == 0:
                raise EditError(f"Pattern not found: {op.search_pattern[:80]!r}")
            new_content = content.replace(op.search_pattern, op.replacement)
            return new_content, [LineChange(type=EditType.REPLACE, content=op.replacement)]

        if op.type == EditType.INSERT:
            if op.line_number is None or op.replacement is None:
                raise EditError("insert needs line_number and replacement")
            lines = split_lines(content)
            if not 0 <= op.line_number <= len(lines):
                raise EditError(f"Line {op.line_number} is outside 0..{len(lines)}")
            lines[op.line_number:op.line_number] = [op.replacement]
            return "\n".join(lines), [
                LineChange(type=EditType.INSERT, line_start=op.line_number + 1, content=op.replacement)
            ]

        if op.type == EditType.DELETE:
            if op.line_number is None:
                raise EditError("delete needs line_number")
            lines = split_lines(content)
            end = op.end_line_number if op.end_line_number is not None else op.line_number
            if not 1 <= op.line_number <= end <= len(lines):
                raise EditError(f"Invalid line range {op.line_number}-{end} for {len(lines)} lines")
            del lines[op.line_number - 1:end]
            return "\n".join(lines), [LineChange(type=EditType.DELETE, line_start=op.line_number, line_end=end)]

        if op.type == EditType.APPEND:
            if op.replacement is None:
                raise EditError("append needs replacement")
            if not content or content.endswith("\n"):
                new_content = content + op.replacement
            else:
                new_content = content + "\n" + op.replacement
            return new_content, [LineChange(type=EditType.APPEND, content=op.replacement)]

        if op.type == EditType.PATCH:
            if not op.replacement:
                raise EditError("patch needs the diff text in replacement")
            new_content = self.engine.apply(content, op.replacement)
            stats = self.engine.stats(content, new_content)
            return new_content, [
                LineChange(type=EditType.PATCH, content=f"+{stats.added} -{stats.removed}")
            ]

        raise EditError(f"Unsupported edit type: {op.type}")


def _write_text(target: Path, content: str) -> None:
    # newline="" keeps "\n" exactly as computed on every platform
    with open(target, "w", encoding="utf-8", newline="") as f:
        f.write(content)
