"""
VIBE Diff Engine

Line-level diffs between two text blobs.

Alignment is a greedy heuristic, not a minimal edit script: both line
arrays are walked in lockstep and, on a mismatch, a bounded lookahead
window is searched for the nearest exact match to resynchronize on.
When no match exists inside the window the pair is treated as a direct
replace (one delete + one insert). It favors speed and locality over
optimality; a diff may be longer than the minimal one and that is
expected, not a bug. The output is always exact: applying it to the old
text reproduces the new text.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterator, Literal

from loguru import logger

OpKind = Literal["equal", "delete", "insert"]

_HUNK_HEADER = re.compile(r"^@@ -(\d+)(?:,(\d+))? \+(\d+)(?:,(\d+))? @@")


class PatchError(ValueError):
    pass


@dataclass(frozen=True)
class DiffOp:
    kind: OpKind
    old_index: int  # cursor into old lines when the op was emitted
    new_index: int  # cursor into new lines when the op was emitted
    text: str


@dataclass(frozen=True)
class DiffStats:
    added: int
    removed: int
    unchanged: int

    @property
    def changed(self) -> bool:
        return bool(self.added or self.removed)


@dataclass
class Hunk:
    old_start: int
    old_count: int
    new_start: int
    new_count: int
    lines: list[tuple[str, str]]  # (" " | "-" | "+", text)

    def header(self) -> str:
        return f"@@ -{self.old_start},{self.old_count} +{self.new_start},{self.new_count} @@"


def split_lines(text: str) -> list[str]:
    return text.split("\n")


class DiffEngine:
    def __init__(self, lookahead: int = 10, max_hunk_lines: int = 50, show_line_numbers: bool = False):
        if lookahead < 1 or max_hunk_lines < 1:
            raise ValueError("lookahead and max_hunk_lines must be positive")
        self.lookahead = lookahead
        self.max_hunk_lines = max_hunk_lines
        self.show_line_numbers = show_line_numbers

    # -----------------------------------------------------------------------
    # Alignment
    # -----------------------------------------------------------------------

    def align(self, old_lines: list[str], new_lines: list[str]) -> list[DiffOp]:
        ops: list[DiffOp] = []
        i = j = 0
        n_old, n_new = len(old_lines), len(new_lines)

        while i < n_old or j < n_new:
            if i < n_old and j < n_new and old_lines[i] == new_lines[j]:
                ops.append(DiffOp("equal", i, j, old_lines[i]))
                i += 1
                j += 1
            elif i >= n_old:
                ops.append(DiffOp("insert", i, j, new_lines[j]))
                j += 1
            elif j >= n_new:
                ops.append(DiffOp("delete", i, j, old_lines[i]))
                i += 1
            else:
                match = self._resync(old_lines, new_lines, i, j)
                if match is None:
                    ops.append(DiffOp("delete", i, j, old_lines[i]))
                    ops.append(DiffOp("insert", i + 1, j, new_lines[j]))
                    i += 1
                    j += 1
                    continue
                best_old, best_new = match
                while i < best_old:
                    ops.append(DiffOp("delete", i, j, old_lines[i]))
                    i += 1
                while j < best_new:
                    ops.append(DiffOp("insert", i, j, new_lines[j]))
                    j += 1
        return ops

    def _resync(self, old_lines: list[str], new_lines: list[str], i: int, j: int) -> tuple[int, int] | None:
        """Nearest (old, new) pair of equal lines inside the lookahead window."""
        best: tuple[int, int] | None = None
        best_dist = self.lookahead
        for oi in range(i, min(i + self.lookahead, len(old_lines))):
            for nj in range(j, min(j + self.lookahead, len(new_lines))):
                dist = (oi - i) + (nj - j)
                if dist >= best_dist:
                    break
                if old_lines[oi] == new_lines[nj]:
                    best, best_dist = (oi, nj), dist
                    break
        return best

    def stats(self, old_text: str, new_text: str) -> DiffStats:
        ops = self.align(split_lines(old_text), split_lines(new_text))
        return DiffStats(
            added=sum(1 for op in ops if op.kind == "insert"),
            removed=sum(1 for op in ops if op.kind == "delete"),
            unchanged=sum(1 for op in ops if op.kind == "equal"),
        )

    # -----------------------------------------------------------------------
    # Rendering
    # -----------------------------------------------------------------------

    def hunks(self, old_text: str, new_text: str) -> list[Hunk]:
        ops = self.align(split_lines(old_text), split_lines(new_text))
        return [self._build_hunk(chunk) for chunk in _chunks(ops, self.max_hunk_lines)]

    def generate(self, old_text: str, new_text: str, label: str) -> str:
        """Unified-diff-like text: `---`/`+++` headers then `@@ -a,b +c,d @@` hunks."""
        out = [f"--- {label}", f"+++ {label}"]
        for hunk in self.hunks(old_text, new_text):
            out.append(hunk.header())
            old_no, new_no = _first_line_numbers(hunk)
            for marker, text in hunk.lines:
                prefix = ""
                if self.show_line_numbers:
                    num = new_no if marker == "+" else old_no
                    prefix = f"    {num:>3} │ "
                out.append(f"{marker}{prefix}{text}")
                if marker != "+":
                    old_no += 1
                if marker != "-":
                    new_no += 1
        return "\n".join(out)

    def display_diff(self, old_text: str, new_text: str, label: str) -> str:
        """Numbered, line-aligned rendering for terminals. No color codes."""
        ops = self.align(split_lines(old_text), split_lines(new_text))
        width = max(3, len(str(max(len(ops), 1))))
        blank = " " * width
        out = [f"─── Diff: {label} ───"]
        for op in ops:
            if op.kind == "equal":
                out.append(f"  {op.old_index + 1:>{width}} {op.new_index + 1:>{width}} │ {op.text}")
            elif op.kind == "delete":
                out.append(f"- {op.old_index + 1:>{width}} {blank} │ {op.text}")
            else:
                out.append(f"+ {blank} {op.new_index + 1:>{width}} │ {op.text}")
        return "\n".join(out)

    @staticmethod
    def _build_hunk(chunk: list[DiffOp]) -> Hunk:
        marker = {"equal": " ", "delete": "-", "insert": "+"}
        old_count = sum(1 for op in chunk if op.kind != "insert")
        new_count = sum(1 for op in chunk if op.kind != "delete")
        first = chunk[0]
        # Unified convention: an empty side points at the line *before* the change
        return Hunk(
            old_start=first.old_index + 1 if old_count else first.old_index,
            old_count=old_count,
            new_start=first.new_index + 1 if new_count else first.new_index,
            new_count=new_count,
            lines=[(marker[op.kind], op.text) for op in chunk],
        )

    # -----------------------------------------------------------------------
    # Application
    # -----------------------------------------------------------------------

    @staticmethod
    def parse(diff_text: str) -> list[Hunk]:
        lines = diff_text.split("\n")
        hunks: list[Hunk] = []
        idx = 0
        while idx < len(lines):
            m = _HUNK_HEADER.match(lines[idx])
            idx += 1
            if not m:
                continue
            old_start, old_count = int(m.group(1)), int(m.group(2) or 1)
            new_start, new_count = int(m.group(3)), int(m.group(4) or 1)
            body: list[tuple[str, str]] = []
            need_old, need_new = old_count, new_count
            while need_old > 0 or need_new > 0:
                if idx >= len(lines):
                    raise PatchError(f"Truncated hunk at line {idx}")
                line = lines[idx]
                idx += 1
                if line.startswith("\\"):
                    continue
                marker, text = (line[:1] or " "), line[1:]
                if marker not in " -+":
                    raise PatchError(f"Malformed hunk line: {line!r}")
                if marker != "+":
                    need_old -= 1
                if marker != "-":
                    need_new -= 1
                body.append((marker, text))
            hunks.append(Hunk(old_start, old_count, new_start, new_count, body))
        return hunks

    def apply(self, old_text: str, diff_text: str) -> str:
        """Apply a diff (as produced by `generate` without line numbers) to old_text."""
        old_lines = split_lines(old_text)
        out: list[str] = []
        cursor = 0
        for hunk in self.parse(diff_text):
            start = hunk.old_start - 1 if hunk.old_count else hunk.old_start
            if start < cursor or start > len(old_lines):
                raise PatchError(f"Hunk {hunk.header()} does not fit the file")
            out.extend(old_lines[cursor:start])
            cursor = start
            for marker, text in hunk.lines:
                if marker != "+":
                    if cursor >= len(old_lines) or old_lines[cursor] != text:
                        logger.debug(f"[DIFF] Context mismatch in {hunk.header()}")
                        raise PatchError(f"Context mismatch at line {cursor + 1}")
                    cursor += 1
                if marker != "-":
                    out.append(text)
        out.extend(old_lines[cursor:])
        return "\n".join(out)


def _chunks(ops: list[DiffOp], size: int) -> Iterator[list[DiffOp]]:
    for start in range(0, len(ops), size):
        yield ops[start:start + size]


def _first_line_numbers(hunk: Hunk) -> tuple[int, int]:
    old_no = hunk.old_start if hunk.old_count else hunk.old_start + 1
    new_no = hunk.new_start if hunk.new_count else hunk.new_start + 1
    return old_no, new_no
