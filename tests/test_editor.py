import pytest

from vibe.tools.base import ExecutionContext
from vibe.workspace.editor import EditError, EditOperation, EditType


@pytest.fixture
def ctx(tmp_path):
    return ExecutionContext(working_dir=tmp_path, session_id="edit")


def _write(tmp_path, name, text):
    (tmp_path / name).write_text(text)
    return name


def test_replace_is_global(editor, ctx, tmp_path):
    _write(tmp_path, "a.py", "foo = 1\nbar = foo\n")
    result = editor.replace_all("a.py", "foo", "baz", ctx)
    assert result.success
    assert (tmp_path / "a.py").read_text() == "baz = 1\nbar = baz\n"
    assert "-foo = 1" in result.diff
    assert "+baz = 1" in result.diff


def test_replace_missing_pattern_fails(editor, ctx, tmp_path):
    _write(tmp_path, "a.py", "x\n")
    result = editor.replace_all("a.py", "nope", "y", ctx)
    assert not result.success
    assert "Pattern not found" in result.error


def test_insert_after_line(editor, ctx, tmp_path):
    _write(tmp_path, "a.txt", "one\nthree")
    assert editor.insert_at("a.txt", 1, "two", ctx).success
    assert (tmp_path / "a.txt").read_text() == "one\ntwo\nthree"


def test_delete_inclusive_range(editor, ctx, tmp_path):
    _write(tmp_path, "a.txt", "1\n2\n3\n4")
    assert editor.delete_lines("a.txt", 2, 3, ctx).success
    assert (tmp_path / "a.txt").read_text() == "1\n4"


def test_delete_out_of_range(editor, ctx, tmp_path):
    _write(tmp_path, "a.txt", "1\n2")
    assert not editor.delete_lines("a.txt", 2, 9, ctx).success


def test_append_adds_separator(editor, ctx, tmp_path):
    _write(tmp_path, "a.txt", "first")
    assert editor.append("a.txt", "second", ctx).success
    assert (tmp_path / "a.txt").read_text() == "first\nsecond"


def test_patch_applies_generated_diff(editor, ctx, tmp_path):
    _write(tmp_path, "a.txt", "a\nb\nc")
    diff = editor.engine.generate("a\nb\nc", "a\nB\nc\nd", "a.txt")
    op = EditOperation(type=EditType.PATCH, file="a.txt", replacement=diff)
    assert editor.apply_edit(op, ctx).success
    assert (tmp_path / "a.txt").read_text() == "a\nB\nc\nd"


def test_edit_is_undoable(editor, store, ctx, tmp_path):
    _write(tmp_path, "a.txt", "keep")
    result = editor.append("a.txt", "more", ctx)
    assert store.restore(result.checkpoint_id)
    assert (tmp_path / "a.txt").read_text() == "keep"


def test_dry_run_writes_nothing(editor, ctx, tmp_path):
    _write(tmp_path, "a.txt", "same")
    result = editor.append("a.txt", "more", ctx.with_updates(dry_run=True))
    assert result.success
    assert result.diff
    assert result.checkpoint_id is None
    assert (tmp_path / "a.txt").read_text() == "same"


def test_missing_file(editor, ctx):
    result = editor.append("ghost.txt", "x", ctx)
    assert not result.success
    assert result.error == "File not found"


def test_multi_edit_counts_partial_failures(editor, store, ctx, tmp_path):
    for name in ("a.txt", "c.txt", "e.txt"):
        _write(tmp_path, name, "old")
    ops = [
        EditOperation(type=EditType.REPLACE, file="a.txt", search_pattern="old", replacement="new"),
        EditOperation(type=EditType.REPLACE, file="missing-b.txt", search_pattern="old", replacement="new"),
        EditOperation(type=EditType.REPLACE, file="c.txt", search_pattern="old", replacement="new"),
        EditOperation(type=EditType.REPLACE, file="missing-d.txt", search_pattern="old", replacement="new"),
        EditOperation(type=EditType.REPLACE, file="e.txt", search_pattern="old", replacement="new"),
    ]

    result = editor.apply_multi_edit(ops, ctx)

    assert result.successful_files == 3
    assert result.failed_files == 2
    assert result.success is False
    for name in ("a.txt", "c.txt", "e.txt"):
        assert (tmp_path / name).read_text() == "new"

    # One checkpoint covers the whole batch
    assert store.restore(result.checkpoint_id)
    for name in ("a.txt", "c.txt", "e.txt"):
        assert (tmp_path / name).read_text() == "old"


def test_sandboxed_edit_outside_project_is_denied(editor, ctx, tmp_path):
    result = editor.append("/etc/hosts", "x", ctx.with_updates(sandbox_enabled=True))
    assert not result.success
    assert "Access denied" in result.error


def test_compute_is_pure(editor):
    with pytest.raises(EditError):
        editor.compute("x", EditOperation(type=EditType.INSERT, file="f", line_number=5, replacement="y"))
