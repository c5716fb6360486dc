import json

import pytest

from vibe.config_loader import CheckpointSettings
from vibe.errors import CheckpointError
from vibe.workspace import Workspace
from vibe.workspace.checkpoints import CheckpointStore


@pytest.fixture
def project(tmp_path):
    (tmp_path / "src").mkdir()
    (tmp_path / "src" / "main.py").write_text("print('v1')\n")
    (tmp_path / "README.md").write_text("# readme\r\nwindows line\r\n")
    (tmp_path / "logo.bin").write_bytes(bytes(range(256)))
    return tmp_path


def test_round_trip_is_byte_identical(project):
    store = CheckpointStore(Workspace(project))
    before = {p: (project / p).read_bytes() for p in ("src/main.py", "README.md", "logo.bin")}

    cp = store.create("s1", "Before: edit")
    (project / "src" / "main.py").write_text("print('v2')\n")
    (project / "README.md").unlink()
    (project / "logo.bin").write_bytes(b"\x00")

    assert store.restore(cp) is True
    for rel, data in before.items():
        assert (project / rel).read_bytes() == data


def test_created_files_are_removed_on_restore(project):
    store = CheckpointStore(Workspace(project))
    cp = store.create("s1", "Before: write", paths=["new/file.txt"])
    assert store.get(cp).files[-1].kind == "created"

    (project / "new").mkdir()
    (project / "new" / "file.txt").write_text("hello")
    assert store.restore(cp)
    assert not (project / "new" / "file.txt").exists()


def test_checkpoint_is_consumed_by_restore(project):
    store = CheckpointStore(Workspace(project))
    cp = store.create("s1", "once")
    assert store.restore(cp) is True
    assert store.restore(cp) is False
    assert cp not in store


def test_unknown_checkpoint_is_a_miss(project):
    store = CheckpointStore(Workspace(project))
    assert store.restore("chk-0-missing") is False


def test_persisted_checkpoint_restores_from_a_new_store(project):
    storage = project / ".vibe" / "checkpoints"
    cp = CheckpointStore(Workspace(project), storage_dir=storage).create("s1", "persisted")

    on_disk = json.loads((storage / "s1" / f"{cp}.json").read_text())
    assert on_disk["sessionId"] == "s1"
    assert {"path", "type", "originalContent"} <= set(on_disk["files"][0])

    (project / "src" / "main.py").write_text("changed")
    fresh = CheckpointStore(Workspace(project), storage_dir=storage)
    assert [c.id for c in fresh.list("s1")] == [cp]
    assert fresh.restore(cp)
    assert (project / "src" / "main.py").read_text() == "print('v1')\n"
    assert not (storage / "s1" / f"{cp}.json").exists()


def test_state_dir_is_never_captured(project):
    store = CheckpointStore.from_settings(Workspace(project), CheckpointSettings())
    store.create("s1", "first")
    cp = store.create("s1", "second")
    assert all(not p.startswith(".vibe/") for p in store.get(cp).paths)


def test_oversized_files_are_skipped(project):
    store = CheckpointStore(Workspace(project), max_file_bytes=100)
    cp = store.get(store.create("s1", "small only"))
    assert "logo.bin" in cp.skipped
    assert "logo.bin" not in cp.paths


def test_strict_mode_aborts_on_skip(project):
    store = CheckpointStore(Workspace(project), max_file_bytes=100, strict=True)
    with pytest.raises(CheckpointError):
        store.create("s1", "strict")
    assert store.list() == []


def test_sessions_are_isolated(project):
    store = CheckpointStore(Workspace(project))
    a = store.create("a", "one")
    store.create("b", "two")
    assert [c.id for c in store.list("a")] == [a]
    assert store.cleanup("b") == 1
    assert len(store.list()) == 1


def test_explicit_paths_only(project):
    store = CheckpointStore(Workspace(project))
    cp = store.get(store.create("s1", "narrow", paths=["src/main.py"], include_tracked=False))
    assert cp.paths == ["src/main.py"]
