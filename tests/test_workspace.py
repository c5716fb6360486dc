import shutil
import subprocess

import pytest

from vibe.workspace import Workspace

needs_git = pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")


@pytest.fixture
def repo(tmp_path, monkeypatch):
    for key, value in {
        "GIT_AUTHOR_NAME": "Test", "GIT_AUTHOR_EMAIL": "test@example.com",
        "GIT_COMMITTER_NAME": "Test", "GIT_COMMITTER_EMAIL": "test@example.com",
    }.items():
        monkeypatch.setenv(key, value)
    subprocess.run(["git", "init", "-q"], cwd=tmp_path, check=True)
    (tmp_path / "a.txt").write_text("a\n")
    (tmp_path / ".gitignore").write_text("ignored.log\n")
    subprocess.run(["git", "add", "-A"], cwd=tmp_path, check=True)
    subprocess.run(["git", "commit", "-q", "-m", "init"], cwd=tmp_path, check=True)
    return tmp_path


def test_walk_skips_vendor_dirs(tmp_path):
    (tmp_path / "node_modules").mkdir()
    (tmp_path / "node_modules" / "x.js").write_text("")
    (tmp_path / "app.js").write_text("")
    assert Workspace(tmp_path).walk_files() == ["app.js"]


def test_relative_and_resolve(tmp_path):
    ws = Workspace(tmp_path)
    assert ws.relative("src/../a.txt") == "a.txt"
    assert ws.resolve("a.txt") == tmp_path.resolve() / "a.txt"


@needs_git
def test_tracked_files_include_untracked_but_not_ignored(repo):
    (repo / "new.txt").write_text("n")
    (repo / "ignored.log").write_text("x")
    files = Workspace(repo).tracked_files()
    assert "a.txt" in files
    assert "new.txt" in files
    assert "ignored.log" not in files


@needs_git
def test_modified_scope(repo):
    (repo / "a.txt").write_text("changed\n")
    ws = Workspace(repo)
    assert ws.checkpoint_candidates("modified") == ["a.txt"]


@needs_git
def test_commit_returns_sha(repo):
    ws = Workspace(repo)
    assert ws.commit("nothing") is None
    (repo / "b.txt").write_text("b")
    sha = ws.commit("add b", add_all=True)
    assert sha and len(sha) == 40
