from pathlib import Path

import pytest

from vibe.config_loader import load_config
from vibe.tools.registry import default_registry
from vibe.tools.sandbox import Sandbox
from vibe.workspace import Workspace
from vibe.workspace.checkpoints import CheckpointStore
from vibe.workspace.editor import DiffEditor


@pytest.fixture
def config(tmp_path: Path):
    return load_config(tmp_path, environ={})


@pytest.fixture
def sandbox(tmp_path: Path, config):
    box = Sandbox(config.sandbox, tmp_path)
    yield box
    box.close()


@pytest.fixture
def store(tmp_path: Path):
    return CheckpointStore(Workspace(tmp_path))


@pytest.fixture
def editor(store, sandbox):
    return DiffEditor(store, sandbox=sandbox)


@pytest.fixture
def registry(sandbox, editor):
    return default_registry(sandbox, editor)
