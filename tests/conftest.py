from __future__ import annotations

import re
import shutil
from pathlib import Path
from uuid import uuid4

import pytest


def _node_dir_name(name: str) -> str:
    name = re.sub(r"[^A-Za-z0-9._-]+", "_", name).strip("._")
    return name or "test"


@pytest.fixture(autouse=True)
def _no_provider_keys(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep a developer's real provider keys and config path out of the tests."""
    for var in ("OPENAI_API_KEY", "ANTHROPIC_API_KEY", "CONFIG_PATH"):
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def workspace_tmp_path(request: pytest.FixtureRequest) -> Path:
    """Per-test scratch dir under the working directory.

    SQLite files and JSONL logs are written here instead of the system temp
    directory, which some sandboxes refuse to open.
    """
    root = Path.cwd() / ".pytest_tmp_workspace" / _node_dir_name(request.node.name) / uuid4().hex
    root.mkdir(parents=True, exist_ok=True)
    try:
        yield root
    finally:
        shutil.rmtree(root, ignore_errors=True)
