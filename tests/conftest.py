import os
from pathlib import Path

import pytest

# litellm fetches its model cost map over the network at import time; offline, the
# failure-path warning deadlocks under pytest's log capture. Use the bundled copy.
os.environ.setdefault("LITELLM_LOCAL_MODEL_COST_MAP", "True")

from vwork.config import config_from_dict  # noqa: E402


@pytest.fixture
def vwork_home(tmp_path, monkeypatch) -> Path:
    home = tmp_path / "vwork"
    home.mkdir()
    monkeypatch.setenv("VWORK_HOME", str(home))
    return home


@pytest.fixture
def make_config(vwork_home):
    def _make(**sections):
        data = {
            "report": {"output_dir": str(vwork_home / "reports")},
            "todo": {"dir": str(vwork_home / "todos")},
        }
        data.update(sections)
        return config_from_dict(data)

    return _make


@pytest.fixture
def config(make_config):
    return make_config()
