import json

import pytest
import yaml


@pytest.fixture(autouse=True)
def routinekit_home(monkeypatch, tmp_path):
    """Point ROUTINEKIT_HOME at an empty per-test directory."""
    home = tmp_path / "routinekit_home"
    monkeypatch.setenv("ROUTINEKIT_HOME", str(home))
    return home


@pytest.fixture
def events():
    """Collect lifecycle events: subscribe `events.append` to a channel."""
    return []


STEPS_SOURCE = '''
def fetch(inputs, results):
    return inputs.get("n", 1)


def double(inputs, results):
    return results["fetch"] * 2


def is_even(value, inputs, results):
    return value % 2 == 0


def broken(inputs, results):
    raise RuntimeError("broken step")


class Steps:
    @staticmethod
    def answer(inputs, results):
        return 42


NOT_CALLABLE = 3
'''


@pytest.fixture
def steps_module(tmp_path, monkeypatch):
    """Importable module `rk_registry_steps` with sample actions."""
    module_dir = tmp_path / "modules"
    module_dir.mkdir()
    (module_dir / "rk_registry_steps.py").write_text(STEPS_SOURCE)
    monkeypatch.syspath_prepend(str(module_dir))
    return "rk_registry_steps"


@pytest.fixture
def definitions_dir(tmp_path, steps_module):
    defs = tmp_path / "definitions"
    (defs / "reports").mkdir(parents=True)

    (defs / "reports" / "doubler.yaml").write_text(yaml.dump({
        "routine_id": "doubler",
        "config": {"max_retries": 2, "retry_delay_ms": 0},
        "subroutines": [
            {"name": "fetch", "action": f"{steps_module}:fetch"},
            {"name": "double", "action": f"{steps_module}:double",
             "evaluator": f"{steps_module}:is_even"},
        ],
    }))
    (defs / "failing.json").write_text(json.dumps({
        "routine_id": "failing",
        "config": {"max_retries": 1},
        "subroutines": [{"name": "boom", "action": f"{steps_module}:broken"}],
    }))
    (defs / "nightly.yaml").write_text(yaml.dump({
        "queue_id": "nightly",
        "mode": "pipeline",
        "routines": ["doubler", "failing"],
    }))
    (defs / "_deprecated").mkdir()
    (defs / "_deprecated" / "old.yaml").write_text(yaml.dump({"routine_id": "old", "subroutines": []}))
    return defs
