# pylint: disable=missing-module-docstring,missing-function-docstring

import inspect
import sys
from pathlib import Path

import pytest

from session.scripts import (
    RacerScript,
    ScriptLoadError,
    compile_script,
    discover_racers,
    load_script,
    sanitize_script,
)


RACE_SOURCE = """
async def race(page, api):
    await api.race_start("Load")
    api.race_end("Load")
"""


def test_discovers_race_files_sorted(tmp_path: Path) -> None:
    (tmp_path / "b.race.py").write_text(RACE_SOURCE)
    (tmp_path / "a.race.py").write_text(RACE_SOURCE)
    (tmp_path / "helper.py").write_text("")
    (tmp_path / "settings.json").write_text("{}")

    racers = discover_racers(tmp_path)

    assert [r.agent_id for r in racers] == ["a", "b"]


def test_falls_back_to_plain_python_files(tmp_path: Path) -> None:
    (tmp_path / "only.race.py").write_text(RACE_SOURCE)
    (tmp_path / "other.py").write_text(RACE_SOURCE)
    (tmp_path / "_private.py").write_text(RACE_SOURCE)

    racers = discover_racers(tmp_path)

    assert [r.agent_id for r in racers] == ["only", "other"]


def test_discovery_is_capped(tmp_path: Path) -> None:
    for i in range(7):
        (tmp_path / f"r{i}.race.py").write_text(RACE_SOURCE)

    assert len(discover_racers(tmp_path)) == 5
    assert len(discover_racers(tmp_path, limit=2)) == 2


def test_sanitize_script() -> None:
    pasted = "x = “hi”\r\ny = ‘a’ + 'b'\r\n"

    assert sanitize_script(pasted) == "x = \"hi\"\ny = 'a' + 'b'\n"


def test_compile_returns_coroutine_function() -> None:
    race = compile_script(RACE_SOURCE, agent_id="a")

    assert race is not None
    assert inspect.iscoroutinefunction(race)


def test_empty_script_compiles_to_none() -> None:
    assert compile_script("  \n\n", agent_id="a") is None


@pytest.mark.parametrize(
    "source",
    [
        "def race(page, api):\n    pass\n",
        "async def other(page, api):\n    pass\n",
        "async def race(page, api)\n    pass\n",
        "raise RuntimeError('import time')\n",
    ],
)
def test_invalid_scripts_raise_load_error(source: str) -> None:
    with pytest.raises(ScriptLoadError) as excinfo:
        compile_script(source, agent_id="bad")

    assert "[bad]" in str(excinfo.value)


def test_load_script_reads_file(tmp_path: Path) -> None:
    path = tmp_path / "a.race.py"
    path.write_text(RACE_SOURCE, encoding="utf-8")

    assert load_script(RacerScript(agent_id="a", path=path)) is not None


def test_load_script_missing_file(tmp_path: Path) -> None:
    with pytest.raises(ScriptLoadError):
        load_script(RacerScript(agent_id="a", path=tmp_path / "missing.race.py"))


DATACLASS_SOURCE = """
from dataclasses import dataclass

@dataclass
class Step:
    selector: str

async def race(page, api):
    return Step("#go")
"""


def test_loaded_script_is_a_regular_module(tmp_path: Path) -> None:
    path = tmp_path / "typed.race.py"
    path.write_text(DATACLASS_SOURCE, encoding="utf-8")

    race = load_script(RacerScript(agent_id="typed", path=path))

    assert race is not None
    assert race.__module__ == "racer_typed"
    assert race.__globals__["__file__"] == str(path)
    assert "racer_typed" not in sys.modules


def test_load_error_leaves_no_module_behind() -> None:
    with pytest.raises(ScriptLoadError):
        compile_script("raise RuntimeError('import time')\n", agent_id="broken")

    assert "racer_broken" not in sys.modules
