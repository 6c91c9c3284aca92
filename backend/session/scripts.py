"""
Racer script discovery and loading.

A race directory holds one Python file per agent. Each file defines

    async def race(page, api):
        await api.race_start("Load")
        ...
        api.race_end("Load")

where `page` is the environment's automation handle (None without a
browser) and `api` is the five-operation race capability.

Scripts run with the full privileges of this process. Only run
scripts you trust.
"""

from __future__ import annotations

import importlib.abc
import importlib.util
import inspect
import re
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from constants import MAX_RACERS, RACER_SCRIPT_ENTRYPOINT, RACER_SCRIPT_SUFFIXES

if TYPE_CHECKING:
    from session.race_api import RaceApi


RaceScript = Callable[[Any, "RaceApi"], Awaitable[None]]


class ScriptLoadError(Exception):
    """A racer script could not be read or does not define race()."""


class ScriptExecutionError(Exception):
    """An exception escaped a racer script; wraps it with the agent id."""

    def __init__(self, agent_id: str, cause: BaseException) -> None:
        super().__init__(f"[{agent_id}] script execution failed: {cause}")
        self.agent_id = agent_id
        self.cause = cause


@dataclass(frozen=True)
class RacerScript:
    """A discovered racer file."""
    agent_id: str
    path: Path


# ---------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------

def discover_racers(race_dir: Path, *, limit: int = MAX_RACERS) -> list[RacerScript]:
    """
    Find racer scripts in a directory, sorted by file name.

    `*.race.py` files are preferred; when fewer than two exist, every
    `*.py` file is considered instead. Hidden and private files are
    skipped. At most `limit` racers are returned.
    """
    race_dir = Path(race_dir)
    candidates = sorted(
        p for p in race_dir.iterdir()
        if p.is_file() and not p.name.startswith((".", "_"))
    )

    primary, fallback = RACER_SCRIPT_SUFFIXES
    files = [p for p in candidates if p.name.endswith(primary)]
    if len(files) < 2:
        files = [p for p in candidates if p.name.endswith(fallback)]

    return [RacerScript(agent_id=_agent_id(p), path=p) for p in files[:limit]]


def _agent_id(path: Path) -> str:
    name = path.name
    for suffix in RACER_SCRIPT_SUFFIXES:
        if name.endswith(suffix):
            return name[: -len(suffix)]
    return path.stem


# ---------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------

_SMART_SINGLE_QUOTES = re.compile("[\u2018\u2019]")
_SMART_DOUBLE_QUOTES = re.compile("[\u201C\u201D]")
_ODD_SPACES = re.compile("[\u00A0\u2000-\u200B\u202F\u205F\u3000]")
_LINE_ENDINGS = re.compile(r"\r\n?")


def sanitize_script(source: str) -> str:
    """Fix smart quotes, non-breaking spaces and line endings pasted into scripts."""
    source = _SMART_SINGLE_QUOTES.sub("'", source)
    source = _SMART_DOUBLE_QUOTES.sub('"', source)
    source = _ODD_SPACES.sub(" ", source)
    return _LINE_ENDINGS.sub("\n", source)


class _RacerSourceLoader(importlib.abc.SourceLoader):
    """Serves already-sanitized script text to the import machinery."""

    def __init__(self, source: str, filename: str) -> None:
        self._source = source
        self._filename = filename

    def get_filename(self, fullname: str) -> str:
        return self._filename

    def get_data(self, path: str) -> bytes:
        return self._source.encode("utf-8")


def compile_script(source: str, *, agent_id: str, filename: str = "<racer>") -> RaceScript | None:
    """
    Load script text as a module and return its race() coroutine function.

    Returns None for an empty script (the agent runs nothing).
    """
    source = sanitize_script(source)
    if not source.strip():
        return None

    name = f"racer_{agent_id}"
    loader = _RacerSourceLoader(source, filename)
    spec = importlib.util.spec_from_loader(name, loader)
    if spec is None:
        raise ScriptLoadError(f"[{agent_id}] cannot build a module spec for {filename}")
    module = importlib.util.module_from_spec(spec)

    # Registered while executing so class definitions can resolve their module
    sys.modules[name] = module
    try:
        loader.exec_module(module)
    except SyntaxError as exc:
        raise ScriptLoadError(f"[{agent_id}] syntax error in {filename}: {exc}") from exc
    except Exception as exc:  # pylint: disable=broad-exception-caught
        raise ScriptLoadError(f"[{agent_id}] failed to load {filename}: {exc}") from exc
    finally:
        sys.modules.pop(name, None)

    entry = getattr(module, RACER_SCRIPT_ENTRYPOINT, None)
    if not inspect.iscoroutinefunction(entry):
        raise ScriptLoadError(
            f"[{agent_id}] {filename} must define "
            f"'async def {RACER_SCRIPT_ENTRYPOINT}(page, api)'"
        )
    return entry


def load_script(racer: RacerScript) -> RaceScript | None:
    """Read and compile a discovered racer file."""
    try:
        source = racer.path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ScriptLoadError(f"[{racer.agent_id}] cannot read {racer.path}: {exc}") from exc
    return compile_script(source, agent_id=racer.agent_id, filename=str(racer.path))
