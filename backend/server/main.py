"""
racebench command line entry point.

Responsibilities:
- Parse arguments and merge them over the race's settings.json
- Discover and load racer scripts
- Build the environment factory and run the coordinator
- Translate SIGINT / SIGTERM into race cancellation
- Print per-agent results and pick the exit status

Exit status: 0 when every agent succeeded, 1 when any agent failed,
2 on usage errors (bad arguments, no racers, unloadable scripts).
"""

from __future__ import annotations

import argparse
import asyncio
import signal
from pathlib import Path
from typing import Sequence

from dotenv import load_dotenv

from adapters.environment.base import EnvironmentFactory
from adapters.environment.null_env import NullEnvironmentFactory
from config import AppConfig, RaceSettings
from constants import NETWORK_PRESETS
from observability import logger
from observability.logger import log_event, now_ms
from orchestrator.cancellation import CancellationToken
from orchestrator.coordinator import AgentConfig, AgentResult, ExecutionCoordinator
from orchestrator.enums.mode import ExecutionMode
from session.scripts import ScriptLoadError, discover_racers, load_script


EXIT_OK = 0
EXIT_AGENT_FAILED = 1
EXIT_USAGE = 2


# ------------------------------------------------------------------
# Arguments
# ------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="racebench",
        description="Race scripted agents side by side and trim their recordings.",
    )
    parser.add_argument("race_dir", type=Path, help="directory holding the racer scripts")
    parser.add_argument(
        "--sequential", action="store_true", default=None,
        help="run agents one after another instead of in parallel",
    )
    parser.add_argument("--headless", action="store_true", default=None)
    parser.add_argument(
        "--no-overlay", dest="no_overlay", action="store_true", default=None,
        help="hide recording indicator and finish overlays (cues still render)",
    )
    parser.add_argument(
        "--ffmpeg", action="store_true", default=None,
        help="trim recordings to the measured window",
    )
    parser.add_argument(
        "--profile", action="store_true", default=None,
        help="collect CDP performance metrics and save a Chrome trace",
    )
    parser.add_argument("--network", choices=sorted(NETWORK_PRESETS), default=None)
    parser.add_argument(
        "--cpu", dest="cpu_throttle", type=float, default=None,
        help="CPU throttling rate (1 = none)",
    )
    parser.add_argument("--slowmo", type=float, default=None)
    parser.add_argument("--driver", choices=("playwright", "none"), default=None)
    return parser


def resolve_settings(args: argparse.Namespace) -> RaceSettings:
    """settings.json first, then command-line flags on top."""
    parallel = False if args.sequential else None
    return RaceSettings.load(args.race_dir).with_overrides(
        parallel=parallel,
        headless=args.headless,
        no_overlay=args.no_overlay,
        ffmpeg=args.ffmpeg,
        profile=args.profile,
        network=args.network,
        cpu_throttle=args.cpu_throttle,
        slowmo=args.slowmo,
        driver=args.driver,
    )


# ------------------------------------------------------------------
# Race
# ------------------------------------------------------------------

async def run_race(
    configs: list[AgentConfig],
    settings: RaceSettings,
    app_config: AppConfig,
    *,
    race_name: str,
) -> list[AgentResult]:
    token = CancellationToken()
    loop = asyncio.get_running_loop()
    installed: list[signal.Signals] = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, token.cancel, f"received {sig.name}")
            installed.append(sig)
        except (NotImplementedError, RuntimeError):
            # Signal handlers are unavailable off the main thread / on Windows
            pass

    mode = ExecutionMode.from_parallel_flag(settings.parallel)

    async def race(factory: EnvironmentFactory) -> list[AgentResult]:
        coordinator = ExecutionCoordinator(
            factory,
            mode=mode,
            trim_recordings=settings.ffmpeg,
            poll_interval_ms=app_config.barrier_poll_interval_ms,
            token=token,
        )
        return await coordinator.run(configs)

    try:
        if settings.driver == "none":
            return await race(NullEnvironmentFactory())

        # Imported lazily so driver=none runs without a browser install
        from adapters.environment.playwright_env import (  # pylint: disable=import-outside-toplevel
            PlaywrightEnvironmentFactory,
        )

        recordings_dir = app_config.recordings_dir / race_name
        async with PlaywrightEnvironmentFactory(settings, recordings_dir) as factory:
            return await race(factory)
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)


def print_summary(results: Sequence[AgentResult]) -> None:
    """Plain-text result table, used when JSON logs are disabled."""
    for result in results:
        if result.error is not None:
            print(f"{result.id}: FAILED ({result.error})")
            continue
        timings = ", ".join(f"{m.name}={m.duration:.3f}s" for m in result.measurements)
        place = f" #{result.place}" if result.place is not None else ""
        print(f"{result.id}{place}: {timings or 'no measurements'}")


# ------------------------------------------------------------------
# Entry point
# ------------------------------------------------------------------

def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    load_dotenv()
    app_config = AppConfig.load_from_env()
    if not app_config.enable_json_logs:
        logger.set_output(logger.discard_line)

    race_dir: Path = args.race_dir
    if not race_dir.is_dir():
        parser.error(f"race directory not found: {race_dir}")

    try:
        settings = resolve_settings(args)
    except ValueError as exc:
        parser.error(str(exc))

    try:
        configs = [
            AgentConfig(id=racer.agent_id, script=load_script(racer))
            for racer in discover_racers(race_dir)
        ]
    except ScriptLoadError as exc:
        log_event({"ts_ms": now_ms(), "event_type": "SCRIPT_LOAD_FAILED", "error": str(exc)})
        print(f"racebench: {exc}")
        return EXIT_USAGE

    if not configs:
        print(f"racebench: no racer scripts found in {race_dir}")
        return EXIT_USAGE

    log_event({
        "ts_ms": now_ms(),
        "event_type": "RUN_CONFIG",
        "env": app_config.env,
        "race_dir": str(race_dir),
        "settings": vars(settings),
    })

    results = asyncio.run(
        run_race(configs, settings, app_config, race_name=race_dir.resolve().name)
    )

    log_event({
        "ts_ms": now_ms(),
        "event_type": "RACE_RESULTS",
        "results": [r.to_dict() for r in results],
    })
    if not app_config.enable_json_logs:
        print_summary(results)

    return EXIT_AGENT_FAILED if any(r.error is not None for r in results) else EXIT_OK


if __name__ == "__main__":
    raise SystemExit(main())
