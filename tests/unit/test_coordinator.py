# pylint: disable=missing-module-docstring,missing-function-docstring

import asyncio
import time
from pathlib import Path
from typing import Any

import pytest

import media.transcode as transcode_mod
import media.trim as trim_mod
import orchestrator.coordinator as coordinator_mod
from adapters.environment.base import ClickEvent, EnvironmentArtifacts
from adapters.environment.null_env import NullEnvironment, NullEnvironmentFactory
from media.trim import TrimOutcome
from orchestrator.cancellation import CancellationToken
from orchestrator.coordinator import AgentConfig, ExecutionCoordinator, remap_clicks
from orchestrator.enums.mode import ExecutionMode
from session.race_api import RaceApi
from session.race_session import Segment


def timed_script(seconds: float):
    async def race(page: Any, api: RaceApi) -> None:
        await api.race_start()
        await asyncio.sleep(seconds)
        api.race_end()

    return race


def failing_script(after: float):
    async def race(page: Any, api: RaceApi) -> None:
        await api.race_start()
        await asyncio.sleep(after)
        raise RuntimeError("boom")

    return race


TARGETS = [0.6, 0.8, 1.0, 1.2]


@pytest.mark.asyncio
async def test_parallel_race_measures_and_ranks() -> None:
    configs = [AgentConfig(f"agent{i + 1}", timed_script(t)) for i, t in enumerate(TARGETS)]
    coordinator = ExecutionCoordinator(NullEnvironmentFactory(time_scale=0))

    results = await coordinator.run(configs)

    assert [r.id for r in results] == ["agent1", "agent2", "agent3", "agent4"]
    for result, target in zip(results, TARGETS):
        assert result.error is None
        assert abs(result.measurements[0].duration - target) < 0.05
        assert len(result.segments) == 1

    by_duration = sorted(results, key=lambda r: r.measurements[0].duration)
    assert [r.id for r in by_duration] == ["agent1", "agent2", "agent3", "agent4"]
    assert coordinator.shared_state.ranking() == ["agent1", "agent2", "agent3", "agent4"]
    assert [r.place for r in results] == [1, 2, 3, 4]


@pytest.mark.asyncio
async def test_one_failing_agent_still_yields_all_results() -> None:
    configs = [
        AgentConfig("agent1", timed_script(0.2)),
        AgentConfig("agent2", timed_script(0.3)),
        AgentConfig("agent3", failing_script(0.1)),
        AgentConfig("agent4", timed_script(0.4)),
    ]
    coordinator = ExecutionCoordinator(
        NullEnvironmentFactory(time_scale=0), poll_interval_ms=10
    )

    results = await asyncio.wait_for(coordinator.run(configs), timeout=5)

    assert len(results) == 4
    failed = results[2]
    assert failed.error is not None and "boom" in failed.error
    assert failed.measurements == []
    assert failed.place is None
    assert coordinator.shared_state.has_error
    for result in (results[0], results[1], results[3]):
        assert result.error is None
        assert len(result.measurements) == 1


@pytest.mark.asyncio
async def test_agent_failing_before_start_line_releases_siblings() -> None:
    configs = [AgentConfig(f"agent{i}", timed_script(0.05)) for i in range(3)]

    class FlakyFactory(NullEnvironmentFactory):
        async def create(self, agent_id: str, **kwargs: Any) -> NullEnvironment:
            if agent_id == "agent1":
                raise RuntimeError("browser failed to launch")
            return await super().create(agent_id, **kwargs)

    coordinator = ExecutionCoordinator(FlakyFactory(time_scale=0), poll_interval_ms=10)

    results = await asyncio.wait_for(coordinator.run(configs), timeout=5)

    assert [r.error is not None for r in results] == [False, True, False]
    assert "browser failed to launch" in results[1].error


@pytest.mark.asyncio
async def test_sequential_mode_runs_in_order_without_places() -> None:
    order: list[str] = []

    def tracking_script(name: str):
        async def race(page: Any, api: RaceApi) -> None:
            order.append(name)
            await api.race_start()
            api.race_end()

        return race

    configs = [
        AgentConfig("a", tracking_script("a")),
        AgentConfig("b", failing_script(0)),
        AgentConfig("c", tracking_script("c")),
    ]
    coordinator = ExecutionCoordinator(
        NullEnvironmentFactory(time_scale=0), mode=ExecutionMode.SEQUENTIAL
    )

    results = await coordinator.run(configs)

    assert order == ["a", "c"]
    assert [r.id for r in results] == ["a", "b", "c"]
    assert [r.error is None for r in results] == [True, False, True]
    assert all(r.place is None for r in results)


@pytest.mark.asyncio
async def test_empty_script_and_no_agents() -> None:
    coordinator = ExecutionCoordinator(NullEnvironmentFactory(time_scale=0))

    assert await coordinator.run([]) == []

    results = await coordinator.run([AgentConfig("idle", None)])
    assert results[0].error is None
    assert results[0].measurements == []


@pytest.mark.asyncio
async def test_cancellation_returns_one_result_per_agent() -> None:
    token = CancellationToken()
    configs = [AgentConfig(f"agent{i}", timed_script(10)) for i in range(3)]
    coordinator = ExecutionCoordinator(
        NullEnvironmentFactory(time_scale=0), token=token, poll_interval_ms=10
    )
    asyncio.get_running_loop().call_later(0.1, token.cancel, "received SIGINT")

    results = await asyncio.wait_for(coordinator.run(configs), timeout=5)

    assert len(results) == 3
    assert all(r.error == "cancelled: received SIGINT" for r in results)
    # Partial session data is kept
    assert all(len(r.segments) == 1 for r in results)
    assert coordinator.shared_state.has_error


@pytest.mark.asyncio
async def test_recordings_are_trimmed_when_enabled(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    class RecordingEnvironment(NullEnvironment):
        @property
        def recording_dir(self) -> Path:
            return tmp_path / self.agent_id

    class RecordingFactory(NullEnvironmentFactory):
        async def create(self, agent_id: str, **kwargs: Any) -> NullEnvironment:
            return RecordingEnvironment(agent_id, time_scale=0)

    calls: list[tuple[Path, int, str]] = []

    def fake_trim(recording_dir: Path, marker_segments: list, agent_id: str) -> TrimOutcome:
        calls.append((recording_dir, len(marker_segments), agent_id))
        return TrimOutcome(
            video_path=recording_dir / "v.webm",
            full_video_path=recording_dir / "v_full.webm",
            segments=list(marker_segments),
            from_cues=False,
        )

    monkeypatch.setattr(coordinator_mod, "trim_recording", fake_trim)
    coordinator = ExecutionCoordinator(RecordingFactory(), trim_recordings=True)

    results = await coordinator.run([AgentConfig("a", timed_script(0.01))])

    assert calls == [(tmp_path / "a", 1, "a")]
    assert results[0].video_path == tmp_path / "a" / "v.webm"
    assert results[0].to_dict()["full_video_path"] == str(tmp_path / "a" / "v_full.webm")


@pytest.mark.asyncio
async def test_no_script_starts_before_every_environment_is_ready() -> None:
    loop = asyncio.get_running_loop()
    started: dict[str, float] = {}

    def stamping_script(name: str):
        async def race(page: Any, api: RaceApi) -> None:
            started[name] = loop.time()
            await api.race_start()
            api.race_end()

        return race

    class SlowLaunchFactory(NullEnvironmentFactory):
        async def create(self, agent_id: str, **kwargs: Any) -> NullEnvironment:
            if agent_id == "slow":
                await asyncio.sleep(0.5)
            return await super().create(agent_id, **kwargs)

    configs = [
        AgentConfig("fast", stamping_script("fast")),
        AgentConfig("slow", stamping_script("slow")),
    ]
    coordinator = ExecutionCoordinator(SlowLaunchFactory(time_scale=0), poll_interval_ms=10)

    results = await asyncio.wait_for(coordinator.run(configs), timeout=5)

    assert all(r.error is None for r in results)
    assert abs(started["fast"] - started["slow"]) < 0.05


@pytest.mark.asyncio
async def test_failed_full_copy_does_not_fail_agents(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    class RecordingEnvironment(NullEnvironment):
        @property
        def recording_dir(self) -> Path:
            return tmp_path / self.agent_id

    class RecordingFactory(NullEnvironmentFactory):
        async def create(self, agent_id: str, **kwargs: Any) -> NullEnvironment:
            (tmp_path / agent_id).mkdir(exist_ok=True)
            (tmp_path / agent_id / "rec.webm").write_bytes(b"raw")
            return RecordingEnvironment(agent_id, time_scale=0)

    def no_space(src: Path, dst: Path) -> None:
        raise OSError("No space left on device")

    monkeypatch.setattr(trim_mod, "probe_cue_region", lambda video, agent_id=None: [])
    monkeypatch.setattr(transcode_mod.shutil, "copyfile", no_space)
    coordinator = ExecutionCoordinator(RecordingFactory(), trim_recordings=True)

    results = await coordinator.run(
        [AgentConfig("a", timed_script(0.01)), AgentConfig("b", timed_script(0.01))]
    )

    assert [r.error for r in results] == [None, None]
    assert not coordinator.shared_state.has_error
    assert [len(r.measurements) for r in results] == [1, 1]
    assert all(r.full_video_path is None for r in results)
    assert results[0].video_path == tmp_path / "a" / "rec.webm"


class ClickingEnvironment(NullEnvironment):
    """Page stand-in that records clicks and profile window transitions."""

    def __init__(self, agent_id: str) -> None:
        super().__init__(agent_id, time_scale=0)
        self.clicks: list[ClickEvent] = []
        self.windows: list[str] = []

    @property
    def page(self) -> Any:
        return self

    def click(self, element: str) -> None:
        self.clicks.append(ClickEvent(time.monotonic() - self.origin, 10, 20, element))

    async def start_profile_window(self) -> None:
        self.windows.append("start")

    def stop_profile_window(self) -> None:
        self.windows.append("stop")

    async def collect_artifacts(self) -> EnvironmentArtifacts:
        return EnvironmentArtifacts(
            click_events=list(self.clicks),
            profile_metrics={"total": {"network_request_count": 3}},
            trace_path=Path("x.trace.json"),
        )


@pytest.mark.asyncio
async def test_artifacts_collected_and_clicks_remapped() -> None:
    environments: list[ClickingEnvironment] = []

    class ClickingFactory(NullEnvironmentFactory):
        async def create(self, agent_id: str, **kwargs: Any) -> NullEnvironment:
            environments.append(ClickingEnvironment(agent_id))
            return environments[-1]

    async def race(page: ClickingEnvironment, api: RaceApi) -> None:
        page.click("body")
        await api.race_start("a")
        await api.race_start("b")
        page.click("button#go")
        api.race_end("a")
        api.race_end("b")

    coordinator = ExecutionCoordinator(ClickingFactory())

    (result,) = await coordinator.run([AgentConfig("x", race)])

    env = environments[0]
    # Opens on the first race_start, closes once no measurement is active
    assert env.windows == ["start", "stop"]

    segment = result.segments[0]
    inside = env.clicks[1]
    assert [c.element for c in result.click_events] == ["button#go"]
    assert result.click_events[0].timestamp == pytest.approx(inside.timestamp - segment.start)

    data = result.to_dict()
    assert data["click_events"] == [result.click_events[0].to_dict()]
    assert data["profile_metrics"] == {"total": {"network_request_count": 3}}
    assert data["trace_path"] == "x.trace.json"


def test_remap_clicks() -> None:
    clicks = [ClickEvent(0.5, 0, 0, "a"), ClickEvent(1.5, 0, 0, "b"), ClickEvent(5.5, 0, 0, "c")]
    segments = [Segment(1.0, 2.0), Segment(5.0, 6.0)]

    remapped = remap_clicks(clicks, segments)

    assert [(c.element, c.timestamp) for c in remapped] == [("b", 0.5), ("c", 1.5)]
    assert remap_clicks(clicks, []) == clicks
