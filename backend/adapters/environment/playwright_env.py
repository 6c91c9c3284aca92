"""
Playwright Chromium environment.

Role in the system:
- One browser + recording context + page per agent
- Renders cue squares, the REC indicator, finish time and placement
  as fixed-position DOM overlays
- Applies network / CPU throttling through a CDP session
- Places windows side by side (or in a grid) for parallel races
- Records page clicks; with `profile`, CDP metrics and a Chrome trace

Architectural constraints:
- No timing decisions: the race harness decides when cues appear
- No knowledge of barriers or other agents
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from playwright.async_api import Browser, BrowserContext, Page, Playwright, async_playwright
from playwright.async_api import Error as PlaywrightError

from adapters.environment.base import (
    AgentEnvironment,
    ClickEvent,
    EnvironmentArtifacts,
    EnvironmentFactory,
)
from adapters.environment.profiling import ProfileCollector
from config import RaceSettings
from constants import (
    CUE_DURATION_MS,
    CUE_SIZE_PX,
    MEDALS,
    NETWORK_PRESETS,
    ORDINALS,
    PAGE_DEFAULT_TIMEOUT_MS,
    SCREEN_HEIGHT_PX,
    SCREEN_WIDTH_PX,
    SEQUENTIAL_VIEWPORT,
    SLOWMO_MS_PER_STEP,
    TRACE_CATEGORIES,
    TRACE_FILE_SUFFIX,
    WINDOW_HEIGHT_PX,
)
from media.transcode import cleanup_old_recordings
from observability.logger import log_agent_event


# ---------------------------------------------------------------------
# Overlay scripts (evaluated in the page)
# ---------------------------------------------------------------------

_SHOW_CUE_JS = """({ color, size }) => {
  const el = document.createElement('div');
  el.id = '__race_cue';
  el.style.cssText = 'position:fixed;top:0;left:0;width:' + size + 'px;height:' + size
    + 'px;z-index:2147483647;background:' + color;
  document.documentElement.appendChild(el);
  el.offsetHeight;
}"""

_REMOVE_CUE_JS = """() => {
  const el = document.getElementById('__race_cue');
  if (el) el.remove();
}"""

_SHOW_INDICATOR_JS = """() => {
  const el = document.createElement('div');
  el.id = '__race_rec_indicator';
  el.textContent = '📹 REC';
  el.style.cssText = 'position:fixed;top:12px;right:12px;z-index:2147483647;'
    + 'background:rgba(220,38,38,0.85);color:#fff;padding:4px 10px;border-radius:6px;'
    + 'font:bold 14px/1 system-ui,sans-serif;pointer-events:none';
  document.body.appendChild(el);
}"""

_HIDE_INDICATOR_JS = """() => {
  const el = document.getElementById('__race_rec_indicator');
  if (el) el.remove();
}"""

_SHOW_FINISH_TIME_JS = """(t) => {
  const el = document.getElementById('__race_rec_indicator');
  if (!el) return;
  el.textContent = '🏁 ' + t.toFixed(1) + 's';
  el.style.background = 'rgba(22,163,74,0.85)';
}"""

_SHOW_BANNER_JS = """({ text, size }) => {
  const el = document.createElement('div');
  el.id = '__race_medal';
  el.textContent = text;
  el.style.cssText = 'position:fixed;top:50%;left:50%;transform:translate(-50%,-50%);'
    + 'z-index:2147483647;font:bold ' + size + 'px/1 system-ui,sans-serif;pointer-events:none;'
    + 'background:rgba(0,0,0,0.6);color:#fff;padding:24px 48px;border-radius:16px';
  document.body.appendChild(el);
}"""

# Injected into every document; __ORIGIN_MS__ is the wall-clock recording start
_CLICK_TRACKER_JS = """(() => {
  if (window.__raceClickTracker) return;
  window.__raceClickTracker = true;
  window.__raceClickEvents = [];
  const origin = __ORIGIN_MS__;
  const inject = () => {
    document.addEventListener('mousedown', (e) => {
      const target = e.target;
      let desc = target.tagName.toLowerCase();
      if (target.id) desc += '#' + target.id;
      if (target.className && typeof target.className === 'string') {
        desc += '.' + target.className.split(' ').filter(Boolean).slice(0, 2).join('.');
      }
      const text = (target.textContent || '').trim().slice(0, 30);
      if (text) desc += ' "' + text + (text.length >= 30 ? '...' : '') + '"';
      window.__raceClickEvents.push({
        timestamp: (Date.now() - origin) / 1000, x: e.clientX, y: e.clientY, element: desc,
      });
    }, true);
  };
  document.readyState === 'loading'
    ? document.addEventListener('DOMContentLoaded', inject)
    : inject();
})();"""

_READ_CLICKS_JS = "() => window.__raceClickEvents || []"


# ---------------------------------------------------------------------
# Window layout
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class WindowLayout:
    x: int
    y: int
    width: int
    height: int


def calculate_window_layout(index: int, total: int) -> WindowLayout:
    """
    Window position for browser `index` of `total`.

    2: side by side, 3: three across, 4: 2x2 grid,
    5: three on top and two centered below.
    """
    if total <= 2:
        width = SCREEN_WIDTH_PX // 2
        return WindowLayout(index * width, 0, width, WINDOW_HEIGHT_PX)
    if total == 3:
        width = SCREEN_WIDTH_PX // 3
        return WindowLayout(index * width, 0, width, WINDOW_HEIGHT_PX)
    if total == 4:
        width = SCREEN_WIDTH_PX // 2
        height = SCREEN_HEIGHT_PX // 2
        row, col = divmod(index, 2)
        return WindowLayout(col * width, row * height, width, height)

    width = SCREEN_WIDTH_PX // 3
    height = SCREEN_HEIGHT_PX // 2
    if index < 3:
        return WindowLayout(index * width, 0, width, height)
    return WindowLayout(width // 2 + (index - 3) * width, height, width, height)


# ---------------------------------------------------------------------
# Environment
# ---------------------------------------------------------------------

class PlaywrightEnvironment(AgentEnvironment):
    """Live browser environment for one agent."""

    def __init__(
        self,
        *,
        agent_id: str,
        browser: Browser,
        context: BrowserContext,
        page: Page,
        recording_dir: Path,
        origin: float,
        no_overlay: bool,
        profiler: ProfileCollector | None = None,
    ) -> None:
        self.agent_id = agent_id
        self.origin = origin
        self._browser = browser
        self._context = context
        self._page = page
        self._recording_dir = recording_dir
        self._no_overlay = no_overlay
        self._profiler = profiler
        self._closed = False

    @property
    def page(self) -> Page:
        return self._page

    @property
    def recording_dir(self) -> Path:
        return self._recording_dir

    async def flash_cue(self, color: str) -> None:
        await self._page.evaluate(_SHOW_CUE_JS, {"color": color, "size": CUE_SIZE_PX})
        await self._page.wait_for_timeout(CUE_DURATION_MS)
        await self._page.evaluate(_REMOVE_CUE_JS)

    async def show_recording_indicator(self) -> None:
        if not self._no_overlay:
            await self._page.evaluate(_SHOW_INDICATOR_JS)

    async def hide_recording_indicator(self) -> None:
        if not self._no_overlay:
            await self._page.evaluate(_HIDE_INDICATOR_JS)

    async def show_finish_time(self, duration_s: float) -> None:
        if not self._no_overlay:
            await self._page.evaluate(_SHOW_FINISH_TIME_JS, duration_s)

    async def show_placement(self, place: int | None) -> None:
        if self._no_overlay:
            return
        if place is None:
            # Sequential runs never share a start line, so no medal
            await self._page.evaluate(_SHOW_BANNER_JS, {"text": "🏁", "size": 80})
            return
        medal = MEDALS[place - 1] if place <= len(MEDALS) else str(place)
        ordinal = ORDINALS[place - 1] if place <= len(ORDINALS) else f"{place}th"
        await self._page.evaluate(
            _SHOW_BANNER_JS, {"text": f"{medal} {ordinal}", "size": 64}
        )

    async def start_profile_window(self) -> None:
        if self._profiler is not None:
            await self._profiler.start_measurement()

    def stop_profile_window(self) -> None:
        if self._profiler is not None:
            self._profiler.stop_measurement()

    async def collect_artifacts(self) -> EnvironmentArtifacts:
        artifacts = EnvironmentArtifacts(click_events=await self._read_clicks())
        if self._profiler is not None:
            artifacts.profile_metrics = await self._profiler.collect(self._page)
            await self._profiler.detach()
            artifacts.trace_path = await self._save_trace()
        return artifacts

    async def _read_clicks(self) -> list[ClickEvent]:
        try:
            raw = await self._page.evaluate(_READ_CLICKS_JS)
        except PlaywrightError as exc:
            log_agent_event(self.agent_id, "CLICK_EVENTS_UNAVAILABLE", error=str(exc))
            return []
        return [
            ClickEvent(
                timestamp=float(e["timestamp"]),
                x=float(e["x"]),
                y=float(e["y"]),
                element=str(e.get("element", "")),
            )
            for e in raw
        ]

    async def _save_trace(self) -> Path | None:
        path = self._recording_dir / f"{self.agent_id}{TRACE_FILE_SUFFIX}"
        try:
            path.write_bytes(await self._browser.stop_tracing())
        except (PlaywrightError, OSError) as exc:
            log_agent_event(self.agent_id, "TRACE_SAVE_FAILED", error=str(exc))
            return None
        log_agent_event(self.agent_id, "TRACE_SAVED", path=str(path))
        return path

    async def pause(self, seconds: float) -> None:
        await self._page.wait_for_timeout(seconds * 1000)

    async def close(self) -> None:
        """Close context (flushes the video file) then browser."""
        if self._closed:
            return
        self._closed = True
        for closer in (self._context.close, self._browser.close):
            try:
                await closer()
            except PlaywrightError as exc:
                log_agent_event(self.agent_id, "ENVIRONMENT_CLOSE_FAILED", error=str(exc))
        log_agent_event(self.agent_id, "CONTEXT_CLOSED")


class PlaywrightEnvironmentFactory(EnvironmentFactory):
    """
    Owns the Playwright driver for the duration of a race.

    Usage:
        async with PlaywrightEnvironmentFactory(settings, recordings_dir) as factory:
            results = await coordinator.run(configs)
    """

    def __init__(self, settings: RaceSettings, recordings_dir: Path) -> None:
        self._settings = settings
        self._recordings_dir = Path(recordings_dir)
        self._playwright: Playwright | None = None

    async def __aenter__(self) -> PlaywrightEnvironmentFactory:
        self._playwright = await async_playwright().start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None

    async def create(
        self,
        agent_id: str,
        *,
        index: int,
        total: int,
        parallel: bool,
    ) -> PlaywrightEnvironment:
        if self._playwright is None:
            raise RuntimeError("PlaywrightEnvironmentFactory used outside 'async with'")

        settings = self._settings
        output_dir = self._recordings_dir / agent_id
        output_dir.mkdir(parents=True, exist_ok=True)
        cleanup_old_recordings(output_dir)

        layout = calculate_window_layout(index, total)
        args = (
            [
                f"--window-position={layout.x},{layout.y}",
                f"--window-size={layout.width},{layout.height}",
            ]
            if parallel
            else []
        )
        launch_kwargs: dict[str, Any] = {"headless": settings.headless, "args": args}
        if settings.slowmo > 0:
            launch_kwargs["slow_mo"] = settings.slowmo * SLOWMO_MS_PER_STEP

        browser = await self._playwright.chromium.launch(**launch_kwargs)
        try:
            if parallel:
                viewport = {"width": layout.width - 20, "height": layout.height - 100}
            else:
                viewport = {"width": SEQUENTIAL_VIEWPORT[0], "height": SEQUENTIAL_VIEWPORT[1]}
            scale = 2 if settings.slowmo > 0 else 1

            context = await browser.new_context(
                viewport=viewport,
                record_video_dir=str(output_dir),
                record_video_size={
                    "width": viewport["width"] * scale,
                    "height": viewport["height"] * scale,
                },
            )
            origin = time.monotonic()
            origin_wall_ms = int(time.time() * 1000)
            await context.add_init_script(
                script=_CLICK_TRACKER_JS.replace("__ORIGIN_MS__", str(origin_wall_ms))
            )

            page = await context.new_page()
            page.set_default_timeout(PAGE_DEFAULT_TIMEOUT_MS)
            page.set_default_navigation_timeout(PAGE_DEFAULT_TIMEOUT_MS)
            await self._apply_throttling(context, page, agent_id)

            profiler = None
            if settings.profile:
                profiler = await ProfileCollector.attach(context, page, agent_id)
                await browser.start_tracing(
                    page=page, screenshots=True, categories=list(TRACE_CATEGORIES)
                )
        except BaseException:
            await browser.close()
            raise

        return PlaywrightEnvironment(
            agent_id=agent_id,
            browser=browser,
            context=context,
            page=page,
            recording_dir=output_dir,
            origin=origin,
            no_overlay=settings.no_overlay,
            profiler=profiler,
        )

    async def _apply_throttling(
        self, context: BrowserContext, page: Page, agent_id: str
    ) -> None:
        preset = NETWORK_PRESETS[self._settings.network]
        cpu = self._settings.cpu_throttle
        if preset is None and cpu <= 1:
            return

        try:
            client = await context.new_cdp_session(page)
            if preset is not None:
                await client.send("Network.enable")
                await client.send("Network.emulateNetworkConditions", {
                    "offline": False,
                    "downloadThroughput": preset.download_throughput,
                    "uploadThroughput": preset.upload_throughput,
                    "latency": preset.latency_ms,
                })
            if cpu > 1:
                await client.send("Emulation.setCPUThrottlingRate", {"rate": cpu})
        except PlaywrightError as exc:
            # Throttling is best effort; the race still runs unthrottled
            log_agent_event(agent_id, "THROTTLING_FAILED", error=str(exc))
