"""
CDP performance metrics for one page.

Collects two views:
- total: network transfer and CDP Performance metrics for the whole page
- measured: the same, limited to the measurement window (first
  race_start until no measurement is active)

Failures never interrupt a race: they are logged and the affected
values stay None.
"""

from __future__ import annotations

from typing import Any

from playwright.async_api import Error as PlaywrightError

from constants import CDP_DURATION_METRICS
from observability.logger import log_agent_event


_NAVIGATION_TIMING_JS = """() => {
  const perf = window.performance;
  if (!perf || !perf.timing) return null;
  const t = perf.timing;
  return {
    dom_content_loaded: t.domContentLoadedEventEnd - t.navigationStart,
    dom_complete: t.domComplete - t.navigationStart,
  };
}"""


class ProfileCollector:
    """
    Wraps a CDP session.

    `client` may be None when the session could not be opened; every
    method then degrades to an empty result.
    """

    def __init__(self, client: Any, agent_id: str) -> None:
        self._client = client
        self._agent_id = agent_id

        self.transfer_size = 0
        self.request_count = 0
        self.measured_transfer_size = 0
        self.measured_request_count = 0
        self.measuring = False
        self._start_snapshot: dict[str, float] | None = None

        if client is not None:
            client.on("Network.loadingFinished", self._on_loading_finished)

    @classmethod
    async def attach(cls, context: Any, page: Any, agent_id: str) -> ProfileCollector:
        """Open a CDP session on `page` and enable the Network and Performance domains."""
        try:
            client = await context.new_cdp_session(page)
            await client.send("Network.enable")
            await client.send("Performance.enable")
        except PlaywrightError as exc:
            log_agent_event(agent_id, "PROFILING_SETUP_FAILED", error=str(exc))
            client = None
        return cls(client, agent_id)

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def _on_loading_finished(self, params: dict[str, Any]) -> None:
        size = params.get("encodedDataLength") or 0
        self.transfer_size += size
        self.request_count += 1
        if self.measuring:
            self.measured_transfer_size += size
            self.measured_request_count += 1

    # ------------------------------------------------------------------
    # Measurement window
    # ------------------------------------------------------------------

    async def start_measurement(self) -> None:
        self._start_snapshot = await self._snapshot()
        self.measured_transfer_size = 0
        self.measured_request_count = 0
        self.measuring = True

    def stop_measurement(self) -> None:
        self.measuring = False

    # ------------------------------------------------------------------
    # Results
    # ------------------------------------------------------------------

    async def _snapshot(self) -> dict[str, float] | None:
        if self._client is None:
            return None
        try:
            response = await self._client.send("Performance.getMetrics")
        except PlaywrightError as exc:
            log_agent_event(self._agent_id, "PROFILING_METRICS_FAILED", error=str(exc))
            return None

        values = {m["name"]: m["value"] for m in response.get("metrics", [])}
        snapshot = {
            key: values.get(name, 0.0) * 1000.0
            for name, key in CDP_DURATION_METRICS.items()
        }
        snapshot["js_heap_used_size"] = values.get("JSHeapUsedSize", 0.0)
        return snapshot

    async def collect(self, page: Any) -> dict[str, Any]:
        """
        Final metrics, durations in milliseconds.

        Measured durations are end-minus-start deltas, clamped at zero.
        """
        total: dict[str, Any] = {
            "network_transfer_size": self.transfer_size,
            "network_request_count": self.request_count,
            "dom_content_loaded": None,
            "dom_complete": None,
            "js_heap_used_size": None,
            **{key: None for key in CDP_DURATION_METRICS.values()},
        }
        measured: dict[str, Any] = {
            "network_transfer_size": self.measured_transfer_size,
            "network_request_count": self.measured_request_count,
            **{key: None for key in CDP_DURATION_METRICS.values()},
        }

        try:
            timing = await page.evaluate(_NAVIGATION_TIMING_JS)
        except PlaywrightError as exc:
            log_agent_event(self._agent_id, "PROFILING_TIMING_FAILED", error=str(exc))
            timing = None
        if timing:
            for key in ("dom_content_loaded", "dom_complete"):
                if timing.get(key, 0) > 0:
                    total[key] = timing[key]

        end = await self._snapshot()
        if end is not None:
            total.update(end)
            if self._start_snapshot is not None:
                for key in CDP_DURATION_METRICS.values():
                    delta = end[key] - self._start_snapshot[key]
                    if delta < 0:
                        log_agent_event(
                            self._agent_id,
                            "PROFILING_NEGATIVE_DELTA",
                            metric=key,
                            start=self._start_snapshot[key],
                            end=end[key],
                        )
                    measured[key] = max(0.0, delta)

        return {"total": total, "measured": measured}

    async def detach(self) -> None:
        if self._client is None:
            return
        try:
            await self._client.detach()
        except PlaywrightError as exc:
            log_agent_event(self._agent_id, "PROFILING_DETACH_FAILED", error=str(exc))
        self._client = None
