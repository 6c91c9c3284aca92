"""
Shared run state for one race.

Rules:
- Created and owned by the coordinator.
- Shared by reference across every session of the race.
- Mutations are flag sets and appends only; sessions run as tasks on a
  single event loop, so no lock is required.
- Barriers consult `has_error` on every poll and treat it as an abort.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class FinishEntry:
    """One agent's finish, ranked by its own last measurement end time."""
    agent_id: str
    end_time: float


@dataclass
class SharedRunState:
    """Cross-agent bookkeeping for a single race."""

    has_error: bool = False
    error_message: str | None = None
    finish_order: list[FinishEntry] = field(default_factory=list)

    def fail(self, message: str) -> None:
        """
        Mark the race as failed.

        The first message is kept; later failures only re-assert the flag.
        """
        self.has_error = True
        if self.error_message is None:
            self.error_message = message

    def record_finish(self, agent_id: str, end_time: float) -> None:
        """
        Record (or replace) an agent's finish time.

        An agent that closes several recording segments keeps a single
        entry holding its latest end time.
        """
        self.finish_order = [e for e in self.finish_order if e.agent_id != agent_id]
        self.finish_order.append(FinishEntry(agent_id=agent_id, end_time=end_time))

    def ranking(self) -> list[str]:
        """Agent ids ordered by end time, earliest first."""
        return [e.agent_id for e in sorted(self.finish_order, key=lambda e: e.end_time)]

    def placement(self, agent_id: str) -> int | None:
        """1-based rank of an agent among those finished so far."""
        ranking = self.ranking()
        if agent_id not in ranking:
            return None
        return ranking.index(agent_id) + 1
