"""
Execution mode enumeration.

Mode answers: "Do agents race side by side, or one after another?"
"""

from __future__ import annotations

from enum import Enum


class ExecutionMode(str, Enum):
    """
    How the coordinator schedules agents.

    PARALLEL:
        All agents run concurrently and rendezvous on the ready,
        recording-start and stop barriers.

    SEQUENTIAL:
        Agents run one after another. No barrier is constructed and no
        cross-agent wait ever occurs.
    """

    PARALLEL = "parallel"
    SEQUENTIAL = "sequential"

    @classmethod
    def from_parallel_flag(cls, parallel: bool) -> ExecutionMode:
        return cls.PARALLEL if parallel else cls.SEQUENTIAL
