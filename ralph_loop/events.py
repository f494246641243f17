from __future__ import annotations

from dataclasses import dataclass

from ralph_loop.config.models import RunConfiguration
from ralph_loop.core import IterationOutcome, RunSummary


@dataclass
class LoopStarted:
    config: RunConfiguration


@dataclass
class IterationStarted:
    iteration: int
    max_iterations: int
    delegated: bool


@dataclass
class StageStarted:
    """An agent call for one stage of an iteration is about to run."""
    iteration: int
    stage: str   # "main", "simplify", "plan", "execute" or "merge"
    task_count: int = 0


@dataclass
class StageFinished:
    iteration: int
    stage: str
    status: str  # "ok", "failed" or "warning"
    detail: str | None = None


@dataclass
class TasksPlanned:
    iteration: int
    tasks: list[str]
    fallback: bool  # True when the plan could not be parsed


@dataclass
class IterationFinished:
    outcome: IterationOutcome


@dataclass
class StopConditionMet:
    iteration: int


@dataclass
class LoopComplete:
    summary: RunSummary


LoopEvent = (
    LoopStarted
    | IterationStarted
    | StageStarted
    | StageFinished
    | TasksPlanned
    | IterationFinished
    | StopConditionMet
    | LoopComplete
)
