"""Result types for agent calls, iterations and whole runs."""

from dataclasses import dataclass, field


@dataclass(frozen=True)
class AgentResult:
	"""Captured output of one agent invocation."""
	output: str
	error: str | None = None

	@property
	def ok(self) -> bool:
		return not self.error


@dataclass(frozen=True)
class IterationOutcome:
	"""Result from a single iteration of the loop."""
	iteration: int
	success: bool
	output: str
	should_stop: bool
	error: str | None = None
	warnings: tuple[str, ...] = ()
	delegated: bool = False


@dataclass(frozen=True)
class DelegatedTask:
	index: int
	description: str


@dataclass(frozen=True)
class DelegationBatchResult:
	"""Per-task results of a delegated batch, in planned task order."""
	tasks: tuple[DelegatedTask, ...]
	results: tuple[AgentResult, ...] = field(default_factory=tuple)

	@property
	def outputs(self) -> list[str]:
		return [r.output for r in self.results]

	@property
	def errors(self) -> list[str]:
		return [r.error for r in self.results if r.error]


@dataclass(frozen=True)
class RunSummary:
	total: int
	succeeded: int
	failed: int
	stopped_at: int | None

	@property
	def state(self) -> str:
		return "stopped" if self.stopped_at is not None else "exhausted"

	@classmethod
	def from_history(cls, history: list[IterationOutcome]) -> "RunSummary":
		succeeded = sum(1 for outcome in history if outcome.success)
		stopped_at = next((o.iteration for o in history if o.should_stop), None)
		return cls(
			total=len(history),
			succeeded=succeeded,
			failed=len(history) - succeeded,
			stopped_at=stopped_at,
		)
