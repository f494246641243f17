"""Orchestration layer for the iteration loop.

``LoopOrchestrator.events()`` runs the loop and yields lifecycle events; it
never prints. ``LoopOrchestrator.run()`` drains those events (handing each to
an optional callback) and returns the iteration history with its summary.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Iterator

from ralph_loop.agent import SIMPLIFIER_PROMPT, AgentClient
from ralph_loop.config.models import RunConfiguration
from ralph_loop.core import AgentResult, IterationOutcome, RunSummary
from ralph_loop.delegation import DelegationExecutor, ResultMerger, invoke_safely
from ralph_loop.events import (
	IterationFinished,
	IterationStarted,
	LoopComplete,
	LoopEvent,
	LoopStarted,
	StageFinished,
	StageStarted,
	StopConditionMet,
	TasksPlanned,
)
from ralph_loop.planning import build_planning_prompt, parse_task_list

logger = logging.getLogger(__name__)


def matches_stop_condition(output: str, stop_condition: str | None) -> bool:
	"""Case-insensitive substring check; no stop condition never matches."""
	if not stop_condition:
		return False
	return stop_condition.casefold() in output.casefold()


def combine_delegated_output(plan_output: str, outputs: list[str], merge_output: str) -> str:
	execution = "\n\n".join(outputs)
	return f"Planning:\n{plan_output}\n\nExecution:\n{execution}\n\nMerge:\n{merge_output}"


@dataclass(frozen=True)
class LoopResult:
	history: list[IterationOutcome]
	summary: RunSummary


class LoopOrchestrator:
	"""Drives the agent through up to ``max_iterations`` iterations."""

	def __init__(
		self,
		config: RunConfiguration,
		client: AgentClient,
		max_parallel: int = 4,
	):
		"""Initialize orchestrator.

		Args:
			config: Immutable run configuration
			client: Agent client used for every invocation
			max_parallel: Upper bound on concurrently running delegated tasks
		"""
		self.config = config
		self.client = client
		self.executor = DelegationExecutor(client, max_parallel=max_parallel)
		self.merger = ResultMerger(client, model=config.model)
		self.history: list[IterationOutcome] = []

	def run(self, on_event: Callable[[LoopEvent], None] | None = None) -> LoopResult:
		"""Run the loop to completion and return its history and summary."""
		for event in self.events():
			if on_event is not None:
				on_event(event)
		return LoopResult(history=list(self.history), summary=RunSummary.from_history(self.history))

	def events(self) -> Iterator[LoopEvent]:
		"""Run the loop, yielding events. No print, no persistence."""
		self.history = []
		yield LoopStarted(self.config)

		max_iterations = self.config.max_iterations
		for i in range(1, max_iterations + 1):
			delegated = self.config.delegate and i == 1
			yield IterationStarted(iteration=i, max_iterations=max_iterations, delegated=delegated)
			logger.debug("Starting iteration %d/%d", i, max_iterations)

			if delegated:
				outcome = yield from self._run_delegated_iteration(i)
			else:
				outcome = yield from self._run_iteration(i)

			self.history.append(outcome)
			yield IterationFinished(outcome)

			if outcome.should_stop:
				logger.info("Stopping after iteration %d", i)
				break

		yield LoopComplete(RunSummary.from_history(self.history))

	def _invoke(self, instruction: str, model: str | None = None) -> AgentResult:
		return invoke_safely(self.client, instruction, model)

	def _run_simplifier(self, iteration: int) -> Iterator[LoopEvent]:
		"""Advisory review pass. Returns a warning string or None."""
		yield StageStarted(iteration, "simplify")
		result = self._invoke(SIMPLIFIER_PROMPT, self.config.model)
		if result.error:
			logger.warning("Simplifier failed in iteration %d: %s", iteration, result.error)
			yield StageFinished(iteration, "simplify", "warning", result.error)
			return f"Simplifier: {result.error}"
		yield StageFinished(iteration, "simplify", "ok")
		return None

	def _run_iteration(self, iteration: int) -> Iterator[LoopEvent]:
		yield StageStarted(iteration, "main")
		main_result = self._invoke(self.config.prompt, self.config.model)

		if main_result.error:
			yield StageFinished(iteration, "main", "failed", main_result.error)
			logger.warning("Main invocation failed in iteration %d: %s", iteration, main_result.error)
			return IterationOutcome(
				iteration=iteration,
				success=False,
				output=main_result.output,
				error=main_result.error,
				should_stop=not self.config.continue_on_error,
			)

		yield StageFinished(iteration, "main", "ok")

		warnings: list[str] = []
		if not self.config.skip_secondary_pass:
			warning = yield from self._run_simplifier(iteration)
			if warning:
				warnings.append(warning)

		# Only the main output is checked, not the simplifier's
		should_stop = matches_stop_condition(main_result.output, self.config.stop_condition)
		if should_stop:
			logger.debug("Stop condition detected in output")
			yield StopConditionMet(iteration)

		return IterationOutcome(
			iteration=iteration,
			success=True,
			output=main_result.output,
			should_stop=should_stop,
			warnings=tuple(warnings),
		)

	def _run_delegated_iteration(self, iteration: int) -> Iterator[LoopEvent]:
		# Step 1: ask the agent to break down the work
		yield StageStarted(iteration, "plan")
		plan_result = self._invoke(build_planning_prompt(self.config.prompt), self.config.model)

		if plan_result.error:
			yield StageFinished(iteration, "plan", "failed", plan_result.error)
			logger.warning("Planning failed: %s", plan_result.error)
			return IterationOutcome(
				iteration=iteration,
				success=False,
				output=plan_result.output,
				error=plan_result.error,
				should_stop=True,
				delegated=True,
			)
		yield StageFinished(iteration, "plan", "ok")

		warnings: list[str] = []
		tasks, fallback = parse_task_list(plan_result.output, self.config.prompt)
		if fallback:
			warnings.append("Could not parse planned tasks; ran the prompt as a single task")
		yield TasksPlanned(iteration, [t.description for t in tasks], fallback)

		# Step 2: execute tasks in parallel
		yield StageStarted(iteration, "execute", task_count=len(tasks))
		batch = self.executor.run(tasks)
		if batch.errors:
			yield StageFinished(
				iteration, "execute", "warning", f"Completed with {len(batch.errors)} error(s)",
			)
		else:
			yield StageFinished(iteration, "execute", "ok")

		# Step 3: merge results
		yield StageStarted(iteration, "merge")
		merge_result = self.merger.merge(tasks, batch.outputs)
		if merge_result.error:
			logger.warning("Merge reported an error: %s", merge_result.error)
			warnings.append(f"Merge: {merge_result.error}")
			yield StageFinished(iteration, "merge", "warning", merge_result.error)
		else:
			yield StageFinished(iteration, "merge", "ok")

		if not self.config.skip_secondary_pass:
			warning = yield from self._run_simplifier(iteration)
			if warning:
				warnings.append(warning)

		combined_output = combine_delegated_output(plan_result.output, batch.outputs, merge_result.output)
		# The whole combined text is checked here, unlike the plain path
		should_stop = matches_stop_condition(combined_output, self.config.stop_condition)
		if should_stop:
			yield StopConditionMet(iteration)

		return IterationOutcome(
			iteration=iteration,
			success=not batch.errors,
			output=combined_output,
			error="\n".join(batch.errors) if batch.errors else None,
			should_stop=should_stop,
			warnings=tuple(warnings),
			delegated=True,
		)
