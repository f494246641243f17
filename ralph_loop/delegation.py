"""Parallel execution of delegated tasks and merging of their results.

``DelegationExecutor.run`` is synchronous for the orchestrator. Internally it
starts one asyncio task per delegated task, each of which runs the blocking
agent call on a worker thread, and joins them all with ``asyncio.gather``.
A semaphore caps how many agent processes run at once.
"""

from __future__ import annotations

import asyncio
import logging

from ralph_loop.agent import AgentClient
from ralph_loop.core import AgentResult, DelegatedTask, DelegationBatchResult

logger = logging.getLogger(__name__)


# Delegated tasks always run on the most capable model tier.
DELEGATE_MODEL = "opus"

MERGE_REQUEST = "Please review all results and create a cohesive summary of what was accomplished."


def invoke_safely(client: AgentClient, instruction: str, model: str | None = None) -> AgentResult:
    """Call the agent, turning an escaped exception into an error result."""
    try:
        return client.invoke(instruction, model=model)
    except Exception as exc:
        logger.exception("Agent client raised instead of returning an error")
        return AgentResult(output="", error=f"{type(exc).__name__}: {exc}")


class DelegationExecutor:
    """Runs delegated tasks concurrently against one agent client."""

    def __init__(self, client: AgentClient, max_parallel: int = 4):
        if max_parallel < 1:
            raise ValueError(f"max_parallel must be at least 1, got {max_parallel}")
        self.client = client
        self.max_parallel = max_parallel

    def run(self, tasks: list[DelegatedTask]) -> DelegationBatchResult:
        """Run every task to completion and return results in task order."""
        if not tasks:
            return DelegationBatchResult(tasks=())
        results = asyncio.run(self._run_all(tasks))
        batch = DelegationBatchResult(tasks=tuple(tasks), results=tuple(results))
        logger.info(
            "Delegated batch finished: %d task(s), %d error(s)",
            len(tasks), len(batch.errors),
        )
        return batch

    async def _run_all(self, tasks: list[DelegatedTask]) -> list[AgentResult]:
        semaphore = asyncio.Semaphore(self.max_parallel)
        return await asyncio.gather(*(self._run_one(task, semaphore) for task in tasks))

    async def _run_one(self, task: DelegatedTask, semaphore: asyncio.Semaphore) -> AgentResult:
        async with semaphore:
            logger.debug("Starting delegated task %d", task.index + 1)
            result = await asyncio.to_thread(
                invoke_safely, self.client, task.description, DELEGATE_MODEL,
            )
        if result.error:
            logger.warning("Delegated task %d failed: %s", task.index + 1, result.error)
        return result


def build_merge_prompt(tasks: list[DelegatedTask], outputs: list[str]) -> str:
    blocks = "\n\n---\n\n".join(
        f"Task {task.index + 1}: {task.description}\n\nResult:\n{output}"
        for task, output in zip(tasks, outputs)
    )
    return f"The following parallel tasks were executed:\n\n{blocks}\n\n{MERGE_REQUEST}"


class ResultMerger:
    """Asks the agent for one synthesis of all delegated results."""

    def __init__(self, client: AgentClient, model: str | None = None):
        self.client = client
        self.model = model

    def merge(self, tasks: list[DelegatedTask], outputs: list[str]) -> AgentResult:
        return invoke_safely(self.client, build_merge_prompt(tasks, outputs), self.model)
