"""Task planning for delegated iterations.

The planning call asks the agent to split the run's prompt into a handful of
independent tasks and answer with a JSON array of strings. Agents wrap that
array in prose and code fences, so parsing tries to decode a JSON array at
each ``[`` in turn and keeps the first non-empty list of strings. Output with
no such list falls back to a single task holding the original prompt.
"""

from __future__ import annotations

import json
import logging

from ralph_loop.core import DelegatedTask

logger = logging.getLogger(__name__)


PLANNING_DIRECTIVE = """IMPORTANT: Break down this work into 2-4 independent parallel tasks that can be executed simultaneously.
For each task, provide:
1. A clear, self-contained description
2. Specific goals and acceptance criteria

Format your response as a JSON array of task descriptions:
["Task 1 description", "Task 2 description", ...]

Each task should be independent and parallelizable."""

_DECODER = json.JSONDecoder()


def build_planning_prompt(prompt: str) -> str:
    return f"{prompt}\n\n{PLANNING_DIRECTIVE}"


def extract_task_list(text: str) -> list[str] | None:
    """Return the first JSON array of task strings in *text*, or None."""
    start = text.find("[")
    while start != -1:
        try:
            parsed, _ = _DECODER.raw_decode(text, start)
        except json.JSONDecodeError:
            parsed = None
        if (
            isinstance(parsed, list)
            and parsed
            and all(isinstance(item, str) and item.strip() for item in parsed)
        ):
            return parsed
        start = text.find("[", start + 1)
    return None


def parse_task_list(text: str, prompt: str) -> tuple[list[DelegatedTask], bool]:
    """Parse planner output into tasks.

    Returns ``(tasks, fallback)`` where ``fallback`` is True when the output
    held no usable list and the original prompt became the only task.
    """
    descriptions = extract_task_list(text)
    if descriptions is None:
        logger.info("Could not parse a task list from planner output; using a single task")
        return [DelegatedTask(index=0, description=prompt)], True
    return [DelegatedTask(index=i, description=d) for i, d in enumerate(descriptions)], False
