"""Agent client boundary.

The loop only ever talks to the agent through ``AgentClient.invoke``: hand it
an instruction, get back the captured output and an optional error string.
``ClaudeRunner`` implements that contract by spawning the agent CLI
(``claude -p <instruction>`` by default) in the project's working directory.
"""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import Protocol

from ralph_loop.core import AgentResult
from ralph_loop.utils import truncate_text

logger = logging.getLogger(__name__)


SIMPLIFIER_PROMPT = (
    "Please simplify the code using the code-simplifier plugin. "
    "Review all files and apply simplifications where appropriate."
)


class AgentClient(Protocol):
    def invoke(self, instruction: str, model: str | None = None) -> AgentResult:
        ...


def _decode(stream: str | bytes | None) -> str:
    if stream is None:
        return ""
    if isinstance(stream, bytes):
        return stream.decode("utf-8", errors="replace")
    return stream


class ClaudeRunner:
    """Runs instructions through the agent CLI as a blocking subprocess."""

    def __init__(
        self,
        work_dir: Path,
        command: str = "claude",
        model: str | None = None,
        extra_args: tuple[str, ...] = (),
        timeout: float | None = None,
        verbose: bool = False,
    ):
        self.work_dir = work_dir
        self.command = command
        self.model = model
        self.extra_args = extra_args
        self.timeout = timeout
        self.verbose = verbose

    def build_command(self, instruction: str, model: str | None = None) -> list[str]:
        args = [self.command, "-p", instruction]
        selected = model or self.model
        if selected:
            args += ["--model", selected]
        if self.verbose:
            args.append("--verbose")
        args.extend(self.extra_args)
        return args

    def invoke(self, instruction: str, model: str | None = None) -> AgentResult:
        args = self.build_command(instruction, model)
        logger.debug(
            "Invoking %s (model=%s): %s",
            self.command, model or self.model or "default", truncate_text(instruction, 120),
        )
        try:
            proc = subprocess.run(
                args,
                cwd=self.work_dir,
                stdin=subprocess.DEVNULL,
                capture_output=True,
                encoding="utf-8",
                errors="replace",
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired as e:
            logger.warning("Agent timed out after %ss", self.timeout)
            return AgentResult(output=_decode(e.stdout), error=f"Agent timed out after {self.timeout}s")
        except OSError as e:
            logger.warning("Could not start %s: %s", self.command, e)
            return AgentResult(output="", error=str(e))

        if proc.returncode == 0:
            return AgentResult(output=proc.stdout)

        error = proc.stderr.strip() or f"Process exited with code {proc.returncode}"
        logger.warning("Agent exited with code %d", proc.returncode)
        return AgentResult(output=proc.stdout, error=error)
