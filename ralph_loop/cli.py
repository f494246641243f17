from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.status import Status
from rich.table import Table

from ralph_loop.agent import ClaudeRunner
from ralph_loop.config.models import (
	ConfigError,
	RunConfiguration,
	RuntimeSettings,
	load_settings_file,
)
from ralph_loop.core import IterationOutcome, RunSummary
from ralph_loop.delegation import DELEGATE_MODEL
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
from ralph_loop.orchestrator import LoopOrchestrator
from ralph_loop.utils import estimate_tokens_text, preview


DEFAULT_CONFIG_NAME = "ralph.yaml"
console = Console()

# stage -> (running, ok, failed/warning)
STAGE_MESSAGES = {
	"main": ("Running agent with prompt...", "Agent execution completed", "Agent execution failed"),
	"simplify": (
		"Running code simplifier...",
		"Code simplification completed",
		"Code simplifier encountered issues (continuing anyway)",
	),
	"plan": ("Planning parallel tasks with delegation...", "Planning completed", "Planning failed"),
	"execute": (
		"Executing {count} parallel " + DELEGATE_MODEL + " subagents...",
		"All parallel tasks completed",
		"{detail}",
	),
	"merge": ("Merging results...", "Results merged", "Merge completed with issues"),
}


class ConsoleReporter:
	"""Renders loop events on a rich console."""

	def __init__(self, console: Console, verbose: bool = False):
		self.console = console
		self.verbose = verbose
		self._status: Status | None = None

	def handle(self, event: LoopEvent) -> None:
		if isinstance(event, LoopStarted):
			self.show_header(event.config)
		elif isinstance(event, IterationStarted):
			if event.iteration > 1:
				self.console.print()
			self.console.rule(f"[bold yellow]Iteration {event.iteration}/{event.max_iterations}[/bold yellow]")
		elif isinstance(event, StageStarted):
			running = STAGE_MESSAGES[event.stage][0].format(count=event.task_count)
			self._status = self.console.status(f"[cyan]{running}[/cyan]")
			self._status.start()
		elif isinstance(event, StageFinished):
			self.stop_status()
			self.show_stage_result(event)
		elif isinstance(event, TasksPlanned):
			if event.fallback:
				self.console.print("[yellow]Failed to parse tasks, falling back to single task[/yellow]")
			self.console.print(f"[dim]Identified {len(event.tasks)} parallel task(s)[/dim]")
			if self.verbose:
				for number, task in enumerate(event.tasks, start=1):
					self.console.print(f"[dim]  {number}. {escape(preview(task, 80))}[/dim]")
		elif isinstance(event, IterationFinished):
			if self.verbose:
				self.show_agent_output(event.outcome)
				for warning in event.outcome.warnings:
					self.console.print(f"[dim]Warning: {escape(warning)}[/dim]")
		elif isinstance(event, StopConditionMet):
			self.console.print(
				Panel(
					f"[bold green]Stop condition met![/bold green]\nStopped at iteration {event.iteration}",
					border_style="green",
				)
			)
		elif isinstance(event, LoopComplete):
			self.show_summary(event.summary)

	def stop_status(self) -> None:
		if self._status is not None:
			self._status.stop()
			self._status = None

	def show_stage_result(self, event: StageFinished) -> None:
		_, ok_text, problem_text = STAGE_MESSAGES[event.stage]
		if event.status == "ok":
			self.console.print(f"[green]✔ {ok_text}[/green]")
			return
		problem_text = problem_text.format(detail=event.detail or "")
		colour = "red" if event.status == "failed" else "yellow"
		marker = "✖" if event.status == "failed" else "⚠"
		self.console.print(f"[{colour}]{marker} {problem_text}[/{colour}]")
		if self.verbose and event.detail:
			self.console.print(f"[dim]{escape(event.detail)}[/dim]")

	def show_agent_output(self, outcome: IterationOutcome) -> None:
		text = outcome.output.strip()
		if not text:
			return
		self.console.print(
			Panel(escape(text), title=f"Agent output (iteration {outcome.iteration})", border_style="dim")
		)

	def show_header(self, config: RunConfiguration) -> None:
		lines = [
			f"[cyan]Prompt:[/cyan] {escape(preview(config.prompt))}",
			f"[cyan]Max Iterations:[/cyan] {config.max_iterations}",
		]
		if config.model:
			lines.append(f"[cyan]Model:[/cyan] {escape(config.model)}")
		if config.stop_condition:
			lines.append(f"[cyan]Stop Condition:[/cyan] {escape(config.stop_condition)}")
		if config.skip_secondary_pass:
			lines.append("[cyan]Simplifier:[/cyan] Disabled")
		if config.continue_on_error:
			lines.append("[cyan]Continue on Error:[/cyan] Yes")
		if config.delegate:
			lines.append(f"[cyan]Delegation:[/cyan] Enabled (parallel {DELEGATE_MODEL} subagents)")
		self.console.print(Panel("\n".join(lines), title="Ralph Loop", border_style="magenta"))

	def show_summary(self, summary: RunSummary) -> None:
		self.console.print(
			Panel(
				f"Total Iterations: {summary.total}\n"
				f"[green]Successful: {summary.succeeded}[/green]\n"
				f"[red]Failed: {summary.failed}[/red]",
				title="Summary",
				border_style="cyan",
			)
		)


def show_iterations_table(history: list[IterationOutcome], model: str | None, target: Console | None = None) -> None:
	"""Display per-iteration results with estimated output tokens."""
	out = target or console
	if not history:
		out.print("[dim]No iterations ran.[/dim]")
		return

	table = Table(title="Iterations", show_lines=False)
	table.add_column("#", justify="right")
	table.add_column("Mode")
	table.add_column("Status")
	table.add_column("Stop")
	table.add_column("Out tokens", justify="right")
	table.add_column("Warnings", justify="right")

	for outcome in history:
		status = "[green]ok[/green]" if outcome.success else "[red]failed[/red]"
		table.add_row(
			str(outcome.iteration),
			"delegated" if outcome.delegated else "plain",
			status,
			"yes" if outcome.should_stop else "",
			str(estimate_tokens_text(model, outcome.output)),
			str(len(outcome.warnings)),
		)
	out.print(table)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
	parser = argparse.ArgumentParser(
		prog="ralph-loop",
		description="Run a coding agent in a loop until a stop condition appears",
	)
	prompt_group = parser.add_mutually_exclusive_group(required=True)
	prompt_group.add_argument("-p", "--prompt", help="The prompt to run in each iteration")
	prompt_group.add_argument("-f", "--prompt-file", help="Read the prompt from a file")
	parser.add_argument("-m", "--max-iterations", type=int, default=5, help="Maximum number of iterations")
	parser.add_argument("-s", "--stop", dest="stop_condition", help="Stop condition (string to search for in output)")
	parser.add_argument("-d", "--work-dir", help="Working directory for the agent")
	parser.add_argument("--model", help="Model to use for the agent")
	parser.add_argument("--skip-simplifier", action="store_true", help="Skip the code simplification pass")
	parser.add_argument("--continue-on-error", action="store_true", help="Keep looping when the agent fails")
	parser.add_argument("--delegate", action="store_true", help="Split the first iteration into parallel subagent tasks")
	parser.add_argument("--max-parallel", type=int, help="Maximum number of concurrent subagents")
	parser.add_argument("--timeout", type=float, help="Per-invocation agent timeout in seconds")
	parser.add_argument("--config", dest="config_path", help=f"YAML settings file (default: {DEFAULT_CONFIG_NAME} in the work dir)")
	parser.add_argument("-v", "--verbose", action="store_true", help="Show debug output")
	return parser.parse_args(argv)


def resolve_prompt(args: argparse.Namespace) -> str:
	if args.prompt_file:
		path = Path(args.prompt_file).expanduser()
		if not path.is_file():
			raise ConfigError(f"Prompt file not found: {path}")
		prompt = path.read_text(encoding="utf-8")
	else:
		prompt = args.prompt
	if not prompt or not prompt.strip():
		raise ConfigError("Prompt is empty")
	return prompt


def resolve_settings(args: argparse.Namespace) -> RuntimeSettings:
	"""Merge the YAML settings file, environment and command line flags."""
	work_dir = Path(args.work_dir).expanduser() if args.work_dir else Path.cwd()

	if args.config_path:
		settings = load_settings_file(Path(args.config_path).expanduser())
	elif (work_dir / DEFAULT_CONFIG_NAME).exists():
		settings = load_settings_file(work_dir / DEFAULT_CONFIG_NAME)
	else:
		settings = {}

	overrides = {
		"model": args.model,
		"agent_timeout": args.timeout,
		"max_parallel": args.max_parallel,
		"work_dir": str(work_dir) if args.work_dir else None,
	}
	for key, value in overrides.items():
		if value is not None:
			settings[key] = value
	if args.verbose:
		settings["verbose"] = True

	runtime = RuntimeSettings.from_sources(settings)
	if not runtime.work_dir.is_dir():
		raise ConfigError(f"Working directory does not exist: {runtime.work_dir}")
	return runtime


def configure_logging(verbose: bool) -> None:
	logging.basicConfig(
		level=logging.DEBUG if verbose else logging.WARNING,
		format="%(message)s",
		datefmt="[%X]",
		handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
		force=True,
	)


def main(argv: list[str] | None = None) -> int:
	"""CLI entry point for Ralph Loop."""
	args = parse_args(argv)

	try:
		prompt = resolve_prompt(args)
		runtime = resolve_settings(args)
		config = RunConfiguration(
			prompt=prompt,
			max_iterations=args.max_iterations,
			stop_condition=args.stop_condition,
			model=runtime.model,
			skip_secondary_pass=args.skip_simplifier,
			continue_on_error=args.continue_on_error,
			delegate=args.delegate,
		)
	except ConfigError as exc:
		console.print(f"[red]Error:[/red] {escape(str(exc))}")
		return 1

	configure_logging(runtime.verbose)

	runner = ClaudeRunner(
		work_dir=runtime.work_dir,
		command=runtime.agent_command,
		model=runtime.model,
		extra_args=runtime.agent_args,
		timeout=runtime.agent_timeout,
		verbose=runtime.verbose,
	)
	reporter = ConsoleReporter(console, verbose=runtime.verbose)
	orchestrator = LoopOrchestrator(config, runner, max_parallel=runtime.max_parallel)

	try:
		result = orchestrator.run(on_event=reporter.handle)
	except KeyboardInterrupt:
		reporter.stop_status()
		console.print("\n[yellow]Interrupted by user.[/yellow]")
		return 130

	show_iterations_table(result.history, runtime.model)
	last = result.history[-1] if result.history else None
	return 0 if last is not None and last.success else 1


if __name__ == "__main__":
	sys.exit(main())
