import subprocess
import sys
from pathlib import Path

from ralph_loop.agent import ClaudeRunner
from ralph_loop.config.models import RunConfiguration
from ralph_loop.core import AgentResult
from ralph_loop.orchestrator import LoopOrchestrator


# --- Helpers ---

def _fake_run(calls, returncode=0, stdout="", stderr="", raises=None):
    def run(args, **kwargs):
        calls.append((args, kwargs))
        if raises is not None:
            raise raises
        return subprocess.CompletedProcess(args, returncode, stdout=stdout, stderr=stderr)
    return run


# --- build_command ---

def test_build_command_defaults(tmp_path):
    runner = ClaudeRunner(work_dir=tmp_path)
    assert runner.build_command("do it") == ["claude", "-p", "do it"]


def test_build_command_model_and_flags(tmp_path):
    runner = ClaudeRunner(
        work_dir=tmp_path,
        command="my-agent",
        model="sonnet",
        extra_args=("--no-auto-compact",),
        verbose=True,
    )
    assert runner.build_command("go") == [
        "my-agent", "-p", "go", "--model", "sonnet", "--verbose", "--no-auto-compact",
    ]


def test_per_call_model_overrides_default(tmp_path):
    runner = ClaudeRunner(work_dir=tmp_path, model="sonnet")
    assert runner.build_command("go", model="opus")[-2:] == ["--model", "opus"]


# --- invoke ---

def test_invoke_success(monkeypatch, tmp_path):
    calls = []
    monkeypatch.setattr(subprocess, "run", _fake_run(calls, stdout="all good\n", stderr="noise"))
    result = ClaudeRunner(work_dir=tmp_path, timeout=30).invoke("hello")
    assert result == AgentResult(output="all good\n")
    assert result.ok
    args, kwargs = calls[0]
    assert args == ["claude", "-p", "hello"]
    assert kwargs["cwd"] == tmp_path
    assert kwargs["timeout"] == 30
    assert kwargs["stdin"] == subprocess.DEVNULL
    assert kwargs["errors"] == "replace"


def test_invoke_nonzero_exit_uses_stderr(monkeypatch, tmp_path):
    monkeypatch.setattr(subprocess, "run", _fake_run([], returncode=2, stdout="partial", stderr="  bad flag\n"))
    result = ClaudeRunner(work_dir=tmp_path).invoke("hello")
    assert result.output == "partial"
    assert result.error == "bad flag"
    assert not result.ok


def test_invoke_nonzero_exit_without_stderr(monkeypatch, tmp_path):
    monkeypatch.setattr(subprocess, "run", _fake_run([], returncode=3))
    result = ClaudeRunner(work_dir=tmp_path).invoke("hello")
    assert result.error == "Process exited with code 3"


def test_invoke_missing_executable(monkeypatch, tmp_path):
    missing = FileNotFoundError(2, "No such file or directory", "claude")
    monkeypatch.setattr(subprocess, "run", _fake_run([], raises=missing))
    result = ClaudeRunner(work_dir=tmp_path).invoke("hello")
    assert result.output == ""
    assert "No such file or directory" in result.error


def test_invoke_timeout_keeps_partial_output(monkeypatch, tmp_path):
    expired = subprocess.TimeoutExpired(cmd=["claude"], timeout=5, output=b"half way")
    monkeypatch.setattr(subprocess, "run", _fake_run([], raises=expired))
    result = ClaudeRunner(work_dir=tmp_path, timeout=5).invoke("hello")
    assert result.output == "half way"
    assert result.error == "Agent timed out after 5s"


def test_invoke_runs_in_work_dir(monkeypatch):
    calls = []
    monkeypatch.setattr(subprocess, "run", _fake_run(calls))
    ClaudeRunner(work_dir=Path("/srv/project")).invoke("hello")
    assert calls[0][1]["cwd"] == Path("/srv/project")


# --- Real child process ---

def _write_agent_script(tmp_path, body):
    script = tmp_path / "fake-agent"
    script.write_text(f"#!{sys.executable}\nimport sys\n{body}\n")
    script.chmod(0o755)
    return script


def test_invalid_utf8_stdout_is_kept(tmp_path):
    script = _write_agent_script(tmp_path, "sys.stdout.buffer.write(b'work \\xff DONE\\n')")
    result = ClaudeRunner(work_dir=tmp_path, command=str(script)).invoke("hello")
    assert result.ok
    assert result.output.startswith("work ")
    assert "DONE" in result.output
    assert "\ufffd" in result.output


def test_invalid_utf8_stderr_on_failure(tmp_path):
    script = _write_agent_script(
        tmp_path, "sys.stderr.buffer.write(b'bad \\xfe flag')\nsys.exit(4)",
    )
    result = ClaudeRunner(work_dir=tmp_path, command=str(script)).invoke("hello")
    assert not result.ok
    assert result.error.startswith("bad ")
    assert "flag" in result.error


def test_undecodable_output_still_matches_stop_condition(tmp_path):
    script = _write_agent_script(tmp_path, "sys.stdout.buffer.write(b'work \\xff DONE\\n')")
    runner = ClaudeRunner(work_dir=tmp_path, command=str(script))
    config = RunConfiguration(prompt="go", max_iterations=3, stop_condition="done", skip_secondary_pass=True)
    history = LoopOrchestrator(config, runner).run().history
    assert len(history) == 1
    assert history[0].success is True
    assert history[0].should_stop is True
    assert "DONE" in history[0].output
