# tests/test_executor.py
import os
import threading
import time
from pathlib import Path

import pytest

from relayci.errors import (
    Cancelled,
    DefinitionError,
    ExternalToolUnavailable,
    MissingSecret,
    StepFailure,
    Timeout,
)
from relayci.executor import StepExecutor
from relayci.model import Step, StepStatus


def _env(**extra):
    env = dict(os.environ)
    env.update(extra)
    return env


def _alive(pid: int) -> bool:
    """True if pid is a live (non-zombie) process."""
    stat = Path(f"/proc/{pid}/stat")
    try:
        state = stat.read_text().rsplit(")", 1)[1].split()[0]
    except (FileNotFoundError, ProcessLookupError, IndexError):
        return False
    return state != "Z"


def test_success_captures_output(executor):
    result = executor.execute("build", Step(name="echo", run="echo hello; echo oops >&2"), _env())

    assert result.status is StepStatus.SUCCESS
    assert result.exit_code == 0
    assert "hello" in result.output
    assert "oops" in result.output


def test_nonzero_exit_is_step_failure(executor):
    with pytest.raises(StepFailure) as exc:
        executor.execute("build-test", Step(name="npm test", run="echo 'test failed'; exit 3"), _env())

    err = exc.value
    assert err.exit_code == 3
    assert err.stage == "build-test"
    assert "test failed" in err.output


def test_step_runs_in_its_working_directory(executor, workspace):
    (workspace / "app").mkdir()
    result = executor.execute("s", Step(name="pwd", run="pwd", cwd="app"), _env())
    assert result.output.strip() == str((workspace / "app").resolve())


def test_missing_working_directory(executor):
    with pytest.raises(DefinitionError, match="working directory"):
        executor.execute("s", Step(name="pwd", run="pwd", cwd="nope"), _env())


@pytest.mark.skipif(not Path("/proc").is_dir(), reason="needs /proc to inspect processes")
def test_timeout_kills_the_whole_process_group(executor, workspace):
    step = Step(name="hang", run="sleep 30 & echo $! > child.pid; wait", timeout=0.5)

    started = time.monotonic()
    with pytest.raises(Timeout) as exc:
        executor.execute("s", step, _env())
    assert time.monotonic() - started < 10
    assert exc.value.seconds == 0.5

    child = int((workspace / "child.pid").read_text().strip())
    deadline = time.monotonic() + 5
    while _alive(child) and time.monotonic() < deadline:
        time.sleep(0.05)
    assert not _alive(child)


def test_explicit_timeout_overrides_step_timeout(executor):
    with pytest.raises(Timeout):
        executor.execute("s", Step(name="slow", run="sleep 5", timeout=60), _env(), timeout=0.3)


def test_unavailable_tool_is_reported_before_launch(workspace, secrets):
    calls = []

    def which(tool, path=None):
        calls.append(tool)
        return None if tool == "trivy" else "/usr/bin/" + tool

    ex = StepExecutor(workspace, secrets=secrets, which=which)
    step = Step(name="scan", uses="trivy/image-scan", params={"image-ref": "me/app:1"})

    with pytest.raises(ExternalToolUnavailable) as exc:
        ex.execute("docker-scan", step, _env())
    assert exc.value.tool == "trivy"
    assert "Trivy" in exc.value.hint


def test_command_not_found_in_shell_step(executor):
    with pytest.raises(ExternalToolUnavailable) as exc:
        executor.execute("s", Step(name="x", run="definitely-not-a-real-tool-xyz --version"), _env())
    assert exc.value.tool == "definitely-not-a-real-tool-xyz"


def test_secret_is_injected_but_never_captured(executor):
    env = _env(API_TOKEN="s3cr3t-t0ken-value")
    step = Step(
        name="leaky",
        run='echo "token is $API_TOKEN"; echo "param ${{ secrets.DB_PASSWORD }}"; test -n "$API_TOKEN"',
    )
    result = executor.execute("deploy", step, env)

    assert "s3cr3t-t0ken-value" not in result.output
    assert "hunter2hunter2" not in result.output
    assert result.output.splitlines() == ["token is ***", "param ***"]


def test_secret_masked_in_failure_output(executor):
    env = _env(API_TOKEN="s3cr3t-t0ken-value")
    with pytest.raises(StepFailure) as exc:
        executor.execute("deploy", Step(name="leak", run='echo "$API_TOKEN"; exit 1'), env)
    assert "s3cr3t-t0ken-value" not in exc.value.output
    assert "s3cr3t-t0ken-value" not in str(exc.value)


def test_missing_secret_fails_before_launch(executor, workspace):
    step = Step(name="x", run="touch ran.txt; echo ${{ secrets.UNKNOWN }}")
    with pytest.raises(MissingSecret):
        executor.execute("s", step, _env())
    assert not (workspace / "ran.txt").exists()


def test_output_tail_is_trimmed(workspace, secrets):
    ex = StepExecutor(workspace, secrets=secrets, output_tail=10)
    result = ex.execute("s", Step(name="long", run="printf '%s' 0123456789abcdefghij"), _env())
    assert result.output == "abcdefghij"


def test_cancel_terminates_running_step(executor, cancel):
    threading.Timer(0.3, cancel.cancel).start()
    started = time.monotonic()
    with pytest.raises(Cancelled):
        executor.execute("s", Step(name="long", run="sleep 30"), _env())
    assert time.monotonic() - started < 10


def test_cancelled_token_prevents_launch(executor, cancel, workspace):
    cancel.cancel()
    with pytest.raises(Cancelled):
        executor.execute("s", Step(name="x", run="touch ran.txt"), _env())
    assert not (workspace / "ran.txt").exists()


def test_secrets_stay_out_of_shell_argv(executor):
    step = Step(name="call api", run='curl -H "Bearer ${{ secrets.API_TOKEN }}" https://api.example.com')
    argv, extra = executor.command_for("deploy", step, _env())

    assert argv == ["sh", "-c", 'curl -H "Bearer ${__RELAYCI_SECRET_API_TOKEN}" https://api.example.com']
    assert extra == {"__RELAYCI_SECRET_API_TOKEN": "s3cr3t-t0ken-value"}


def test_secrets_stay_out_of_action_argv(executor):
    login = Step(name="login", uses="docker/login", params={"username": "${{ secrets.API_TOKEN }}"})
    argv, extra = executor.command_for("docker-scan", login, _env())
    assert argv[:2] == ["sh", "-c"]
    assert all("s3cr3t-t0ken-value" not in arg for arg in argv)
    assert '"${__RELAYCI_SECRET_API_TOKEN}"' in argv[2]
    assert extra["__RELAYCI_SECRET_API_TOKEN"] == "s3cr3t-t0ken-value"

    env = _env(IMAGE="s3cr3t-t0ken-value/webapp:latest")
    scan = Step(name="scan", uses="trivy/image-scan", params={"image-ref": "${{ env.IMAGE }}"})
    argv, extra = executor.command_for("docker-scan", scan, env)
    assert argv[:2] == ["sh", "-c"]
    assert all("s3cr3t-t0ken-value" not in arg for arg in argv)
    assert argv[2].endswith("''\"${IMAGE}\"''")
    assert extra == {}


def test_plain_env_references_are_substituted(executor):
    scan = Step(name="scan", uses="trivy/image-scan", params={"image-ref": "${{ env.IMAGE }}"})
    argv, _ = executor.command_for("s", scan, _env(IMAGE="me/app:1"))
    assert argv[0] == "trivy"
    assert argv[-1] == "me/app:1"


def test_action_receives_secret_through_its_environment(executor, workspace):
    bin_dir = workspace / "bin"
    bin_dir.mkdir()
    trivy = bin_dir / "trivy"
    trivy.write_text("#!/bin/sh\nprintf '%s\\n' \"$@\"\n")
    trivy.chmod(0o755)

    env = _env(PATH=f"{bin_dir}{os.pathsep}{os.environ['PATH']}", IMAGE="registry/s3cr3t-t0ken-value:1")
    step = Step(name="scan", uses="trivy/image-scan", params={"image-ref": "${{ env.IMAGE }}", "format": "it's json"})
    result = executor.execute("docker-scan", step, env)

    lines = result.output.splitlines()
    assert lines[-1] == "registry/***:1"
    assert "it's json" in lines


@pytest.mark.skipif(not Path("/proc").is_dir(), reason="needs /proc to inspect processes")
def test_secret_never_appears_in_the_step_command_line(executor, workspace):
    step = Step(
        name="inspect",
        run='tr "\\000" " " < /proc/$$/cmdline > cmdline.txt; [ -n "${{ secrets.DB_PASSWORD }}" ]',
    )
    executor.execute("s", step, _env())

    cmdline = (workspace / "cmdline.txt").read_text()
    assert "__RELAYCI_SECRET_DB_PASSWORD" in cmdline
    assert "hunter2hunter2" not in cmdline
