# executor.py
from __future__ import annotations

import os
import shlex
import shutil
import signal
import subprocess
import threading
import time
from pathlib import Path
from typing import Callable, Dict, List, Mapping, Optional, Tuple

from .actions import get_action, hint_for
from .errors import Cancelled, DefinitionError, ExternalToolUnavailable, StepFailure, Timeout
from .model import Step, StepResult, StepStatus
from .secrets import PLACEHOLDER_RE, SecretProvider, expand_placeholders
from . import settings

# how often a running step checks for cancellation
_POLL_SECONDS = 0.2
# SIGTERM -> SIGKILL grace period on cancellation
_TERM_GRACE_SECONDS = 5.0
_SH_BUILTINS = {"exit", "cd", "export", "set", "unset", "exec", "eval", ".", "source", "return", "trap", "wait"}


class CancelToken:
    """Shared by every executor of a run; cancel() stops all running steps."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, seconds: float) -> bool:
        """Sleep up to `seconds`; returns True if cancelled meanwhile."""
        return self._event.wait(seconds)


def _signal_group(proc: subprocess.Popen, sig: int) -> None:
    try:
        if hasattr(os, "killpg"):
            os.killpg(proc.pid, sig)
        else:
            proc.send_signal(sig)
    except (ProcessLookupError, PermissionError):
        # already gone
        pass


class StepExecutor:
    """
    Runs one step as an external process.

    - resolves `${{ secrets.* }}` / `${{ env.* }}` in the step params
    - checks the tool is on PATH before launching
    - enforces the timeout by killing the whole process group
    - masks secret values out of everything it captures
    """

    def __init__(
        self,
        workspace: str | Path = ".",
        *,
        secrets: Optional[SecretProvider] = None,
        cancel: Optional[CancelToken] = None,
        default_timeout: Optional[float] = None,
        output_tail: Optional[int] = None,
        which: Callable[..., Optional[str]] = shutil.which,
    ):
        self.workspace = Path(workspace).resolve()
        self.secrets = secrets or SecretProvider()
        self.cancel = cancel or CancelToken()
        self.default_timeout = default_timeout if default_timeout is not None else settings.STEP_TIMEOUT
        self.output_tail = output_tail if output_tail is not None else settings.OUTPUT_TAIL
        self._which = which

    # ------------------------------------------------------------------

    def command_for(self, stage: str, step: Step, env: Mapping[str, str]) -> Tuple[List[str], Dict[str, str]]:
        """
        Build the argv for `step`, plus the variables it needs on top of `env`.

        Secret values never enter argv: each reference is turned into a
        shell variable that is only set in the subprocess environment.
        """
        action = get_action(step.uses)
        params: Dict = dict(step.params)
        if step.run is not None:
            params["run"] = step.run
        params, secret_env = self.secrets.defer(params, env, stage=stage, step=step.name)
        action.validate(params)
        argv = action.build(params)

        if not any(PLACEHOLDER_RE.search(arg) for arg in argv):
            return argv, secret_env
        if step.run is not None:
            # the user's own script: plain variable expansion
            return [argv[0], argv[1], expand_placeholders(argv[2], quoted=False), *argv[3:]], secret_env
        script = argv[2] if argv[:2] == ["sh", "-c"] else shlex.join(argv)
        return ["sh", "-c", expand_placeholders(script, quoted=True)], secret_env

    def execute(
        self,
        stage: str,
        step: Step,
        env: Mapping[str, str],
        *,
        timeout: Optional[float] = None,
    ) -> StepResult:
        """
        Run `step` once. Returns a success StepResult or raises
        StepFailure / Timeout / Cancelled / ExternalToolUnavailable / MissingSecret.
        """
        if self.cancel.cancelled:
            raise Cancelled(stage=stage, step=step.name)

        action = get_action(step.uses)
        argv, secret_env = self.command_for(stage, step, env)
        display = step.run if step.run is not None else f"{action.name} ({action.tool})"

        search_path = env.get("PATH")
        for tool in {action.tool, argv[0]}:
            if self._which(tool, path=search_path) is None:
                raise ExternalToolUnavailable(tool, hint_for(tool), stage=stage, step=step.name)

        rel_cwd = step.cwd or action.workdir(step.params) or "."
        cwd = (self.workspace / rel_cwd).resolve()
        if not cwd.is_dir():
            raise DefinitionError(f"working directory not found: {cwd}", stage=stage, step=step.name)

        limit = timeout or step.timeout or self.default_timeout
        started = time.monotonic()

        proc = subprocess.Popen(
            argv,
            cwd=str(cwd),
            env={**env, **secret_env},
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            stdin=subprocess.DEVNULL,
            text=True,
            errors="replace",
            start_new_session=True,  # own process group, so timeouts kill grandchildren too
        )

        stdout, stderr, outcome = self._wait(proc, limit, started)
        duration = time.monotonic() - started
        output = self._capture(stdout, stderr)

        if outcome == "timeout":
            raise Timeout(stage=stage, step=step.name, cmd=display, seconds=limit, output=output)
        if outcome == "cancelled":
            raise Cancelled(stage=stage, step=step.name)
        if proc.returncode == 127 and step.run is not None:
            missing = self._missing_shell_tool(step.run, search_path)
            if missing:
                raise ExternalToolUnavailable(missing, hint_for(missing), stage=stage, step=step.name)
        if proc.returncode != 0:
            raise StepFailure(
                stage=stage,
                step=step.name,
                cmd=display,
                exit_code=proc.returncode,
                output=output,
            )

        return StepResult(
            name=step.name,
            status=StepStatus.SUCCESS,
            exit_code=0,
            output=output,
            attempts=1,
            duration=duration,
        )

    # ------------------------------------------------------------------

    def _wait(self, proc: subprocess.Popen, limit: float, started: float):
        deadline = started + limit
        while True:
            remaining = deadline - time.monotonic()
            try:
                out, err = proc.communicate(timeout=max(0.0, min(_POLL_SECONDS, remaining)))
                return out or "", err or "", "done"
            except subprocess.TimeoutExpired:
                pass

            if self.cancel.cancelled:
                _signal_group(proc, signal.SIGTERM)
                try:
                    out, err = proc.communicate(timeout=_TERM_GRACE_SECONDS)
                except subprocess.TimeoutExpired:
                    _signal_group(proc, signal.SIGKILL)
                    out, err = proc.communicate()
                return out or "", err or "", "cancelled"

            if time.monotonic() >= deadline:
                _signal_group(proc, signal.SIGKILL)
                out, err = proc.communicate()
                return out or "", err or "", "timeout"

    def _missing_shell_tool(self, cmd: str, search_path: Optional[str]) -> Optional[str]:
        """sh exits 127 for "command not found"; name the tool if it is really absent."""
        try:
            words = shlex.split(cmd)
        except ValueError:
            return None
        if not words or "=" in words[0] or "/" in words[0] or words[0] in _SH_BUILTINS:
            return None
        return words[0] if self._which(words[0], path=search_path) is None else None

    def _capture(self, stdout: str, stderr: str) -> str:
        text = stdout or ""
        if stderr:
            text = f"{text}\n{stderr}" if text else stderr
        # mask before trimming so a secret cut in half by the tail can't leak
        return self.secrets.mask(text)[-self.output_tail:]
