# stage.py
from __future__ import annotations

import os
import time
from typing import Dict, Mapping, Optional

from .errors import Cancelled, PipelineError, StepFailure, Timeout
from .executor import StepExecutor
from .model import Stage, StageResult, StageStatus, Step, StepResult, StepStatus
from .settings import SECRET_PREFIX
from .ui.console import get_console


def scrubbed_environ(prefix: str = SECRET_PREFIX, environ: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
    """The process environment minus the variables the env secret source reads."""
    environ = os.environ if environ is None else environ
    return {k: v for k, v in environ.items() if not (prefix and k.startswith(prefix))}


def build_env(
    executor: StepExecutor,
    stage: Stage,
    step: Step,
    pipeline_env: Mapping[str, str],
    base_env: Optional[Mapping[str, str]] = None,
) -> Dict[str, str]:
    """
    Layered step environment: OS (without prefixed secrets) < pipeline < stage < step.

    Secret references are resolved here, so values only exist in the dict
    handed to the subprocess.
    """
    env: Dict[str, str] = scrubbed_environ() if base_env is None else dict(base_env)
    for layer in (pipeline_env, stage.env, step.env):
        for key, value in layer.items():
            env[key] = str(executor.secrets.resolve(str(value), env, stage=stage.name, step=step.name))
    return env


def run_with_retry(
    executor: StepExecutor,
    stage: str,
    step: Step,
    env: Mapping[str, str],
    *,
    timeout: Optional[float] = None,
) -> StepResult:
    """
    Re-invoke the executor for retryable steps. Only StepFailure and Timeout
    are retried; running out of attempts surfaces as StepFailure.
    """
    if not step.retryable:
        return executor.execute(stage, step, env, timeout=timeout)

    policy = step.retry
    last: Optional[PipelineError] = None
    for attempt in range(1, policy.attempts + 1):
        try:
            result = executor.execute(stage, step, env, timeout=timeout)
            result.attempts = attempt
            return result
        except (StepFailure, Timeout) as e:
            last = e
            if attempt == policy.attempts:
                break
            delay = policy.delay(attempt)
            get_console().print_retry(stage, step.name, attempt, policy.attempts, delay, e.kind)
            if executor.cancel.wait(delay):
                raise Cancelled(stage=stage, step=step.name) from e

    exit_code = last.exit_code if isinstance(last, StepFailure) else -1
    raise StepFailure(
        stage=stage,
        step=step.name,
        cmd=last.cmd,
        exit_code=exit_code,
        output=last.output,
        attempts=policy.attempts,
    ) from last


class StageRunner:
    """Runs the steps of one stage strictly in order; the first failure ends the stage."""

    def __init__(self, executor: StepExecutor, *, base_env: Optional[Mapping[str, str]] = None):
        self.executor = executor
        self.base_env = base_env

    def run(self, stage: Stage, pipeline_env: Mapping[str, str] | None = None) -> StageResult:
        console = get_console()
        started = time.monotonic()
        result = StageResult(name=stage.name, status=StageStatus.RUNNING)
        pipeline_env = pipeline_env or {}

        failed_at: Optional[int] = None
        for idx, step in enumerate(stage.steps):
            console.print_step(stage.name, step.name)
            step_started = time.monotonic()
            try:
                env = build_env(self.executor, stage, step, pipeline_env, self.base_env)
                step_result = run_with_retry(
                    self.executor,
                    stage.name,
                    step,
                    env,
                    timeout=step.timeout or stage.timeout,
                )
            except PipelineError as e:
                cancelled = isinstance(e, Cancelled)
                result.steps.append(
                    StepResult(
                        name=step.name,
                        status=StepStatus.SKIPPED if cancelled else StepStatus.FAILED,
                        exit_code=getattr(e, "exit_code", None),
                        output=getattr(e, "output", ""),
                        attempts=getattr(e, "attempts", 1),
                        duration=time.monotonic() - step_started,
                        error=e.kind,
                    )
                )
                result.error = self.executor.secrets.mask(str(e))
                result.status = StageStatus.SKIPPED if cancelled else StageStatus.FAILED
                console.print_failure(stage.name, step.name, e)
                failed_at = idx
                break

            result.steps.append(step_result)

        if failed_at is not None:
            for step in stage.steps[failed_at + 1:]:
                result.steps.append(StepResult(name=step.name, status=StepStatus.SKIPPED))
        else:
            result.status = StageStatus.SUCCESS

        result.duration = time.monotonic() - started
        return result
