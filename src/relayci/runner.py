# runner.py
from __future__ import annotations

from pathlib import Path
from typing import Iterable, Optional

from .executor import CancelToken, StepExecutor
from .loader import validate_pipeline
from .model import Pipeline, RunResult
from .scheduler import Scheduler
from .secrets import EnvSecretSource, FileSecretSource, SecretProvider
from .settings import EngineSettings
from .stage import StageRunner, scrubbed_environ
from .ui.console import get_console


def open_secrets(
    settings: EngineSettings,
    *,
    secrets_file: str | Path | None = None,
    names: Iterable[str] = (),
) -> SecretProvider:
    """
    Build the run-scoped SecretProvider: prefixed env vars, then the secrets
    file (file wins), then plain env vars listed in `names`.
    """
    sources = [EnvSecretSource(settings.secret_prefix)]
    path = secrets_file or settings.secrets_file
    if path:
        sources.append(FileSecretSource(path))
    names = list(names)
    if names:
        sources.append(EnvSecretSource("", names=names))
    return SecretProvider.from_sources(sources)


def should_run(pipeline: Pipeline, event: str, branch: Optional[str]) -> bool:
    return pipeline.trigger.matches(event, branch)


def run_pipeline(
    pipeline: Pipeline,
    *,
    workspace: str | Path = ".",
    secrets: Optional[SecretProvider] = None,
    settings: Optional[EngineSettings] = None,
    cancel: Optional[CancelToken] = None,
    stop_on_failure: bool = False,
    run_id: Optional[str] = None,
) -> RunResult:
    """
    Execute one run of `pipeline`.

    Definition problems (unknown actions, cycles, literal credentials) raise
    before any stage starts. Stage and step failures never raise; they are
    reported in the returned RunResult.
    """
    settings = settings or EngineSettings.from_env()
    secrets = secrets if secrets is not None else SecretProvider()
    validate_pipeline(pipeline)

    executor = StepExecutor(
        workspace,
        secrets=secrets,
        cancel=cancel,
        default_timeout=settings.step_timeout,
        output_tail=settings.output_tail,
    )
    scheduler = Scheduler(
        StageRunner(executor, base_env=scrubbed_environ(settings.secret_prefix)),
        max_workers=settings.max_workers,
        stop_on_failure=stop_on_failure,
    )

    console = get_console()
    previous = console.set_masker(secrets.mask)
    try:
        return scheduler.run(pipeline, run_id=run_id)
    finally:
        console.set_masker(previous)
