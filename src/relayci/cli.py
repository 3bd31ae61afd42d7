# cli.py
from __future__ import annotations

import signal
import sys
import uuid
from pathlib import Path

import click

from relayci.actions import get_action, known_actions
from relayci.errors import ConfigurationError, DefinitionError
from relayci.executor import CancelToken
from relayci.git_facts.git import workspace_facts
from relayci.loader import describe_levels, load_pipeline, required_secrets
from relayci.runner import open_secrets, run_pipeline, should_run
from relayci.settings import EngineSettings
from relayci.ui.console import Console, get_console, set_console

DEFAULT_PIPELINES = ("relayci.yml", "relayci.yaml", "relayci_pipeline.py")


def find_pipeline_files(root: Path = Path(".")) -> list[Path]:
    """
    Find candidate pipeline files under `root`.

    Returns:
        Sorted list of Paths: the default names, *.pipeline.yml and
        .github/workflows/*.yml
    """
    found: set[Path] = set()
    for name in DEFAULT_PIPELINES:
        p = root / name
        if p.exists():
            found.add(p)
    for pattern in ("*.pipeline.yml", "*.pipeline.yaml", ".github/workflows/*.yml", ".github/workflows/*.yaml"):
        found.update(root.glob(pattern))
    return sorted(found)


def discover_pipeline(pipeline_arg: str | None) -> Path:
    """
    Discover the pipeline file from argument or defaults.

    Raises:
        SystemExit: If no pipeline, or more than one candidate, is found
    """
    console = get_console()

    if pipeline_arg:
        path = Path(pipeline_arg)
        if not path.exists():
            console.print_error(
                "Pipeline file not found",
                f"Could not find pipeline file: {pipeline_arg}",
                suggestion="Specify a different path:\n  relayci run --pipeline ci.yml",
            )
            sys.exit(1)
        return path

    files = find_pipeline_files()

    if len(files) == 0:
        console.print_error(
            "No pipeline file found",
            "Could not find any pipeline files.",
            details=["Looked for:", *(f"  {n}" for n in DEFAULT_PIPELINES), "  *.pipeline.yml", "  .github/workflows/*.yml"],
            suggestion="Create relayci.yml or specify a pipeline explicitly:\n  relayci run --pipeline ci.yml",
        )
        sys.exit(1)

    if len(files) > 1:
        console.print_error(
            "Multiple pipeline files found",
            "Found multiple pipeline files. Please specify which one to use:",
            details=[f"  {f}" for f in files],
            suggestion="Specify a pipeline explicitly:\n  relayci run --pipeline relayci.yml",
        )
        sys.exit(1)

    return files[0]


def _load_or_exit(path: Path, debug: bool):
    console = get_console()
    try:
        return load_pipeline(path)
    except DefinitionError as e:
        console.print_error("Invalid pipeline definition", str(path), details=str(e).splitlines())
        sys.exit(1)
    except Exception as e:
        console.print_error("Failed to load pipeline", f"Could not load pipeline from {path}", details=[str(e)])
        if debug:
            console.print_exception(e)
        sys.exit(1)


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and captured step output)",
)
@click.pass_context
def cli(ctx, debug):
    """RelayCI: run declarative CI/CD pipelines locally."""
    set_console(Console(debug=debug))
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command()
@click.option("--pipeline", "pipeline_file", default=None, help="Pipeline file (YAML or .py)")
@click.option("--workers", default=None, type=click.IntRange(min=1), help="Max stages running in parallel")
@click.option("--timeout", default=None, type=click.FloatRange(min=0, min_open=True), help="Default step timeout in seconds")
@click.option("--workspace", default=".", show_default=True, help="Directory steps run in")
@click.option("--event", default="push", show_default=True, help="Trigger event to evaluate")
@click.option("--branch", default=None, help="Branch to evaluate (defaults to the current git branch)")
@click.option("--secrets-file", default=None, help="YAML/JSON file of secret values")
@click.option("--secret-env", multiple=True, help="Expose this environment variable as a secret (repeatable)")
@click.option("--force", is_flag=True, default=False, help="Run even if the trigger does not match")
@click.option("--stop-on-failure/--no-stop-on-failure", default=False, help="Stop scheduling new stages after the first failure")
@click.pass_context
def run(ctx, pipeline_file, workers, timeout, workspace, event, branch, secrets_file, secret_env, force, stop_on_failure):
    """Run a pipeline."""
    console = get_console()
    debug = ctx.obj.get("debug", False)

    path = discover_pipeline(pipeline_file)
    pipeline = _load_or_exit(path, debug)

    git_branch, sha = workspace_facts(workspace)
    branch = branch or git_branch
    if not force and not should_run(pipeline, event, branch):
        console.print_trigger_skipped(pipeline.name, event, branch)
        return

    try:
        settings = EngineSettings.from_env(max_workers=workers, step_timeout=timeout)
    except ConfigurationError as e:
        console.print_error("Invalid settings", e.message, details=[f"{k}={v}" for k, v in e.details.items()])
        sys.exit(1)
    cancel = CancelToken()
    previous = signal.signal(signal.SIGINT, lambda signum, frame: cancel.cancel())
    run_id = uuid.uuid4().hex[:12]

    try:
        with open_secrets(settings, secrets_file=secrets_file, names=secret_env) as secrets:
            console.set_masker(secrets.mask)
            console.print_run_started(pipeline.name, str(path), len(pipeline.stages), run_id)
            if sha:
                console.print_debug(f"branch={branch} commit={sha}")
            result = run_pipeline(
                pipeline,
                workspace=workspace,
                secrets=secrets,
                settings=settings,
                cancel=cancel,
                stop_on_failure=stop_on_failure,
                run_id=run_id,
            )
            console.print_results(result)
    except Exception as e:
        console.print_exception(e)
        sys.exit(1)
    finally:
        console.set_masker(None)
        signal.signal(signal.SIGINT, previous)

    if result.cancelled:
        console.print_info("\nInterrupted by user")
        sys.exit(130)
    if not result.ok:
        sys.exit(1)


@cli.command()
@click.option("--pipeline", "pipeline_file", default=None, help="Pipeline file (YAML or .py)")
@click.pass_context
def validate(ctx, pipeline_file):
    """Check a pipeline definition without running it."""
    path = discover_pipeline(pipeline_file)
    pipeline = _load_or_exit(path, ctx.obj.get("debug", False))
    console = get_console()
    console.print_info(f"OK: {pipeline.name} ({len(pipeline.stages)} stages)")
    names = required_secrets(pipeline)
    if names:
        console.print_info(f"Secrets referenced: {', '.join(names)}")


@cli.command()
@click.option("--pipeline", "pipeline_file", default=None, help="Pipeline file (YAML or .py)")
@click.pass_context
def plan(ctx, pipeline_file):
    """Print the stage execution order."""
    console = get_console()
    path = discover_pipeline(pipeline_file)
    pipeline = _load_or_exit(path, ctx.obj.get("debug", False))
    levels, needs = describe_levels(pipeline)

    trigger = pipeline.trigger
    console.print_header(f"{pipeline.name}")
    console.print_info(f"on: {', '.join(trigger.events)}" + (f" (branches: {', '.join(trigger.branches)})" if trigger.branches else ""))
    console.print_plan(levels)
    for stage in pipeline.stages:
        for step in stage.steps:
            params = dict(step.params)
            if step.run is not None:
                params["run"] = step.run
            what = get_action(step.uses).describe(params)
            console.print_info(f"  {stage.name} / {step.name}: {what}")
    if ctx.obj.get("debug", False):
        for name, deps in needs.items():
            console.print_debug(f"{name} needs {list(deps)}")


@cli.command("actions")
def list_actions():
    """List the built-in `uses:` actions."""
    console = get_console()
    for name in known_actions():
        console.print_info(f"  {name:<20} ({get_action(name).tool})")


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
