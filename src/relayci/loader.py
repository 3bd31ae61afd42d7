# loader.py
"""
Pipeline definition loading.

Two formats are accepted:
  - YAML shaped like a GitHub Actions workflow (name / on / env / jobs)
  - a Python file defining pipeline() -> Pipeline or PIPELINE = Pipeline(...)

Every definition is fully validated here (actions, params, literal
credentials, unknown needs, cycles) so a bad pipeline fails before any
stage runs.
"""
from __future__ import annotations

import re
import runpy
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

import yaml

from .actions import get_action
from .dag import validate
from .errors import DefinitionError
from .model import Pipeline, RetryPolicy, Stage, Step, Trigger
from .secrets import EXPR_RE, referenced_secrets

# keys that must never carry a literal value
CREDENTIAL_KEY_RE = re.compile(r"(token|password|passwd|secret|api[-_]?key|access[-_]?key|private[-_]?key)", re.I)

YAML_SUFFIXES = (".yml", ".yaml")


# ----------------------------------------------------------------------
# Public API
# ----------------------------------------------------------------------

def load_pipeline(path: str | Path) -> Pipeline:
    p = Path(path).expanduser().resolve()
    if not p.exists():
        raise FileNotFoundError(f"Pipeline file not found: {p}")
    if p.suffix in YAML_SUFFIXES:
        return parse_pipeline(p.read_text(encoding="utf-8"), default_name=p.stem)
    if p.suffix == ".py":
        return load_workflow(p)
    raise DefinitionError(f"Pipeline must be a .yml/.yaml or .py file, got: {p.name}")


def parse_pipeline(text: str, *, default_name: str = "pipeline") -> Pipeline:
    try:
        doc = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise DefinitionError(f"invalid YAML: {e}") from e
    if not isinstance(doc, dict):
        raise DefinitionError("pipeline definition must be a mapping at the top level")
    return pipeline_from_dict(doc, default_name=default_name)


def pipeline_from_dict(doc: Mapping[str, Any], *, default_name: str = "pipeline") -> Pipeline:
    # YAML 1.1 reads a bare `on:` key as boolean True
    on = doc.get("on", doc.get(True))
    jobs = doc.get("jobs") or doc.get("stages")
    if not isinstance(jobs, dict) or not jobs:
        raise DefinitionError("pipeline must define at least one job under 'jobs'")

    pipeline = Pipeline(
        name=str(doc.get("name") or default_name),
        trigger=_parse_trigger(on),
        env=_parse_env(doc.get("env"), where="pipeline"),
        stages=tuple(_parse_stage(str(name), spec) for name, spec in jobs.items()),
    )
    validate_pipeline(pipeline)
    return pipeline


def validate_pipeline(pipeline: Pipeline) -> List[List[str]]:
    """Structural + action checks. Returns the topological levels."""
    if not pipeline.stages:
        raise DefinitionError("pipeline has no stages")
    _check_literal_credentials(pipeline.env, where="pipeline env")
    for stage in pipeline.stages:
        if not stage.steps:
            raise DefinitionError(f"stage '{stage.name}' has no steps", stage=stage.name)
        _check_literal_credentials(stage.env, where=f"stage '{stage.name}' env", stage=stage.name)
        for step in stage.steps:
            _validate_step(stage.name, step)
    return validate(pipeline.stages)


def load_workflow(path: str | Path) -> Pipeline:
    """
    Load a pipeline from a python file path.

    The file must define either:
      - pipeline() -> Pipeline
      - PIPELINE = Pipeline(...)
    """
    wf_path = Path(path).expanduser().resolve()
    if not wf_path.exists():
        raise FileNotFoundError(f"Workflow file not found: {wf_path}")

    module_name = f"relayci_workflow_{wf_path.stem}"
    globals_dict = runpy.run_path(str(wf_path), run_name=module_name)

    pipeline = None
    if "pipeline" in globals_dict and callable(globals_dict["pipeline"]):
        pipeline = globals_dict["pipeline"]()
    elif "PIPELINE" in globals_dict:
        pipeline = globals_dict["PIPELINE"]

    if not isinstance(pipeline, Pipeline):
        raise DefinitionError(
            "Workflow must return/define a Pipeline. "
            "Define pipeline() -> Pipeline or PIPELINE = Pipeline(...).",
            path=str(wf_path),
        )

    validate_pipeline(pipeline)
    return pipeline


# ----------------------------------------------------------------------
# Parsing helpers
# ----------------------------------------------------------------------

def _parse_trigger(on: Any) -> Trigger:
    if on is None:
        return Trigger(events=("push",))
    if isinstance(on, str):
        return Trigger(events=(on,))
    if isinstance(on, list):
        return Trigger(events=tuple(str(e) for e in on))
    if isinstance(on, dict):
        events: List[str] = []
        branches: List[str] = []
        for event, cfg in on.items():
            events.append(str(event))
            if isinstance(cfg, dict):
                branches.extend(_as_str_list(cfg.get("branches"), what="branches"))
        return Trigger(events=tuple(events), branches=tuple(dict.fromkeys(branches)))
    raise DefinitionError(f"'on' must be a string, list or mapping, got {type(on).__name__}")


def _parse_stage(name: str, spec: Any) -> Stage:
    if not isinstance(spec, dict):
        raise DefinitionError(f"job '{name}' must be a mapping", stage=name)
    steps = spec.get("steps")
    if not isinstance(steps, list) or not steps:
        raise DefinitionError(f"job '{name}' must have at least one step", stage=name)
    return Stage(
        name=name,
        needs=tuple(_as_str_list(spec.get("needs"), what="needs", stage=name)),
        env=_parse_env(spec.get("env"), where=f"job '{name}'", stage=name),
        timeout=_parse_timeout(spec, stage=name),
        steps=tuple(_parse_step(name, idx, s) for idx, s in enumerate(steps, start=1)),
    )


def _parse_step(stage: str, idx: int, spec: Any) -> Step:
    if not isinstance(spec, dict):
        raise DefinitionError(f"step #{idx} must be a mapping", stage=stage)

    run, uses = spec.get("run"), spec.get("uses")
    name = spec.get("name") or (str(run).strip().splitlines()[0] if run else uses) or f"step-{idx}"

    params = spec.get("with") or {}
    if not isinstance(params, dict):
        raise DefinitionError("'with' must be a mapping", stage=stage, step=name)

    return Step(
        name=str(name),
        run=str(run) if run is not None else None,
        uses=str(uses) if uses is not None else None,
        params=params,
        env=_parse_env(spec.get("env"), where=f"step '{name}'", stage=stage),
        cwd=spec.get("working-directory"),
        timeout=_parse_timeout(spec, stage=stage, step=str(name)),
        retry=_parse_retry(spec.get("retry"), stage=stage, step=str(name)),
    )


def _parse_env(env: Any, *, where: str, stage: Optional[str] = None) -> Dict[str, str]:
    if env is None:
        return {}
    if not isinstance(env, dict):
        raise DefinitionError(f"env of {where} must be a mapping", stage=stage)
    return {str(k): "" if v is None else str(v) for k, v in env.items()}


def _parse_timeout(spec: Mapping[str, Any], *, stage: str, step: Optional[str] = None) -> Optional[float]:
    try:
        if spec.get("timeout-seconds") is not None:
            value = float(spec["timeout-seconds"])
        elif spec.get("timeout-minutes") is not None:
            value = float(spec["timeout-minutes"]) * 60
        else:
            return None
    except (TypeError, ValueError):
        raise DefinitionError("timeout must be a number", stage=stage, step=step) from None
    if value <= 0:
        raise DefinitionError("timeout must be positive", stage=stage, step=step)
    return value


def _parse_retry(spec: Any, *, stage: str, step: str) -> Optional[RetryPolicy]:
    if spec is None:
        return None
    if isinstance(spec, int) and not isinstance(spec, bool):
        spec = {"attempts": spec}
    if not isinstance(spec, dict):
        raise DefinitionError("retry must be a mapping or an attempt count", stage=stage, step=step)
    try:
        policy = RetryPolicy(
            attempts=int(spec.get("attempts", 3)),
            backoff=float(spec.get("backoff-seconds", 1.0)),
            factor=float(spec.get("factor", 2.0)),
        )
    except (TypeError, ValueError):
        raise DefinitionError("retry values must be numbers", stage=stage, step=step) from None
    if policy.attempts < 1 or policy.backoff < 0 or policy.factor < 1:
        raise DefinitionError("retry needs attempts >= 1, backoff >= 0, factor >= 1", stage=stage, step=step)
    return policy


def _as_str_list(value: Any, *, what: str, stage: Optional[str] = None) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, list) and all(isinstance(v, str) for v in value):
        return list(value)
    raise DefinitionError(f"'{what}' must be a string or a list of strings", stage=stage)


# ----------------------------------------------------------------------
# Validation helpers
# ----------------------------------------------------------------------

def _validate_step(stage: str, step: Step) -> None:
    if (step.run is None) == (step.uses is None):
        raise DefinitionError("step must set exactly one of 'run' or 'uses'", stage=stage, step=step.name)
    if step.uses is not None:
        action = get_action(step.uses)
        action.validate(step.params)
    _check_literal_credentials(step.env, where=f"step '{step.name}' env", stage=stage, step=step.name)
    _check_literal_credentials(step.params, where=f"step '{step.name}' with", stage=stage, step=step.name)


def _check_literal_credentials(
    values: Mapping[str, Any],
    *,
    where: str,
    stage: Optional[str] = None,
    step: Optional[str] = None,
) -> None:
    for key, value in values.items():
        _check_credential_value(str(key), value, where=where, stage=stage, step=step)


def _check_credential_value(
    path: str,
    value: Any,
    *,
    where: str,
    stage: Optional[str],
    step: Optional[str],
) -> None:
    # nested mappings (build-args, extra-vars) and lists are walked; the
    # innermost key decides whether a scalar counts as a credential
    if isinstance(value, Mapping):
        for key, inner in value.items():
            _check_credential_value(f"{path}.{key}", inner, where=where, stage=stage, step=step)
        return
    if isinstance(value, (list, tuple)):
        for inner in value:
            _check_credential_value(path, inner, where=where, stage=stage, step=step)
        return
    if value is None or isinstance(value, bool):
        return
    text = str(value)
    if not text or not CREDENTIAL_KEY_RE.search(path.rsplit(".", 1)[-1]):
        return
    if not _is_reference(text):
        raise DefinitionError(
            f"{where}: '{path}' looks like a credential; use ${{{{ secrets.NAME }}}} instead of a literal",
            stage=stage,
            step=step,
        )


def _is_reference(value: str) -> bool:
    return bool(EXPR_RE.search(value))


def describe_levels(pipeline: Pipeline) -> Tuple[List[List[str]], Dict[str, Tuple[str, ...]]]:
    """Levels plus each stage's needs; used by `relayci plan`."""
    levels = validate(pipeline.stages)
    return levels, {s.name: s.needs for s in pipeline.stages}


def required_secrets(pipeline: Pipeline) -> List[str]:
    """Every secret name the pipeline references, sorted."""
    names: List[str] = referenced_secrets(dict(pipeline.env))
    for stage in pipeline.stages:
        names.extend(referenced_secrets(dict(stage.env)))
        for step in stage.steps:
            names.extend(referenced_secrets([step.run or "", dict(step.env), dict(step.params)]))
    return sorted(set(names))
