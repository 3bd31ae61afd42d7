# dsl.py
from __future__ import annotations

from dataclasses import replace
from typing import Any, Callable, Dict, Iterable, List, Optional

from .model import Pipeline, RetryPolicy, Stage, Step, Trigger


# ---------------------------------------------------------------------
# Step helpers
# ---------------------------------------------------------------------

def sh(
    name: str,
    cmd: str,
    *,
    cwd: str | None = None,
    env: Optional[Dict[str, str]] = None,
    timeout: float | None = None,
    retry: int | RetryPolicy | None = None,
) -> Step:
    """Create a shell step."""
    return Step(name=name, run=cmd, cwd=cwd, env=env or {}, timeout=timeout, retry=_retry(retry))


def action(
    name: str,
    uses: str,
    *,
    env: Optional[Dict[str, str]] = None,
    timeout: float | None = None,
    retry: int | RetryPolicy | None = None,
    cwd: str | None = None,
    **params: Any,
) -> Step:
    """
    Create an action step. Keyword params use underscores and are mapped to
    the dashed names actions expect: image_ref="x" -> with: {image-ref: x}.
    """
    return Step(
        name=name,
        uses=uses,
        params={k.replace("_", "-"): v for k, v in params.items()},
        env=env or {},
        timeout=timeout,
        retry=_retry(retry),
        cwd=cwd,
    )


def _retry(value: int | RetryPolicy | None) -> Optional[RetryPolicy]:
    if value is None or isinstance(value, RetryPolicy):
        return value
    return RetryPolicy(attempts=int(value))


# ---------------------------------------------------------------------
# Functional stage helper
# ---------------------------------------------------------------------

def stage(
    name: str,
    *steps: Step,  # allow: stage("x", sh(...), sh(...))
    needs: Optional[List[str]] = None,
    env: Optional[Dict[str, str]] = None,
    timeout: float | None = None,
    cwd: str | None = None,  # default cwd applied to steps missing cwd
) -> Stage:
    if not steps:
        raise ValueError(f"stage({name!r}) must have at least one step")

    steps_final = list(steps)
    if cwd is not None:
        steps_final = [s if s.cwd is not None else replace(s, cwd=cwd) for s in steps_final]

    return Stage(name=name, steps=tuple(steps_final), needs=tuple(needs or ()), env=env or {}, timeout=timeout)


# ---------------------------------------------------------------------
# Builder API
# ---------------------------------------------------------------------

class StageBuilder:
    def __init__(self, name: str):
        self.name = name
        self._needs: list[str] = []
        self._steps: list[Step] = []
        self._env: dict[str, str] = {}
        self._timeout: float | None = None

    def depends_on(self, *stage_names: str):
        self._needs.extend(stage_names)
        return self

    def define_step(self, name: str, run: str, cwd: str | None = None):
        self._steps.append(Step(name=name, run=run, cwd=cwd))
        return self

    def use(self, name: str, uses: str, **params: Any):
        self._steps.append(action(name, uses, **params))
        return self

    def with_env(self, **env):
        # force values to str for env compatibility
        self._env.update({k: str(v) for k, v in env.items()})
        return self

    def with_timeout(self, seconds: float):
        self._timeout = seconds
        return self

    def build(self) -> Stage:
        if not self._steps:
            raise ValueError(f"Stage '{self.name}' has no steps")
        return Stage(
            name=self.name,
            steps=tuple(self._steps),
            needs=tuple(self._needs),
            env=dict(self._env),
            timeout=self._timeout,
        )


def build(name: str) -> StageBuilder:
    """Convenience: build('test').define_step(...).build()"""
    return StageBuilder(name)


# ---------------------------------------------------------------------
# Matrix
# ---------------------------------------------------------------------

class Matrix:
    """
    Minimal matrix expander.

    Example:
        matrix("py", ["3.11", "3.12"]).stages(
            lambda v: stage(f"test-py{v}", sh(...))
        )
    """
    def __init__(self, key: str, values: Iterable[Any]):
        self.key = key
        self.values = list(values)

    def stages(self, builder: Callable[[Any], Stage]) -> List[Stage]:
        return [builder(v) for v in self.values]


def matrix(key: str, values: Iterable[Any]) -> Matrix:
    return Matrix(key, values)


# ---------------------------------------------------------------------
# Pipeline helper (single-file story)
# ---------------------------------------------------------------------

def pipeline(
    name: str,
    *stages: Stage | List[Stage],
    on: str | List[str] = "push",
    branches: Optional[List[str]] = None,
    env: Optional[Dict[str, str]] = None,
) -> Pipeline:
    """
    Users can write, in relayci_pipeline.py:

        from relayci.dsl import pipeline as define, stage, sh

        def pipeline():
            return define("ci", stage("test", sh("Run tests", "pytest -q")))
    """
    flat: List[Stage] = []
    for s in stages:
        flat.extend(s if isinstance(s, list) else [s])
    events = (on,) if isinstance(on, str) else tuple(on)
    return Pipeline(
        name=name,
        stages=tuple(flat),
        trigger=Trigger(events=events, branches=tuple(branches or ())),
        env=env or {},
    )
