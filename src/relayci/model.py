# model.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from fnmatch import fnmatch
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple


class StageStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def terminal(self) -> bool:
        return self in (StageStatus.SUCCESS, StageStatus.FAILED, StageStatus.SKIPPED)


# Steps share the terminal vocabulary of stages.
StepStatus = StageStatus


def _frozen(mapping: Optional[Mapping[str, Any]]) -> Mapping[str, Any]:
    return MappingProxyType(dict(mapping or {}))


@dataclass(frozen=True)
class RetryPolicy:
    """Re-run a failing step up to `attempts` times, sleeping backoff * factor**n between tries."""
    attempts: int = 1
    backoff: float = 1.0
    factor: float = 2.0

    def delay(self, attempt: int) -> float:
        # attempt is 1-based; the first retry waits `backoff` seconds
        return self.backoff * (self.factor ** (attempt - 1))


@dataclass(frozen=True)
class Step:
    """
    A single external-tool invocation inside a stage.

    Exactly one of `run` (shell command) or `uses` (action identifier) is set.
    """
    name: str
    run: Optional[str] = None
    uses: Optional[str] = None
    params: Mapping[str, Any] = field(default_factory=dict)
    env: Mapping[str, str] = field(default_factory=dict)
    cwd: Optional[str] = None
    timeout: Optional[float] = None
    retry: Optional[RetryPolicy] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "params", _frozen(self.params))
        object.__setattr__(self, "env", _frozen(self.env))

    @property
    def retryable(self) -> bool:
        return self.retry is not None and self.retry.attempts > 1

    @property
    def action(self) -> str:
        return self.uses or "shell"


@dataclass(frozen=True)
class Stage:
    """A named, ordered group of steps with explicit dependencies on other stages."""
    name: str
    steps: Tuple[Step, ...]
    needs: Tuple[str, ...] = ()
    env: Mapping[str, str] = field(default_factory=dict)
    timeout: Optional[float] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "steps", tuple(self.steps))
        object.__setattr__(self, "needs", tuple(self.needs))
        object.__setattr__(self, "env", _frozen(self.env))


@dataclass(frozen=True)
class Trigger:
    """
    When a pipeline fires: an event name plus optional branch globs.

    No branches means any branch matches.
    """
    events: Tuple[str, ...] = ("push",)
    branches: Tuple[str, ...] = ()

    def matches(self, event: str, branch: Optional[str] = None) -> bool:
        if event != "manual" and event not in self.events:
            return False
        if not self.branches or branch is None:
            return True
        return any(fnmatch(branch, pat) for pat in self.branches)


@dataclass(frozen=True)
class Pipeline:
    name: str
    stages: Tuple[Stage, ...]
    trigger: Trigger = field(default_factory=Trigger)
    env: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "stages", tuple(self.stages))
        object.__setattr__(self, "env", _frozen(self.env))

    def stage(self, name: str) -> Stage:
        for s in self.stages:
            if s.name == name:
                return s
        raise KeyError(name)


# ----------------------------------------------------------------------
# Results
# ----------------------------------------------------------------------

@dataclass
class StepResult:
    name: str
    status: StepStatus
    exit_code: Optional[int] = None
    output: str = ""
    attempts: int = 0
    duration: float = 0.0
    error: Optional[str] = None  # error kind, e.g. "Timeout"

    @property
    def ok(self) -> bool:
        return self.status is StepStatus.SUCCESS


@dataclass
class StageResult:
    name: str
    status: StageStatus
    steps: List[StepResult] = field(default_factory=list)
    error: Optional[str] = None
    duration: float = 0.0

    @property
    def output(self) -> str:
        return "\n".join(s.output for s in self.steps if s.output)


@dataclass
class RunResult:
    """
    One execution of a pipeline.

    `stages` is append-only: each entry is written once, when its stage
    reaches a terminal status.
    """
    run_id: str
    pipeline: str
    stages: Dict[str, StageResult] = field(default_factory=dict)
    cancelled: bool = False

    def record(self, result: StageResult) -> None:
        if result.name in self.stages:
            raise RuntimeError(f"stage '{result.name}' already has a terminal result")
        self.stages[result.name] = result

    def status_of(self, name: str) -> StageStatus:
        res = self.stages.get(name)
        return res.status if res else StageStatus.PENDING

    @property
    def statuses(self) -> Dict[str, str]:
        return {name: res.status.value for name, res in self.stages.items()}

    @property
    def ok(self) -> bool:
        if self.cancelled:
            return False
        return not any(r.status is StageStatus.FAILED for r in self.stages.values())

    @property
    def exit_code(self) -> int:
        return 0 if self.ok else 1
