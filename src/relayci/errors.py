# errors.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass(eq=False)
class PipelineError(Exception):
    """
    Structured pipeline error with enough context for:
      - clean CLI output
      - per-stage failure records
      - debugging without full tracebacks
    """
    kind: str
    message: str
    stage: Optional[str] = None
    step: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        lines = [f"{self.kind}: {self.message}"]
        if self.stage:
            lines.append(f"stage={self.stage}")
        if self.step:
            lines.append(f"step={self.step}")
        for k, v in self.details.items():
            lines.append(f"{k}={v}")
        return "\n".join(lines)


class DefinitionError(PipelineError):
    """Malformed pipeline definition. Fails the run before any stage starts."""

    def __init__(self, message: str, *, stage: str | None = None, step: str | None = None, **details: Any):
        super().__init__(kind="DefinitionError", message=message, stage=stage, step=step, details=details)


class CyclicDependency(DefinitionError):
    def __init__(self, stuck: List[str]):
        super().__init__(f"stage dependencies form a cycle; stuck stages: {stuck}")
        self.kind = "CyclicDependency"
        self.stuck = list(stuck)


class StepFailure(PipelineError):
    """A step exited nonzero (or exhausted its retries)."""

    def __init__(
        self,
        *,
        stage: str,
        step: str,
        cmd: str,
        exit_code: int,
        output: str = "",
        attempts: int = 1,
    ):
        super().__init__(
            kind="StepFailure",
            message=f"step '{step}' failed (exit={exit_code}): {cmd}",
            stage=stage,
            step=step,
            details={"exit_code": exit_code, "attempts": attempts} if attempts > 1 else {"exit_code": exit_code},
        )
        self.cmd = cmd
        self.exit_code = exit_code
        self.output = output
        self.attempts = attempts


class Timeout(PipelineError):
    """A step ran past its timeout; its process group was killed."""

    def __init__(self, *, stage: str, step: str, cmd: str, seconds: float, output: str = ""):
        super().__init__(
            kind="Timeout",
            message=f"step '{step}' timed out after {seconds:g}s: {cmd}",
            stage=stage,
            step=step,
            details={"timeout": seconds},
        )
        self.cmd = cmd
        self.seconds = seconds
        self.output = output


class MissingSecret(PipelineError):
    def __init__(self, name: str, *, stage: str | None = None, step: str | None = None):
        super().__init__(
            kind="MissingSecret",
            message=f"secret '{name}' is not defined for this run",
            stage=stage,
            step=step,
            details={"secret": name},
        )
        self.name = name


class ExternalToolUnavailable(PipelineError):
    def __init__(self, tool: str, hint: str, *, stage: str | None = None, step: str | None = None):
        super().__init__(
            kind="ExternalToolUnavailable",
            message=f"{tool} is not available",
            stage=stage,
            step=step,
            details={"tool": tool, "hint": hint},
        )
        self.tool = tool
        self.hint = hint


class Cancelled(PipelineError):
    def __init__(self, *, stage: str | None = None, step: str | None = None):
        super().__init__(kind="Cancelled", message="run was cancelled", stage=stage, step=step)


class ConfigurationError(PipelineError):
    """Unusable engine setting (environment variable or CLI flag)."""

    def __init__(self, message: str, **details: Any):
        super().__init__(kind="ConfigurationError", message=message, details=details)
