from .dsl import action, build, matrix, pipeline, sh, stage, StageBuilder
from .errors import (
    Cancelled,
    ConfigurationError,
    CyclicDependency,
    DefinitionError,
    ExternalToolUnavailable,
    MissingSecret,
    PipelineError,
    StepFailure,
    Timeout,
)
from .executor import CancelToken, StepExecutor
from .loader import load_pipeline, parse_pipeline
from .model import Pipeline, RetryPolicy, RunResult, Stage, StageResult, StageStatus, Step, StepResult, Trigger
from .runner import run_pipeline
from .scheduler import Scheduler
from .secrets import SecretProvider
from .stage import StageRunner

__all__ = [
    "action", "build", "matrix", "pipeline", "sh", "stage", "StageBuilder",
    "Cancelled", "ConfigurationError", "CyclicDependency", "DefinitionError", "ExternalToolUnavailable",
    "MissingSecret", "PipelineError", "StepFailure", "Timeout",
    "CancelToken", "StepExecutor", "StageRunner", "Scheduler", "SecretProvider",
    "load_pipeline", "parse_pipeline", "run_pipeline",
    "Pipeline", "RetryPolicy", "RunResult", "Stage", "StageResult", "StageStatus",
    "Step", "StepResult", "Trigger",
]
