from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Callable, Mapping, Optional, TypeVar

from .errors import ConfigurationError

T = TypeVar("T")

STEP_TIMEOUT = 3600.0
OUTPUT_TAIL = 4000
SECRET_PREFIX = "RELAYCI_SECRET_"


def default_workers() -> int:
    c = os.cpu_count() or 2
    return max(1, c - 1)


def _env_value(environ: Mapping[str, str], name: str, convert: Callable[[str], T]) -> Optional[T]:
    raw = environ.get(name, "").strip()
    if not raw:
        return None
    try:
        return convert(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a {convert.__name__}, got {raw!r}", setting=name) from None


@dataclass(frozen=True)
class EngineSettings:
    max_workers: int = field(default_factory=default_workers)
    step_timeout: float = STEP_TIMEOUT
    output_tail: int = OUTPUT_TAIL
    secret_prefix: str = SECRET_PREFIX
    secrets_file: Optional[str] = None

    def __post_init__(self) -> None:
        if self.max_workers < 1:
            raise ConfigurationError(f"max_workers must be at least 1, got {self.max_workers}", setting="max_workers")
        if self.step_timeout <= 0:
            raise ConfigurationError(f"step_timeout must be positive, got {self.step_timeout}", setting="step_timeout")
        if self.output_tail < 0:
            raise ConfigurationError(f"output_tail must not be negative, got {self.output_tail}", setting="output_tail")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, **overrides) -> "EngineSettings":
        """
        Read RELAYCI_* variables now, then apply any non-None keyword (CLI flags).

        Raises:
            ConfigurationError: a variable or override is not usable
        """
        environ = os.environ if environ is None else environ
        values = {
            "max_workers": _env_value(environ, "RELAYCI_MAX_WORKERS", int),
            "step_timeout": _env_value(environ, "RELAYCI_STEP_TIMEOUT", float),
            "output_tail": _env_value(environ, "RELAYCI_OUTPUT_TAIL", int),
            "secret_prefix": environ.get("RELAYCI_SECRET_PREFIX") or None,
            "secrets_file": environ.get("RELAYCI_SECRETS_FILE") or None,
        }
        values.update(overrides)
        return cls(**{k: v for k, v in values.items() if v is not None})
