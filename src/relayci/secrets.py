# secrets.py
"""
Run-scoped secret handling.

Secrets are loaded once when a run starts, referenced from the pipeline as
``${{ secrets.NAME }}``, and only ever materialised inside the environment
of the step subprocess that asked for them. Anything the engine prints or
stores goes through ``SecretProvider.mask`` first.
"""
from __future__ import annotations

import json
import os
import re
import threading
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

import yaml

from .errors import DefinitionError, MissingSecret

MASK = "***"

# ${{ secrets.NAME }} / ${{ env.NAME }}
EXPR_RE = re.compile(r"\$\{\{\s*(secrets|env)\.([A-Za-z_][A-Za-z0-9_]*)\s*\}\}")

# stands in for a secret inside argv until the executor turns it into a
# shell variable reference; `{` forces shlex.quote to single-quote it
SECRET_VAR_PREFIX = "__RELAYCI_SECRET_"
PLACEHOLDER_RE = re.compile(r"\{\{relayci-env:([A-Za-z_][A-Za-z0-9_]*)\}\}")


def placeholder(var: str) -> str:
    return "{{relayci-env:" + var + "}}"


def expand_placeholders(text: str, *, quoted: bool) -> str:
    """
    Replace placeholders with `${VAR}`.

    quoted=True is for scripts built with shlex.join, where every placeholder
    sits inside a single-quoted word: the quote is closed around a
    double-quoted expansion.
    """
    if quoted:
        return PLACEHOLDER_RE.sub(lambda m: "'\"${" + m.group(1) + "}\"'", text)
    return PLACEHOLDER_RE.sub(lambda m: "${" + m.group(1) + "}", text)


# ---------------------------------------------------------------------
# Sources
# ---------------------------------------------------------------------

class MappingSecretSource:
    def __init__(self, values: Mapping[str, str]):
        self._values = dict(values)

    def load(self) -> Dict[str, str]:
        return {k: str(v) for k, v in self._values.items()}


class EnvSecretSource:
    """
    Read secrets from environment variables.

    With prefix "RELAYCI_SECRET_", RELAYCI_SECRET_REGISTRY_TOKEN becomes the
    secret REGISTRY_TOKEN. An empty prefix exposes nothing unless `names`
    lists the variables to pick up explicitly.
    """

    def __init__(
        self,
        prefix: str = "RELAYCI_SECRET_",
        *,
        names: Iterable[str] = (),
        environ: Optional[Mapping[str, str]] = None,
    ):
        self.prefix = prefix
        self.names = list(names)
        self.environ = environ if environ is not None else os.environ

    def load(self) -> Dict[str, str]:
        out: Dict[str, str] = {}
        if self.prefix:
            for key, value in self.environ.items():
                if key.startswith(self.prefix) and len(key) > len(self.prefix):
                    out[key[len(self.prefix):]] = value
        for name in self.names:
            if name in self.environ:
                out[name] = self.environ[name]
        return out


class FileSecretSource:
    """A flat YAML or JSON mapping of secret name -> value."""

    def __init__(self, path: str | Path):
        self.path = Path(path).expanduser()

    def load(self) -> Dict[str, str]:
        if not self.path.exists():
            raise FileNotFoundError(f"Secrets file not found: {self.path}")
        text = self.path.read_text(encoding="utf-8")
        if self.path.suffix == ".json":
            data = json.loads(text) if text.strip() else {}
        else:
            data = yaml.safe_load(text) or {}
        if not isinstance(data, dict):
            raise DefinitionError(f"secrets file must contain a mapping, got {type(data).__name__}", path=str(self.path))
        return {str(k): str(v) for k, v in data.items() if v is not None}


# ---------------------------------------------------------------------
# Provider
# ---------------------------------------------------------------------

class SecretProvider:
    """
    Holds the secret values for exactly one run.

    Use as a context manager so the values are dropped when the run ends:

        with SecretProvider.from_sources([EnvSecretSource()]) as secrets:
            run_pipeline(pipeline, secrets=secrets)
    """

    def __init__(self, values: Optional[Mapping[str, str]] = None):
        self._values: Dict[str, str] = dict(values or {})
        self._lock = threading.Lock()
        self._closed = False

    @classmethod
    def from_sources(cls, sources: Iterable[Any]) -> "SecretProvider":
        # later sources win
        values: Dict[str, str] = {}
        for source in sources:
            values.update(source.load())
        return cls(values)

    def __enter__(self) -> "SecretProvider":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"SecretProvider(names={self.names})"

    @property
    def names(self) -> List[str]:
        return sorted(self._values)

    def __contains__(self, name: str) -> bool:
        return name in self._values

    def get(self, name: str, *, stage: str | None = None, step: str | None = None) -> str:
        with self._lock:
            if self._closed:
                raise RuntimeError("SecretProvider is closed; secrets only live for one run")
            try:
                return self._values[name]
            except KeyError:
                raise MissingSecret(name, stage=stage, step=step) from None

    def resolve(
        self,
        value: Any,
        env: Mapping[str, str],
        *,
        stage: str | None = None,
        step: str | None = None,
    ) -> Any:
        """Substitute ${{ secrets.X }} / ${{ env.X }} inside strings, lists and dicts."""
        def sub(m: re.Match) -> str:
            scope, name = m.group(1), m.group(2)
            if scope == "secrets":
                return self.get(name, stage=stage, step=step)
            return env.get(name, "")

        return _substitute(value, sub)

    def defer(
        self,
        value: Any,
        env: Mapping[str, str],
        *,
        stage: str | None = None,
        step: str | None = None,
    ) -> Tuple[Any, Dict[str, str]]:
        """
        Like resolve(), but secret values are kept out of the result.

        Each ${{ secrets.X }} becomes a placeholder for the variable
        __RELAYCI_SECRET_X, which is returned with its value in the second
        item. An ${{ env.X }} whose value carries a secret becomes a
        placeholder for X itself.
        """
        extra: Dict[str, str] = {}

        def sub(m: re.Match) -> str:
            scope, name = m.group(1), m.group(2)
            if scope == "secrets":
                var = SECRET_VAR_PREFIX + name
                extra[var] = self.get(name, stage=stage, step=step)
                return placeholder(var)
            current = env.get(name, "")
            if current and self.mask(current) != current:
                return placeholder(name)
            return current

        return _substitute(value, sub), extra

    def mask(self, text: str) -> str:
        if not text or not self._values:
            return text
        # longest first so a secret containing another is masked whole
        for value in sorted(self._values.values(), key=len, reverse=True):
            if value:
                text = text.replace(value, MASK)
        return text

    def close(self) -> None:
        with self._lock:
            self._values.clear()
            self._closed = True


def _substitute(value: Any, sub: Callable[[re.Match], str]) -> Any:
    if isinstance(value, str):
        return EXPR_RE.sub(sub, value)
    if isinstance(value, (list, tuple)):
        return [_substitute(v, sub) for v in value]
    if isinstance(value, Mapping):
        return {k: _substitute(v, sub) for k, v in value.items()}
    return value


def referenced_secrets(value: Any) -> List[str]:
    """Names of all secrets referenced anywhere inside `value`."""
    found: List[str] = []
    if isinstance(value, str):
        found.extend(m.group(2) for m in EXPR_RE.finditer(value) if m.group(1) == "secrets")
    elif isinstance(value, (list, tuple)):
        for v in value:
            found.extend(referenced_secrets(v))
    elif isinstance(value, Mapping):
        for v in value.values():
            found.extend(referenced_secrets(v))
    return found
