# actions/base.py
from __future__ import annotations

import shlex
from typing import Any, Dict, List, Mapping, Optional, Sequence

from ..errors import DefinitionError


TOOL_HINTS = {
    "sh": "A POSIX shell (sh) must be on PATH.",
    "npm": "Install Node.js (includes npm) or fix PATH.",
    "node": "Install Node.js or fix PATH.",
    "docker": "Install Docker and ensure the daemon is running.",
    "trivy": "Install Trivy (https://aquasecurity.github.io/trivy) or fix PATH.",
    "sonar-scanner": "Install SonarScanner CLI or fix PATH.",
    "terraform": "Install Terraform or fix PATH.",
    "ansible-playbook": "Install Ansible (e.g., pip install ansible).",
    "kubectl": "Install kubectl and configure a cluster context.",
}


def hint_for(tool: str) -> str:
    return TOOL_HINTS.get(tool, f"Install {tool} or fix PATH.")


class Action:
    """
    One kind of external-tool invocation.

    Subclasses set `name` and `tool` and turn the step's `with` params into an
    argv list. The executor treats the result as an opaque command.
    """
    name: str = ""
    tool: str = ""
    required: Sequence[str] = ()

    def validate(self, params: Mapping[str, Any]) -> None:
        missing = [p for p in self.required if params.get(p) in (None, "", [])]
        if missing:
            raise DefinitionError(f"action '{self.name}' is missing required params: {missing}")

    def build(self, params: Mapping[str, Any]) -> List[str]:
        raise NotImplementedError

    def workdir(self, params: Mapping[str, Any]) -> Optional[str]:
        """Directory (relative to the workspace) the command should run in."""
        return None

    def describe(self, params: Mapping[str, Any]) -> str:
        return shlex.join(self.build(params))


# ---------------------------------------------------------------------
# Param helpers
# ---------------------------------------------------------------------

def as_list(value: Any) -> List[str]:
    """Accept a list, a comma/newline separated string, or nothing."""
    if value is None or value == "":
        return []
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value]
    text = str(value)
    parts = text.replace("\n", ",").split(",")
    return [p.strip() for p in parts if p.strip()]


def as_bool(value: Any, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def as_pairs(value: Any) -> Dict[str, str]:
    """Accept a mapping or KEY=VALUE lines."""
    if not value:
        return {}
    if isinstance(value, Mapping):
        return {str(k): str(v) for k, v in value.items()}
    out: Dict[str, str] = {}
    for item in as_list(value):
        if "=" not in item:
            raise DefinitionError(f"expected KEY=VALUE, got {item!r}")
        k, v = item.split("=", 1)
        out[k.strip()] = v.strip()
    return out
