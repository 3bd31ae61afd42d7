# actions/__init__.py
from __future__ import annotations

from typing import Dict, List

from ..errors import DefinitionError
from .ansible import AnsiblePlaybookAction
from .base import TOOL_HINTS, Action, hint_for
from .docker import DockerBuildAction, DockerLoginAction, DockerPushAction
from .kubectl import KubectlApplyAction
from .scan import SonarScanAction, TrivyImageScanAction
from .shell import CheckoutAction, ShellAction
from .terraform import TerraformApplyAction, TerraformInitAction, TerraformPlanAction

_REGISTRY: Dict[str, Action] = {}


def register(action: Action, *aliases: str) -> Action:
    if not action.name:
        raise ValueError(f"{type(action).__name__} has no name")
    for key in (action.name, *aliases):
        _REGISTRY[key] = action
    return action


def normalize(uses: str) -> str:
    """`docker/build@v5` -> `docker/build`."""
    return uses.split("@", 1)[0].strip()


def get_action(uses: str | None) -> Action:
    key = normalize(uses) if uses else "shell"
    try:
        return _REGISTRY[key]
    except KeyError:
        raise DefinitionError(
            f"unknown action '{uses}'",
            known=", ".join(known_actions()),
        ) from None


def known_actions() -> List[str]:
    return sorted(_REGISTRY)


ALIASES = {
    "docker/build": ("docker/build-push-action",),
    "docker/login": ("docker/login-action",),
    "trivy/image-scan": ("aquasecurity/trivy-action",),
    "sonar/scan": ("sonarsource/sonarqube-scan-action",),
}

for _action in (
    ShellAction(),
    CheckoutAction(),
    DockerBuildAction(),
    DockerPushAction(),
    DockerLoginAction(),
    TrivyImageScanAction(),
    SonarScanAction(),
    TerraformInitAction(),
    TerraformPlanAction(),
    TerraformApplyAction(),
    AnsiblePlaybookAction(),
    KubectlApplyAction(),
):
    register(_action, *ALIASES.get(_action.name, ()))

__all__ = ["Action", "TOOL_HINTS", "hint_for", "register", "get_action", "known_actions", "normalize"]
