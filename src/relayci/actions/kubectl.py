# actions/kubectl.py
from __future__ import annotations

from typing import Any, List, Mapping

from .base import Action, as_list


class KubectlApplyAction(Action):
    """kubectl apply -f <manifest> for every manifest (file, dir or URL)."""
    name = "kubectl/apply"
    tool = "kubectl"
    required = ("manifests",)

    def build(self, params: Mapping[str, Any]) -> List[str]:
        cmd = ["kubectl"]
        if params.get("context"):
            cmd.extend(["--context", str(params["context"])])
        if params.get("namespace"):
            cmd.extend(["--namespace", str(params["namespace"])])
        cmd.append("apply")
        for manifest in as_list(params.get("manifests")):
            cmd.extend(["-f", manifest])
        return cmd
