# actions/ansible.py
from __future__ import annotations

import json
from typing import Any, List, Mapping

from .base import Action, as_bool


class AnsiblePlaybookAction(Action):
    name = "ansible/playbook"
    tool = "ansible-playbook"
    required = ("playbook",)

    def build(self, params: Mapping[str, Any]) -> List[str]:
        cmd = ["ansible-playbook"]
        if params.get("inventory"):
            cmd.extend(["-i", str(params["inventory"])])
        if params.get("limit"):
            cmd.extend(["--limit", str(params["limit"])])
        extra = params.get("extra-vars")
        if extra:
            # mappings go over as JSON so nested values survive
            cmd.extend(["--extra-vars", json.dumps(dict(extra)) if isinstance(extra, Mapping) else str(extra)])
        if as_bool(params.get("check")):
            cmd.append("--check")
        cmd.append(str(params["playbook"]))
        return cmd
