# actions/terraform.py
from __future__ import annotations

from typing import Any, List, Mapping, Optional

from .base import Action, as_bool, as_pairs


class _TerraformAction(Action):
    tool = "terraform"
    subcommand = ""

    def workdir(self, params: Mapping[str, Any]) -> Optional[str]:
        return params.get("working-directory")

    def build(self, params: Mapping[str, Any]) -> List[str]:
        return ["terraform", self.subcommand, "-input=false", "-no-color"]

    def _var_args(self, params: Mapping[str, Any]) -> List[str]:
        out: List[str] = []
        if params.get("var-file"):
            out.append(f"-var-file={params['var-file']}")
        for key, value in as_pairs(params.get("vars")).items():
            out.extend(["-var", f"{key}={value}"])
        return out


class TerraformInitAction(_TerraformAction):
    name = "terraform/init"
    subcommand = "init"

    def build(self, params: Mapping[str, Any]) -> List[str]:
        cmd = super().build(params)
        for key, value in as_pairs(params.get("backend-config")).items():
            cmd.append(f"-backend-config={key}={value}")
        return cmd


class TerraformPlanAction(_TerraformAction):
    name = "terraform/plan"
    subcommand = "plan"

    def build(self, params: Mapping[str, Any]) -> List[str]:
        cmd = super().build(params) + self._var_args(params)
        if params.get("out"):
            cmd.append(f"-out={params['out']}")
        return cmd


class TerraformApplyAction(_TerraformAction):
    """
    terraform apply. Refuses to run unattended unless auto-approve is set,
    since there is nobody to answer the prompt.
    """
    name = "terraform/apply"
    subcommand = "apply"

    def build(self, params: Mapping[str, Any]) -> List[str]:
        cmd = super().build(params)
        if as_bool(params.get("auto-approve"), default=True):
            cmd.append("-auto-approve")
        if params.get("plan"):
            # a saved plan already carries its variables
            cmd.append(str(params["plan"]))
        else:
            cmd.extend(self._var_args(params))
        return cmd
