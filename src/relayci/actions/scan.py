# actions/scan.py
from __future__ import annotations

from typing import Any, List, Mapping

from .base import Action, as_bool, as_list


class TrivyImageScanAction(Action):
    """
    Vulnerability scan of a container image.

    with:
      image-ref: user/app:latest
      severity: CRITICAL,HIGH      (default)
      exit-code: 1                 (nonzero fails the step when findings exist)
      format: table
      ignore-unfixed: true
    """
    name = "trivy/image-scan"
    tool = "trivy"
    required = ("image-ref",)

    def build(self, params: Mapping[str, Any]) -> List[str]:
        severity = ",".join(as_list(params.get("severity"))) or "CRITICAL,HIGH"
        cmd = [
            "trivy", "image",
            "--severity", severity,
            "--exit-code", str(params.get("exit-code", 1)),
            "--format", str(params.get("format") or "table"),
        ]
        if as_bool(params.get("ignore-unfixed")):
            cmd.append("--ignore-unfixed")
        cmd.append(str(params["image-ref"]))
        return cmd


class SonarScanAction(Action):
    """
    Code-quality scan. The token is read by the scanner from SONAR_TOKEN,
    which should be set from a secret in the step env.
    """
    name = "sonar/scan"
    tool = "sonar-scanner"
    required = ("project-key",)

    def build(self, params: Mapping[str, Any]) -> List[str]:
        cmd = ["sonar-scanner", f"-Dsonar.projectKey={params['project-key']}"]
        if params.get("host-url"):
            cmd.append(f"-Dsonar.host.url={params['host-url']}")
        sources = as_list(params.get("sources"))
        if sources:
            cmd.append(f"-Dsonar.sources={','.join(sources)}")
        if as_bool(params.get("quality-gate-wait")):
            cmd.append("-Dsonar.qualitygate.wait=true")
        return cmd
