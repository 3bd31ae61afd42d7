# actions/docker.py
from __future__ import annotations

import shlex
from typing import Any, List, Mapping

from ..errors import DefinitionError
from .base import Action, as_bool, as_list, as_pairs


class DockerBuildAction(Action):
    """
    docker build (+ optional push of every tag).

    with:
      context: .            (default ".")
      file: Dockerfile      (optional)
      tags: user/app:latest (list or comma separated, required)
      build-args: {K: V}
      push: true
    """
    name = "docker/build"
    tool = "docker"
    required = ("tags",)

    def build(self, params: Mapping[str, Any]) -> List[str]:
        tags = as_list(params.get("tags"))
        cmd = ["docker", "build"]
        if params.get("file"):
            cmd.extend(["-f", str(params["file"])])
        for tag in tags:
            cmd.extend(["-t", tag])
        for key, value in as_pairs(params.get("build-args")).items():
            cmd.extend(["--build-arg", f"{key}={value}"])
        cmd.append(str(params.get("context") or "."))

        if not as_bool(params.get("push")):
            return cmd

        # Chain the pushes so the step is still a single command with one exit code.
        script = " && ".join(shlex.join(c) for c in [cmd] + [["docker", "push", t] for t in tags])
        return ["sh", "-c", script]


class DockerPushAction(Action):
    name = "docker/push"
    tool = "docker"
    required = ("tags",)

    def build(self, params: Mapping[str, Any]) -> List[str]:
        tags = as_list(params.get("tags"))
        if len(tags) == 1:
            return ["docker", "push", tags[0]]
        return ["sh", "-c", " && ".join(shlex.join(["docker", "push", t]) for t in tags)]


class DockerLoginAction(Action):
    """
    Log in to a registry. The password is fed on stdin (never argv) via
    the DOCKER_PASSWORD variable, which the step must set from a secret.
    """
    name = "docker/login"
    tool = "docker"
    required = ("username",)

    def validate(self, params: Mapping[str, Any]) -> None:
        super().validate(params)
        if "password" in params:
            raise DefinitionError(
                f"action '{self.name}' does not take a 'password' param; "
                "set DOCKER_PASSWORD in the step env from ${{ secrets.NAME }} instead"
            )

    def build(self, params: Mapping[str, Any]) -> List[str]:
        login = ["docker", "login", "--username", str(params["username"]), "--password-stdin"]
        if params.get("registry"):
            login.append(str(params["registry"]))
        return ["sh", "-c", 'printf "%s" "$DOCKER_PASSWORD" | ' + shlex.join(login)]

