# actions/shell.py
from __future__ import annotations

from typing import Any, List, Mapping

from .base import Action


class ShellAction(Action):
    """Plain `run:` steps."""
    name = "shell"
    tool = "sh"
    required = ("run",)

    def build(self, params: Mapping[str, Any]) -> List[str]:
        return ["sh", "-c", str(params["run"])]

    def describe(self, params: Mapping[str, Any]) -> str:
        return str(params["run"])


class CheckoutAction(Action):
    """
    `actions/checkout`: the workspace the engine runs in is already the
    checked-out repository, so this only keeps imported workflows valid.
    """
    name = "actions/checkout"
    tool = "sh"

    def build(self, params: Mapping[str, Any]) -> List[str]:
        return ["sh", "-c", ":"]
