# relayci_pipeline.py
# Pipeline for RelayCI itself: lint, test, then a build of the sdist/wheel.
from __future__ import annotations

from relayci.dsl import pipeline as define, sh, stage


def pipeline():
    return define(
        "relayci",
        stage(
            "lint",
            sh("Ruff check", "ruff check src tests"),
        ),
        stage(
            "test",
            sh("Install package", "pip install -e '.[test]'", retry=2),
            sh("Run pytest", "pytest -q", timeout=900),
            needs=["lint"],
        ),
        stage(
            "package",
            sh("Build", "python -m pip wheel --no-deps -w dist ."),
            needs=["test"],
        ),
        on=["push", "pull_request"],
        branches=["main", "release/*"],
    )
