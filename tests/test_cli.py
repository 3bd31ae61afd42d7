# tests/test_cli.py
import pytest
from click.testing import CliRunner

from relayci.cli import cli

OK_PIPELINE = """\
name: demo
on:
  push:
    branches: [main]
jobs:
  build:
    steps:
      - run: echo built > built.txt
  test:
    needs: build
    steps:
      - run: test -f built.txt
"""

FAILING_PIPELINE = """\
name: demo
jobs:
  build:
    steps:
      - run: exit 1
  deploy:
    needs: build
    steps:
      - run: touch deployed
"""


@pytest.fixture
def runner():
    return CliRunner()


def _write(path, text):
    path.write_text(text)
    return str(path)


def test_run_success_exits_zero(runner, tmp_path):
    pipeline = _write(tmp_path / "relayci.yml", OK_PIPELINE)
    result = runner.invoke(cli, ["run", "--pipeline", pipeline, "--workspace", str(tmp_path), "--branch", "main"])

    assert result.exit_code == 0, result.output
    assert (tmp_path / "built.txt").exists()


def test_run_failure_exits_one_and_skips_dependents(runner, tmp_path):
    pipeline = _write(tmp_path / "relayci.yml", FAILING_PIPELINE)
    result = runner.invoke(cli, ["run", "--pipeline", pipeline, "--workspace", str(tmp_path), "--branch", "main"])

    assert result.exit_code == 1
    assert not (tmp_path / "deployed").exists()


def test_trigger_mismatch_does_not_run(runner, tmp_path):
    pipeline = _write(tmp_path / "relayci.yml", OK_PIPELINE)
    result = runner.invoke(cli, ["run", "--pipeline", pipeline, "--workspace", str(tmp_path), "--branch", "feature/x"])

    assert result.exit_code == 0
    assert not (tmp_path / "built.txt").exists()

    forced = runner.invoke(
        cli, ["run", "--pipeline", pipeline, "--workspace", str(tmp_path), "--branch", "feature/x", "--force"]
    )
    assert forced.exit_code == 0
    assert (tmp_path / "built.txt").exists()


def test_secrets_file_is_used_and_masked(runner, tmp_path):
    pipeline = _write(
        tmp_path / "relayci.yml",
        "jobs:\n  a:\n    steps:\n      - run: echo \"$TOKEN\" > token.txt\n        env:\n          TOKEN: ${{ secrets.DEPLOY_TOKEN }}\n",
    )
    secrets = _write(tmp_path / "secrets.yml", "DEPLOY_TOKEN: very-secret-value-123\n")

    result = runner.invoke(
        cli,
        ["run", "--pipeline", pipeline, "--workspace", str(tmp_path), "--secrets-file", secrets, "--force"],
    )

    assert result.exit_code == 0, result.output
    assert (tmp_path / "token.txt").read_text().strip() == "very-secret-value-123"
    assert "very-secret-value-123" not in result.output


def test_validate_reports_cycles(runner, tmp_path):
    pipeline = _write(
        tmp_path / "relayci.yml",
        "jobs:\n  a:\n    needs: b\n    steps: [{run: 'true'}]\n  b:\n    needs: a\n    steps: [{run: 'true'}]\n",
    )
    result = runner.invoke(cli, ["validate", "--pipeline", pipeline])
    assert result.exit_code == 1


def test_validate_ok(runner, tmp_path):
    pipeline = _write(tmp_path / "relayci.yml", OK_PIPELINE)
    result = runner.invoke(cli, ["validate", "--pipeline", pipeline])
    assert result.exit_code == 0


def test_missing_pipeline_file(runner, tmp_path):
    result = runner.invoke(cli, ["validate", "--pipeline", str(tmp_path / "nope.yml")])
    assert result.exit_code == 1


def test_plan_and_actions(runner, tmp_path):
    pipeline = _write(tmp_path / "relayci.yml", OK_PIPELINE)
    assert runner.invoke(cli, ["plan", "--pipeline", pipeline]).exit_code == 0
    assert runner.invoke(cli, ["actions"]).exit_code == 0


def test_plan_prints_each_steps_command_line(runner, tmp_path):
    pipeline = _write(
        tmp_path / "relayci.yml",
        "jobs:\n  scan:\n    steps:\n      - uses: trivy/image-scan\n        with:\n          image-ref: me/app:1\n",
    )
    result = runner.invoke(cli, ["plan", "--pipeline", pipeline])

    assert result.exit_code == 0
    assert "trivy image --severity CRITICAL,HIGH --exit-code 1 --format table me/app:1" in result.output


def test_invalid_worker_settings_are_rejected(runner, tmp_path):
    pipeline = _write(tmp_path / "relayci.yml", OK_PIPELINE)
    args = ["run", "--pipeline", pipeline, "--workspace", str(tmp_path), "--branch", "main"]

    assert runner.invoke(cli, args + ["--workers", "-2"]).exit_code == 2

    result = runner.invoke(cli, args, env={"RELAYCI_MAX_WORKERS": "lots"})
    assert result.exit_code == 1
    assert not (tmp_path / "built.txt").exists()
