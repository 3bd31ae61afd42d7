# tests/test_model.py
import pytest

from relayci.model import (
    Pipeline,
    RetryPolicy,
    RunResult,
    Stage,
    StageResult,
    StageStatus,
    Step,
    Trigger,
)


def test_trigger_matches_event_and_branch_globs():
    trigger = Trigger(events=("push",), branches=("main", "release/*"))

    assert trigger.matches("push", "main")
    assert trigger.matches("push", "release/1.2")
    assert not trigger.matches("push", "feature/x")
    assert not trigger.matches("pull_request", "main")


def test_trigger_without_branches_matches_any_branch():
    trigger = Trigger(events=("push", "pull_request"))
    assert trigger.matches("pull_request", "feature/x")
    assert trigger.matches("push", None)


def test_manual_event_always_fires():
    assert Trigger(events=("push",), branches=("main",)).matches("manual", "main")


def test_retry_policy_backoff_grows_exponentially():
    policy = RetryPolicy(attempts=4, backoff=0.5, factor=2.0)
    assert [policy.delay(n) for n in (1, 2, 3)] == [0.5, 1.0, 2.0]


def test_step_retryable_only_with_more_than_one_attempt():
    assert not Step(name="a", run="true").retryable
    assert not Step(name="a", run="true", retry=RetryPolicy(attempts=1)).retryable
    assert Step(name="a", run="true", retry=RetryPolicy(attempts=2)).retryable


def test_pipeline_is_immutable():
    p = Pipeline(name="p", stages=[Stage(name="s", steps=[Step(name="a", run="true")], env={"A": "1"})])

    with pytest.raises(Exception):
        p.name = "other"
    with pytest.raises(TypeError):
        p.stages[0].env["A"] = "2"
    assert isinstance(p.stages, tuple)
    assert p.stage("s").steps[0].name == "a"


def test_run_result_entries_are_written_once():
    run = RunResult(run_id="r1", pipeline="p")
    run.record(StageResult(name="a", status=StageStatus.SUCCESS))

    with pytest.raises(RuntimeError):
        run.record(StageResult(name="a", status=StageStatus.FAILED))
    assert run.status_of("a") is StageStatus.SUCCESS
    assert run.status_of("b") is StageStatus.PENDING


def test_run_result_exit_code_reflects_failures_and_cancellation():
    run = RunResult(run_id="r1", pipeline="p")
    run.record(StageResult(name="a", status=StageStatus.SUCCESS))
    run.record(StageResult(name="b", status=StageStatus.SKIPPED))
    assert run.ok and run.exit_code == 0

    run.record(StageResult(name="c", status=StageStatus.FAILED))
    assert not run.ok and run.exit_code == 1

    cancelled = RunResult(run_id="r2", pipeline="p", cancelled=True)
    assert cancelled.exit_code == 1


def test_stage_status_terminal_states():
    assert {s for s in StageStatus if s.terminal} == {StageStatus.SUCCESS, StageStatus.FAILED, StageStatus.SKIPPED}
