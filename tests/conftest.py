# tests/conftest.py
"""
Shared fixtures for the RelayCI test-suite.

Steps in these tests run real `sh` commands inside a tmp_path workspace;
nothing touches the repository or the network.
"""
import io

import pytest

from relayci.executor import CancelToken, StepExecutor
from relayci.secrets import SecretProvider
from relayci.stage import StageRunner
from relayci.ui.console import Console, set_console


@pytest.fixture(autouse=True)
def console():
    """Route console output into buffers so tests can assert on what was printed."""
    out, err = io.StringIO(), io.StringIO()
    c = Console(debug=True, stream=out, err_stream=err)
    c.out, c.err = out, err
    set_console(c)
    yield c
    set_console(Console())


@pytest.fixture
def workspace(tmp_path):
    ws = tmp_path / "ws"
    ws.mkdir()
    return ws


@pytest.fixture
def secrets():
    with SecretProvider({"API_TOKEN": "s3cr3t-t0ken-value", "DB_PASSWORD": "hunter2hunter2"}) as provider:
        yield provider


@pytest.fixture
def cancel():
    return CancelToken()


@pytest.fixture
def executor(workspace, secrets, cancel):
    return StepExecutor(workspace, secrets=secrets, cancel=cancel, default_timeout=30, output_tail=4000)


@pytest.fixture
def stage_runner(executor):
    return StageRunner(executor)
