from pathlib import Path

import pytest

from tinker_provision.errors import StepFailure
from tinker_provision.executors import LocalExecutor
from tinker_provision.operations.exec import ExecStep


def test_exec_runs_command_until_guard_passes(tmp_path: Path, make_context) -> None:
    target = tmp_path / "out.txt"
    step = ExecStep({"name": "write-file", "command": f"echo hi > {target}", "creates": str(target)})
    context = make_context(LocalExecutor())

    assert step.check(context) is False
    detail = step.apply(context)

    assert target.read_text().strip() == "hi"
    assert detail == "ran (rc=0)"
    assert step.check(context) is True


def test_exec_check_command_guards(make_context) -> None:
    context = make_context(LocalExecutor())

    assert ExecStep({"name": "ok", "command": "true", "check": "true"}).check(context) is True
    assert ExecStep({"name": "no", "command": "true", "check": "false"}).check(context) is False


def test_exec_requires_a_guard() -> None:
    with pytest.raises(ValueError):
        ExecStep({"name": "unguarded", "command": "echo hi"})


def test_exec_respects_allowed_returns(make_context) -> None:
    context = make_context(LocalExecutor())
    ok = ExecStep({"name": "rc-allowed", "command": "exit 3", "returns": [0, 3], "check": "false"})
    fail = ExecStep({"name": "rc-fail", "command": "echo nope >&2; exit 5", "check": "false"})

    assert ok.apply(context) == "ran (rc=3)"
    with pytest.raises(StepFailure) as excinfo:
        fail.apply(context)
    assert str(excinfo.value) == "rc=5: nope"


def test_exec_passes_env(make_context) -> None:
    step = ExecStep(
        {"name": "env-check", "command": 'test "$FOO" = bar', "env": ["FOO=bar"], "check": "false"}
    )
    assert step.apply(make_context(LocalExecutor())) == "ran (rc=0)"


def test_exec_renders_profile_variables(tmp_path: Path, make_context, monkeypatch) -> None:
    monkeypatch.setenv("TINKER_TEST_SECRET", "sekret")
    target = tmp_path / "out.txt"
    step = ExecStep(
        {
            "name": "write-secret",
            "command": ["sh", "-c", "echo {{ .hostname }}:{{ .token }} > " + str(target)],
            "variables": {"token": {"env": "TINKER_TEST_SECRET"}},
            "creates": str(target),
        }
    )

    step.apply(make_context(LocalExecutor()))

    assert target.read_text().strip() == "studio:sekret"
