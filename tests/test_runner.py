import subprocess
import time
from typing import Optional

import pytest

from tinker_provision import context as context_mod
from tinker_provision.context import PrivilegeBroker
from tinker_provision.operations.base import Step
from tinker_provision.registry import ModuleRegistry
from tinker_provision.report import StateReporter
from tinker_provision.runner import PlanRunner, StepRunner
from tinker_provision.types import ExecutionPlan, Module, RunOutcome, StepStatus


class SettingStep(Step):
    """Sets ``system[key] = value``; the dict stands in for the machine."""

    kind = "setting"

    def __init__(self, spec: dict):
        super().__init__(spec)
        self.system: dict = spec["system"]
        self.key = spec["key"]
        self.value = spec.get("value", True)
        self.privileged = bool(spec.get("needs_root", False))
        self.applied = 0

    def describe(self) -> str:
        return self.key

    def check(self, context) -> bool:
        return self.system.get(self.key) == self.value

    def apply(self, context) -> Optional[str]:
        self.applied += 1
        self.system[self.key] = self.value
        return f"{self.key}={self.value}"


class BrokenStep(SettingStep):
    def apply(self, context) -> Optional[str]:
        self.applied += 1
        raise RuntimeError("disk on fire")


class StubbornStep(SettingStep):
    def apply(self, context) -> Optional[str]:
        self.applied += 1
        return "pretended"


class FailingCommandStep(SettingStep):
    def apply(self, context) -> Optional[str]:
        raise subprocess.CalledProcessError(
            1, ["brew", "install", "nope"], "", "Error: No available formula with the name \"nope\".\nmore"
        )


class SlowStep(SettingStep):
    def apply(self, context) -> Optional[str]:
        time.sleep(0.05)
        context.executor.run(["true"])
        return "finished"


def setting(system: dict, key: str, cls=SettingStep, **extra) -> SettingStep:
    return cls({"system": system, "key": key, **extra})


def run_modules(make_context, modules: list[Module], order: list[str], **context_kwargs):
    registry = ModuleRegistry()
    for module in modules:
        registry.register(module)
    ctx = make_context(**context_kwargs)
    reporter = StateReporter("mac-studio", dry_run=ctx.dry_run)
    return PlanRunner(registry, ExecutionPlan(tuple(order)), ctx, reporter).run()


def test_satisfied_step_is_skipped(make_context) -> None:
    step = setting({"dns": True}, "dns")
    result = StepRunner(make_context()).execute(step, "network")

    assert result.status is StepStatus.SKIPPED
    assert step.applied == 0


def test_unsatisfied_step_is_applied_and_rechecked(make_context) -> None:
    system: dict = {}
    step = setting(system, "dns", value="1.1.1.1")
    result = StepRunner(make_context()).execute(step, "network")

    assert result.status is StepStatus.APPLIED
    assert result.details == "dns=1.1.1.1"
    assert system == {"dns": "1.1.1.1"}


def test_postcondition_failure(make_context) -> None:
    step = setting({}, "stealth", cls=StubbornStep)
    result = StepRunner(make_context()).execute(step, "security")

    assert result.status is StepStatus.FAILED
    assert result.details == "postcondition not met"


def test_exceptions_become_failed_results(make_context) -> None:
    result = StepRunner(make_context()).execute(setting({}, "boom", cls=BrokenStep), "power")

    assert result.status is StepStatus.FAILED
    assert result.details == "disk on fire"


def test_command_failures_carry_exit_code_and_stderr(make_context) -> None:
    result = StepRunner(make_context()).execute(setting({}, "pkg", cls=FailingCommandStep), "packages")

    assert result.status is StepStatus.FAILED
    assert result.details == (
        "command 'brew install nope' exited 1: Error: No available formula with the name \"nope\"."
    )


def test_step_timeout_fails_with_timeout(make_context) -> None:
    step = setting({}, "slow", cls=SlowStep, timeout=0.01)
    result = StepRunner(make_context()).execute(step, "packages")

    assert result.status is StepStatus.FAILED
    assert result.details == "timeout"


def test_dry_run_never_applies_or_escalates(make_context) -> None:
    prompts: list[int] = []
    broker = PrivilegeBroker(prompt=lambda: prompts.append(1) or True, refresh=lambda: True)
    system: dict = {}
    step = setting(system, "firewall", needs_root=True)

    result = StepRunner(make_context(dry_run=True, privilege=broker)).execute(step, "security")

    assert result.status is StepStatus.APPLIED
    assert result.simulated is True
    assert result.details == "would apply"
    assert step.applied == 0
    assert system == {}
    assert prompts == []


def test_privilege_is_requested_once_per_run(make_context, monkeypatch) -> None:
    monkeypatch.setattr(context_mod, "is_root", lambda: False)
    refreshes: list[int] = []
    broker = PrivilegeBroker(prompt=lambda: True, refresh=lambda: refreshes.append(1) or True)
    system: dict = {}
    modules = [
        Module(id="network", steps=(setting(system, "dns", needs_root=True),)),
        Module(
            id="security",
            steps=(setting(system, "firewall", needs_root=True), setting(system, "stealth", needs_root=True)),
        ),
        Module(id="dotfiles", steps=(setting(system, "zshrc"),)),
    ]

    report = run_modules(make_context, modules, ["network", "security", "dotfiles"], privilege=broker)

    assert report.outcome is RunOutcome.SUCCESS
    assert broker.prompts == 1
    assert len(refreshes) == 2


def test_refused_privilege_fails_every_privileged_step(make_context, monkeypatch) -> None:
    monkeypatch.setattr(context_mod, "is_root", lambda: False)
    broker = PrivilegeBroker(prompt=lambda: False, refresh=lambda: True)
    system: dict = {}
    modules = [
        Module(id="network", steps=(setting(system, "dns", needs_root=True),)),
        Module(id="security", steps=(setting(system, "firewall", needs_root=True),)),
        Module(id="dotfiles", steps=(setting(system, "zshrc"),)),
    ]

    report = run_modules(make_context, modules, ["dotfiles", "network", "security"], privilege=broker)

    assert broker.prompts == 1
    for module_id in ("network", "security"):
        (result,) = report.module(module_id).results
        assert result.status is StepStatus.FAILED
        assert result.details == "privilege escalation refused"
    assert report.module("dotfiles").status is StepStatus.APPLIED
    assert system == {"zshrc": True}


def test_failure_isolation_follows_dependency_edges(make_context) -> None:
    system: dict = {}
    modules = [
        Module(id="a", steps=(setting(system, "a1"), setting(system, "a2", cls=BrokenStep), setting(system, "a3"))),
        Module(id="b", steps=(setting(system, "b1"), setting(system, "b2")), depends_on=("a",)),
        Module(id="c", steps=(setting(system, "c1"),)),
        Module(id="d", steps=(setting(system, "d1"),), depends_on=("b",)),
    ]

    report = run_modules(make_context, modules, ["a", "b", "c", "d"])

    a_results = report.module("a").results
    assert [r.status for r in a_results] == [StepStatus.APPLIED, StepStatus.FAILED, StepStatus.ABORTED]
    assert a_results[2].details == "aborted: step 'a2' failed"
    assert {r.details for r in report.module("b").results} == {"aborted: dependency 'a' did not complete"}
    assert {r.details for r in report.module("d").results} == {"aborted: dependency 'b' did not complete"}
    assert report.module("c").status is StepStatus.APPLIED
    assert system == {"a1": True, "c1": True}
    assert report.outcome is RunOutcome.PARTIAL_FAILURE
    assert report.exit_code == 1
    assert report.counts == {"skipped": 0, "applied": 2, "failed": 1, "aborted": 4}


def test_empty_module_behind_failed_dependency_is_aborted(make_context) -> None:
    system: dict = {}
    modules = [
        Module(id="a", steps=(setting(system, "a1", cls=BrokenStep),)),
        Module(id="b", steps=(), depends_on=("a",)),
    ]

    report = run_modules(make_context, modules, ["a", "b"])

    blocked = report.module("b")
    assert blocked.results == ()
    assert blocked.status is StepStatus.ABORTED
    assert blocked.completed is False
    assert blocked.cause == "aborted: dependency 'a' did not complete"
    assert report.outcome is RunOutcome.PARTIAL_FAILURE


def test_second_run_is_all_skipped(make_context) -> None:
    system: dict = {}

    def modules() -> list[Module]:
        return [
            Module(id="network", steps=(setting(system, "dns", value="1.1.1.1"),)),
            Module(id="time-sync", steps=(setting(system, "tz", value="Australia/Adelaide"),), depends_on=("network",)),
        ]

    first = run_modules(make_context, modules(), ["network", "time-sync"])
    second = run_modules(make_context, modules(), ["network", "time-sync"])

    assert first.counts["applied"] == 2
    assert second.counts == {"skipped": 2, "applied": 0, "failed": 0, "aborted": 0}
    assert second.exit_code == 0


def test_progress_callback_sees_each_step(make_context) -> None:
    seen: list[tuple[str, str]] = []
    system: dict = {}
    registry = ModuleRegistry()
    registry.register(Module(id="power", steps=(setting(system, "sleep"), setting(system, "womp"))))
    reporter = StateReporter("mac-studio")

    PlanRunner(
        registry,
        ExecutionPlan(("power",)),
        make_context(),
        reporter,
        progress_callback=lambda module_id, step: seen.append((module_id, step.description)),
    ).run()

    assert seen == [("power", "sleep"), ("power", "womp")]


def test_reporter_rejects_records_after_finalize() -> None:
    reporter = StateReporter("mac-studio")
    reporter.finalize()

    with pytest.raises(RuntimeError):
        reporter.hard_fail("late")
