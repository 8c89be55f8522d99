from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Mapping, Optional

if TYPE_CHECKING:  # pragma: no cover
    from .operations.base import Step

RESERVED_VARIABLES = ("device_type", "device_class")


@dataclass(frozen=True)
class DeviceProfile:
    name: str
    device_class: str = "generic"
    variables: Mapping[str, Any] = field(default_factory=dict)
    documents: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "variables", MappingProxyType(dict(self.variables)))
        object.__setattr__(self, "documents", tuple(self.documents))

    def template_context(self) -> dict[str, Any]:
        context = dict(self.variables)
        context["device_type"] = self.name
        context["device_class"] = self.device_class
        return context


@dataclass(frozen=True)
class Module:
    id: str
    steps: tuple["Step", ...] = ()
    depends_on: tuple[str, ...] = ()
    description: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "steps", tuple(self.steps))
        object.__setattr__(self, "depends_on", tuple(self.depends_on))


@dataclass(frozen=True)
class ExecutionPlan:
    modules: tuple[str, ...]

    def __iter__(self):
        return iter(self.modules)

    def __len__(self) -> int:
        return len(self.modules)


class StepStatus(str, Enum):
    SKIPPED = "skipped"
    APPLIED = "applied"
    FAILED = "failed"
    ABORTED = "aborted"


class RunOutcome(str, Enum):
    SUCCESS = "success"
    PARTIAL_FAILURE = "partial_failure"
    HARD_FAILURE = "hard_failure"


EXIT_CODES = {
    RunOutcome.SUCCESS: 0,
    RunOutcome.PARTIAL_FAILURE: 1,
    RunOutcome.HARD_FAILURE: 2,
}


@dataclass(frozen=True)
class StepResult:
    module: str
    step: str
    status: StepStatus
    details: str = ""
    simulated: bool = False

    @property
    def ok(self) -> bool:
        return self.status in (StepStatus.SKIPPED, StepStatus.APPLIED)


@dataclass(frozen=True)
class ModuleReport:
    module: str
    results: tuple[StepResult, ...] = ()
    cause: Optional[str] = None

    @property
    def completed(self) -> bool:
        """True when the module ran and every step was skipped or applied."""
        return self.cause is None and all(result.ok for result in self.results)

    @property
    def status(self) -> StepStatus:
        # A module blocked by a dependency is Aborted even when it has no steps.
        if self.cause is not None:
            return StepStatus.ABORTED
        statuses = {result.status for result in self.results}
        for status in (StepStatus.FAILED, StepStatus.ABORTED, StepStatus.APPLIED):
            if status in statuses:
                return status
        return StepStatus.SKIPPED


@dataclass(frozen=True)
class RunReport:
    profile: str
    modules: tuple[ModuleReport, ...]
    outcome: RunOutcome
    dry_run: bool = False
    error: Optional[str] = None

    @property
    def results(self) -> tuple[StepResult, ...]:
        return tuple(result for module in self.modules for result in module.results)

    @property
    def counts(self) -> dict[str, int]:
        counts = {status.value: 0 for status in StepStatus}
        for result in self.results:
            counts[result.status.value] += 1
        return counts

    @property
    def exit_code(self) -> int:
        return EXIT_CODES[self.outcome]

    def module(self, module_id: str) -> ModuleReport:
        for report in self.modules:
            if report.module == module_id:
                return report
        raise KeyError(module_id)
