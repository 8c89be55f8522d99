from __future__ import annotations

from typing import Callable, Optional
import logging
import subprocess

from .context import RunContext
from .errors import StepTimeout
from .operations.base import Step
from .operations.exec import summarize_output
from .registry import ModuleRegistry
from .report import StateReporter
from .types import ExecutionPlan, Module, RunReport, StepResult, StepStatus

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, Step], None]


class StepRunner:
    """Drives one step through check, apply and the confirming re-check.

    No exception escapes :meth:`execute`; every failure becomes a Failed
    result carrying its cause.
    """

    def __init__(self, context: RunContext):
        self.context = context

    def execute(self, step: Step, module_id: str) -> StepResult:
        label = step.description
        context = self.context
        try:
            with context.executor.step_deadline(step.timeout or context.step_timeout):
                if step.check(context):
                    return StepResult(module_id, label, StepStatus.SKIPPED, "already satisfied")
                if context.dry_run:
                    return StepResult(module_id, label, StepStatus.APPLIED, "would apply", simulated=True)
                if step.requires_privilege:
                    context.privilege.acquire()
                detail = step.apply(context)
                if not step.check(context):
                    return StepResult(module_id, label, StepStatus.FAILED, "postcondition not met")
        except StepTimeout as exc:
            logger.warning("module=%s step=%s timed out", module_id, label)
            return StepResult(module_id, label, StepStatus.FAILED, str(exc) or "timeout")
        except subprocess.CalledProcessError as exc:
            logger.error("module=%s step=%s command failed: %s", module_id, label, exc)
            return StepResult(module_id, label, StepStatus.FAILED, describe_command_failure(exc))
        except Exception as exc:  # noqa: BLE001
            logger.error("module=%s step=%s failed: %s", module_id, label, exc, exc_info=True)
            return StepResult(module_id, label, StepStatus.FAILED, str(exc) or type(exc).__name__)
        return StepResult(module_id, label, StepStatus.APPLIED, detail or "applied")


class PlanRunner:
    """Runs every module of a plan in order and applies the abort rules.

    A failed step aborts the rest of its module. A module that did not
    complete aborts every module depending on it; unrelated modules still run.
    """

    def __init__(
        self,
        registry: ModuleRegistry,
        plan: ExecutionPlan,
        context: RunContext,
        reporter: StateReporter,
        *,
        progress_callback: Optional[ProgressCallback] = None,
    ):
        self.registry = registry
        self.plan = plan
        self.context = context
        self.reporter = reporter
        self.progress_callback = progress_callback
        self.step_runner = StepRunner(context)

    def run(self) -> RunReport:
        completed: dict[str, bool] = {}
        for module_id in self.plan:
            module = self.registry.lookup(module_id)
            self.reporter.begin_module(module_id)
            completed[module_id] = self._run_module(module, completed)
            logger.info("module=%s completed=%s", module_id, completed[module_id])
        return self.reporter.finalize()

    def _run_module(self, module: Module, completed: dict[str, bool]) -> bool:
        blocked_by = next((dep for dep in module.depends_on if not completed.get(dep, False)), None)
        if blocked_by is not None:
            cause = f"aborted: dependency '{blocked_by}' did not complete"
            self.reporter.abort_module(module.id, cause)
            self._abort_remaining(module, module.steps, cause)
            return False

        for index, step in enumerate(module.steps):
            if self.progress_callback:
                self.progress_callback(module.id, step)
            result = self.step_runner.execute(step, module.id)
            self.reporter.record(result)
            if result.status is StepStatus.FAILED:
                self._abort_remaining(module, module.steps[index + 1 :], f"aborted: step '{result.step}' failed")
                return False
        return True

    def _abort_remaining(self, module: Module, steps: tuple[Step, ...], cause: str) -> None:
        for step in steps:
            self.reporter.record(StepResult(module.id, step.description, StepStatus.ABORTED, cause))


def describe_command_failure(exc: subprocess.CalledProcessError) -> str:
    command = exc.cmd if isinstance(exc.cmd, str) else " ".join(str(part) for part in exc.cmd)
    message = f"command '{command}' exited {exc.returncode}"
    stderr = summarize_output(exc.stderr, exc.output)
    if stderr:
        message += f": {stderr}"
    return message
