from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Optional, Union

from .types import ModuleReport, RunOutcome, RunReport, StepResult, StepStatus

logger = logging.getLogger(__name__)


class StateReporter:
    """Accumulates step results for one run and freezes them into a RunReport."""

    def __init__(self, profile: str, *, dry_run: bool = False):
        self.profile = profile
        self.dry_run = dry_run
        self._modules: dict[str, list[StepResult]] = {}
        self._error: Optional[str] = None
        self._aborted: dict[str, str] = {}
        self._report: Optional[RunReport] = None

    def begin_module(self, module_id: str) -> None:
        self._ensure_open()
        self._modules.setdefault(module_id, [])

    def record(self, result: StepResult) -> None:
        self._ensure_open()
        self._modules.setdefault(result.module, []).append(result)
        logger.debug(
            "module=%s step=%s status=%s details=%s",
            result.module,
            result.step,
            result.status.value,
            result.details,
        )

    def abort_module(self, module_id: str, cause: str) -> None:
        """Mark a whole module Aborted, including one without steps."""
        self._ensure_open()
        self._modules.setdefault(module_id, [])
        self._aborted[module_id] = cause

    def hard_fail(self, error: Union[BaseException, str]) -> None:
        self._ensure_open()
        self._error = str(error)

    def finalize(self) -> RunReport:
        if self._report is not None:
            return self._report
        modules = tuple(
            ModuleReport(module=module_id, results=tuple(results), cause=self._aborted.get(module_id))
            for module_id, results in self._modules.items()
        )
        self._report = RunReport(
            profile=self.profile,
            modules=modules,
            outcome=self._outcome(modules),
            dry_run=self.dry_run,
            error=self._error,
        )
        return self._report

    def _outcome(self, modules: tuple[ModuleReport, ...]) -> RunOutcome:
        if self._error is not None:
            return RunOutcome.HARD_FAILURE
        for module in modules:
            if module.cause is not None:
                return RunOutcome.PARTIAL_FAILURE
            for result in module.results:
                if result.status in (StepStatus.FAILED, StepStatus.ABORTED):
                    return RunOutcome.PARTIAL_FAILURE
        return RunOutcome.SUCCESS

    def _ensure_open(self) -> None:
        if self._report is not None:
            raise RuntimeError("report already finalized")


def report_to_dict(report: RunReport) -> dict[str, Any]:
    return {
        "profile": report.profile,
        "outcome": report.outcome.value,
        "exit_code": report.exit_code,
        "dry_run": report.dry_run,
        "error": report.error,
        "counts": report.counts,
        "modules": [
            {
                "module": module.module,
                "status": module.status.value,
                "cause": module.cause,
                "steps": [
                    {
                        "step": result.step,
                        "status": result.status.value,
                        "details": result.details,
                        "simulated": result.simulated,
                    }
                    for result in module.results
                ],
            }
            for module in report.modules
        ],
    }


def write_report(report: RunReport, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(report_to_dict(report), indent=2))
    try:
        os.chmod(path, 0o600)
    except OSError:
        logger.debug("Unable to chmod report file %s", path, exc_info=True)
