from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, Mapping, Optional, Sequence
import logging

from .catalog import StepFactory, build_registry
from .config import TinkerConfig
from .context import PrivilegeBroker, RunContext
from .documents import ConfigurationDocument, load
from .errors import ProvisionError
from .executors import Executor, LocalExecutor
from .planner import plan
from .profiles import ProfileLoader
from .registry import ModuleRegistry
from .report import StateReporter, write_report
from .runner import PlanRunner, ProgressCallback
from .templates import TemplateRenderer
from .types import DeviceProfile, ExecutionPlan, RunReport

logger = logging.getLogger(__name__)

ModuleHook = Callable[[ModuleRegistry, ConfigurationDocument, DeviceProfile], None]


@dataclass
class PreparedRun:
    profile: DeviceProfile
    document: ConfigurationDocument
    registry: ModuleRegistry
    plan: ExecutionPlan


def prepare(
    profile_name: str,
    config: TinkerConfig,
    *,
    documents: Optional[Sequence[Path]] = None,
    only: Optional[Iterable[str]] = None,
    step_registry: Optional[Mapping[str, StepFactory]] = None,
    module_hooks: Sequence[ModuleHook] = (),
) -> PreparedRun:
    """Load everything a run needs; nothing on the machine changes here.

    Raises :class:`ProvisionError` subclasses for every hard failure.
    """

    profile = ProfileLoader(config.profiles_dir).load(profile_name)
    paths = [*(documents if documents else config.documents), *profile.documents]
    document = load(paths)
    registry = build_registry(document, profile, step_registry)
    for hook in module_hooks:
        hook(registry, document, profile)
    execution_plan = plan(registry, only)
    logger.info("profile=%s modules=%s", profile.name, ",".join(execution_plan))
    return PreparedRun(profile, document, registry, execution_plan)


def provision(
    profile_name: str,
    config: TinkerConfig,
    *,
    documents: Optional[Sequence[Path]] = None,
    only: Optional[Iterable[str]] = None,
    dry_run: bool = False,
    executor: Optional[Executor] = None,
    privilege: Optional[PrivilegeBroker] = None,
    step_registry: Optional[Mapping[str, StepFactory]] = None,
    module_hooks: Sequence[ModuleHook] = (),
    progress_callback: Optional[ProgressCallback] = None,
) -> RunReport:
    reporter = StateReporter(profile_name, dry_run=dry_run)
    try:
        prepared = prepare(
            profile_name,
            config,
            documents=documents,
            only=only,
            step_registry=step_registry,
            module_hooks=module_hooks,
        )
    except ProvisionError as exc:
        logger.error("run aborted before planning completed: %s", exc)
        reporter.hard_fail(exc)
        return _finish(reporter, config)

    reporter.profile = prepared.profile.name
    context = RunContext(
        profile=prepared.profile,
        document=prepared.document,
        executor=executor or LocalExecutor(dry_run=dry_run),
        renderer=TemplateRenderer(),
        privilege=privilege or PrivilegeBroker(),
        dry_run=dry_run,
        step_timeout=config.step_timeout,
    )
    runner = PlanRunner(
        prepared.registry,
        prepared.plan,
        context,
        reporter,
        progress_callback=progress_callback,
    )
    runner.run()
    return _finish(reporter, config)


def _finish(reporter: StateReporter, config: TinkerConfig) -> RunReport:
    report = reporter.finalize()
    if config.report_file:
        try:
            write_report(report, config.report_file)
        except OSError as exc:
            logger.error("unable to write report %s: %s", config.report_file, exc)
    logger.info("outcome=%s counts=%s", report.outcome.value, report.counts)
    return report
