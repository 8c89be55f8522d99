from __future__ import annotations

import argparse
import importlib
import importlib.util
import logging
import os
import sys
from pathlib import Path
from typing import Optional, Sequence

from .config import DEFAULT_CONFIG, TinkerConfig, load_config
from .engine import ModuleHook, prepare, provision
from .errors import PluginError, ProvisionError
from .operations import STEP_REGISTRY
from .operations.base import Step
from .types import EXIT_CODES, RunOutcome, StepResult, StepStatus

logger = logging.getLogger(__name__)


class Ansi:
    GREEN = "\033[92m"
    YELLOW = "\033[93m"
    RED = "\033[91m"
    BLUE = "\033[94m"
    ORANGE = "\033[38;5;208m"
    RESET = "\033[0m"


STATUS_COLORS = {
    StepStatus.APPLIED: Ansi.GREEN,
    StepStatus.SKIPPED: Ansi.BLUE,
    StepStatus.FAILED: Ansi.RED,
    StepStatus.ABORTED: Ansi.ORANGE,
}


def colorize(text: str, color: Optional[str]) -> str:
    if not color:
        return text
    if not sys.stdout.isatty() or os.environ.get("NO_COLOR"):
        return text
    return f"{color}{text}{Ansi.RESET}"

_last_progress_len = 0


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Tinker machine provisioning")
    parser.add_argument(
        "profile",
        help="Device profile to apply, or 'auto' to detect it from the hardware model",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG,
        help=f"Path to tinker config file (default: {DEFAULT_CONFIG})",
    )
    parser.add_argument(
        "--document",
        dest="documents",
        action="append",
        type=Path,
        help="Configuration document to merge; repeat to layer documents (default from config)",
    )
    parser.add_argument("--dry-run", action="store_true", help="Report what would change without changing it")
    parser.add_argument(
        "--only",
        type=_split_modules,
        help="Comma separated module ids; their dependencies are included",
    )
    parser.add_argument("--report-file", type=Path, help="Write the run report as JSON to this path")
    parser.add_argument("--step-timeout", type=float, help="Seconds a single step may take")
    parser.add_argument("--list-modules", action="store_true", help="Print the execution plan and exit")
    parser.add_argument("--verbose", action="store_true", help="Show skipped steps and debug logging")
    parser.add_argument(
        "--log-level",
        default="WARNING",
        help="Python logging level (default: WARNING)",
    )
    return parser.parse_args(argv)


def _split_modules(value: str) -> list[str]:
    modules = [item.strip() for item in value.split(",") if item.strip()]
    if not modules:
        raise argparse.ArgumentTypeError("expected at least one module id")
    return modules


def configure_logging(level: str, log_file: Optional[Path] = None) -> None:
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(levelname)s %(name)s - %(message)s",
        handlers=handlers,
        force=True,
    )


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    level = "DEBUG" if args.verbose else args.log_level
    configure_logging(level)

    try:
        cfg = load_config(args.config)
    except ProvisionError as exc:
        print(colorize(f"Config load failed: {exc}", Ansi.RED), file=sys.stderr)
        return EXIT_CODES[RunOutcome.HARD_FAILURE]
    if cfg.log_file:
        configure_logging(level, cfg.log_file)
    if args.report_file:
        cfg.report_file = args.report_file
    if args.step_timeout is not None:
        if args.step_timeout <= 0:
            print(colorize("--step-timeout must be positive", Ansi.RED), file=sys.stderr)
            return EXIT_CODES[RunOutcome.HARD_FAILURE]
        cfg.step_timeout = args.step_timeout

    try:
        module_hooks = _load_plugins(cfg)
    except PluginError as exc:
        print(colorize(f"Plugin load failed: {exc}", Ansi.RED), file=sys.stderr)
        return EXIT_CODES[RunOutcome.HARD_FAILURE]

    if args.list_modules:
        return list_modules(args, cfg, module_hooks)

    try:
        report = provision(
            args.profile,
            cfg,
            documents=args.documents,
            only=args.only,
            dry_run=args.dry_run,
            step_registry=STEP_REGISTRY,
            module_hooks=module_hooks,
            progress_callback=print_progress,
        )
    except Exception as exc:  # noqa: BLE001
        _clear_progress()
        if logging.getLogger().isEnabledFor(logging.DEBUG):
            raise
        print(colorize(f"Execution failed: {exc}", Ansi.RED), file=sys.stderr)
        return EXIT_CODES[RunOutcome.HARD_FAILURE]

    _clear_progress()
    if report.error:
        print(colorize(f"Provisioning aborted: {report.error}", Ansi.RED), file=sys.stderr)
        return report.exit_code

    summary = Summary()
    for result in report.results:
        summary.add(result)
        if not should_display_result(result, args.verbose):
            continue
        print(format_result(report.profile, result))
    for module in report.modules:
        if module.cause is not None and not module.results:
            line = f"{report.profile}::{module.module} {StepStatus.ABORTED.value} - {module.cause}"
            print(colorize(line, STATUS_COLORS.get(StepStatus.ABORTED)))

    print(summary.render(dry_run=report.dry_run))
    return report.exit_code


def list_modules(args: argparse.Namespace, cfg: TinkerConfig, module_hooks: Sequence[ModuleHook]) -> int:
    try:
        prepared = prepare(
            args.profile,
            cfg,
            documents=args.documents,
            only=args.only,
            step_registry=STEP_REGISTRY,
            module_hooks=module_hooks,
        )
    except ProvisionError as exc:
        print(colorize(f"Plan validation failed: {exc}", Ansi.RED), file=sys.stderr)
        return EXIT_CODES[RunOutcome.HARD_FAILURE]
    for position, module_id in enumerate(prepared.plan, start=1):
        module = prepared.registry.lookup(module_id)
        deps = f" (after {', '.join(module.depends_on)})" if module.depends_on else ""
        print(f"{position:>2}. {module_id}{deps} - {len(module.steps)} steps")
    return EXIT_CODES[RunOutcome.SUCCESS]


def format_result(profile: str, result: StepResult) -> str:
    color = Ansi.YELLOW if result.simulated else STATUS_COLORS.get(result.status)
    line = f"{profile}::{result.module}[{result.step}] {result.status.value} - {result.details}"
    return colorize(line, color)


def should_display_result(result: StepResult, verbose: bool) -> bool:
    if result.status is not StepStatus.SKIPPED:
        return True
    return verbose


def print_progress(module_id: str, step: Step) -> None:
    global _last_progress_len
    line = f"{module_id}[{step.description}] pending..."
    _clear_progress()
    _last_progress_len = len(line)
    print(colorize(line, Ansi.YELLOW), end="\r", flush=True)


def _clear_progress() -> None:
    global _last_progress_len
    if _last_progress_len:
        print(" " * _last_progress_len, end="\r", flush=True)
        _last_progress_len = 0


def _load_plugins(cfg: TinkerConfig) -> list[ModuleHook]:
    """Import plugin modules and let them extend the step and module registries."""

    hooks: list[ModuleHook] = []
    loaded = []
    for name in cfg.plugin_modules:
        logger.debug("loading plugin module %s", name)
        try:
            loaded.append(importlib.import_module(name))
        except Exception as exc:  # noqa: BLE001
            raise PluginError(name, exc) from exc
    for directory in cfg.plugin_dirs:
        if not directory.is_dir():
            logger.warning("plugin directory %s does not exist", directory)
            continue
        for path in sorted(directory.glob("*.py")):
            spec = importlib.util.spec_from_file_location(f"tinker_plugin_{path.stem}", path)
            if spec is None or spec.loader is None:
                logger.warning("unable to load plugin %s", path)
                continue
            module = importlib.util.module_from_spec(spec)
            try:
                spec.loader.exec_module(module)
            except Exception as exc:  # noqa: BLE001
                raise PluginError(str(path), exc) from exc
            loaded.append(module)
    for module in loaded:
        register_steps = getattr(module, "register_steps", None)
        if callable(register_steps):
            register_steps(STEP_REGISTRY)
        register_modules = getattr(module, "register_modules", None)
        if callable(register_modules):
            hooks.append(register_modules)
    return hooks


class Summary:
    def __init__(self) -> None:
        self.skipped = 0
        self.applied = 0
        self.failed = 0
        self.aborted = 0

    def add(self, result: StepResult) -> None:
        if result.status is StepStatus.SKIPPED:
            self.skipped += 1
        elif result.status is StepStatus.APPLIED:
            self.applied += 1
        elif result.status is StepStatus.FAILED:
            self.failed += 1
        else:
            self.aborted += 1

    def render(self, *, dry_run: bool = False) -> str:
        parts = [
            f"Skipped: {self.skipped}",
            f"Applied: {self.applied}",
            f"Failed: {self.failed}",
            f"Aborted: {self.aborted}",
        ]
        text = " | ".join(parts)
        if dry_run:
            text += " (dry-run)"
        color = Ansi.GREEN if self.failed == 0 and self.aborted == 0 else Ansi.RED
        return colorize(text, color)


if __name__ == "__main__":
    raise SystemExit(main())
