from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

try:
    import tomllib  # type: ignore[attr-defined]
except ModuleNotFoundError:  # pragma: no cover
    import tomli as tomllib  # type: ignore[no-redef]

from .errors import ConfigError


DEFAULT_CONFIG = Path("~/.config/tinker/main.conf").expanduser()
DEFAULT_PROFILES_DIR = Path("~/.config/tinker/profiles").expanduser()
DEFAULT_STEP_TIMEOUT = 900.0


@dataclass
class TinkerConfig:
    profiles_dir: Path = DEFAULT_PROFILES_DIR
    documents: list[Path] = field(default_factory=list)
    report_file: Optional[Path] = None
    step_timeout: float = DEFAULT_STEP_TIMEOUT
    log_file: Optional[Path] = None
    plugin_modules: list[str] = field(default_factory=list)
    plugin_dirs: list[Path] = field(default_factory=list)


def load_config(path: Path) -> TinkerConfig:
    if not path.exists():
        return TinkerConfig()
    try:
        data = tomllib.loads(path.read_text())
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(str(exc), source=str(path)) from None
    defaults = data.get("defaults", {})
    base = path.parent
    profiles_dir = defaults.get("profiles_dir")
    report_file = defaults.get("report_file")
    log_file = defaults.get("log_file")
    return TinkerConfig(
        profiles_dir=_resolve(base, profiles_dir) if profiles_dir else DEFAULT_PROFILES_DIR,
        documents=[_resolve(base, item) for item in defaults.get("documents", [])],
        report_file=_resolve(base, report_file) if report_file else None,
        step_timeout=_parse_timeout(defaults.get("step_timeout"), path),
        log_file=_resolve(base, log_file) if log_file else None,
        plugin_modules=[str(item) for item in defaults.get("plugin_modules", [])],
        plugin_dirs=[_resolve(base, item) for item in defaults.get("plugin_dirs", [])],
    )


def _resolve(base: Path, value: Any) -> Path:
    path = Path(str(value)).expanduser()
    if path.is_absolute():
        return path
    return base / path


def _parse_timeout(value: Any, path: Path) -> float:
    if value is None:
        return DEFAULT_STEP_TIMEOUT
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise ConfigError("step_timeout must be a positive number of seconds", source=str(path))
    return float(value)
