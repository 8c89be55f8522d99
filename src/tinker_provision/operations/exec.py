from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Any, Iterable, Mapping, Optional, Sequence
import logging

from .base import Step
from ..errors import StepFailure
from ..executors import CommandResult

if TYPE_CHECKING:  # pragma: no cover
    from ..context import RunContext

logger = logging.getLogger(__name__)


class ExecStep(Step):
    """Run an arbitrary command guarded by a check command or a marker file.

    The guard keeps the step idempotent: ``check`` succeeds when the guard
    command exits 0 or when the ``creates`` path exists.
    """

    kind = "exec"

    def __init__(self, spec: Mapping[str, Any]):
        super().__init__(spec)
        raw_name = spec.get("name")
        if not raw_name:
            raise ValueError("exec step requires a name")
        self.name = str(raw_name)

        raw_command = spec.get("command") or spec.get("cmd")
        if raw_command is None:
            raise ValueError("exec step requires a command")
        self.raw_command = raw_command

        self.guard = spec.get("check") or spec.get("unless")
        self.creates = Path(str(spec["creates"])).expanduser() if "creates" in spec else None
        if self.guard is None and self.creates is None:
            raise ValueError("exec step requires a check command or creates path")

        self.cwd = Path(str(spec["cwd"])).expanduser() if "cwd" in spec else None
        self.env = self._normalize_env(spec.get("env") or spec.get("environment"))
        raw_vars = spec.get("variables", {})
        if raw_vars is not None and not isinstance(raw_vars, Mapping):
            raise ValueError("exec variables must be a mapping")
        self.variables = dict(raw_vars or {})
        self.allowed_returns = self._normalize_returns(spec.get("returns", [0]))

    def describe(self) -> str:
        return self.name

    def check(self, context: "RunContext") -> bool:
        if self.creates is not None and self._resolve_path(self.creates).exists():
            return True
        if self.guard is None:
            return False
        guard = context.executor.run(
            self._render_and_normalize(self.guard, context),
            check=False,
            mutable=False,
            env=self.env,
            cwd=self.cwd,
        )
        return guard.returncode == 0

    def apply(self, context: "RunContext") -> Optional[str]:
        command = self._render_and_normalize(self.raw_command, context)
        result = context.executor.run(
            command,
            check=False,
            privileged=self.requires_privilege,
            env=self.env,
            cwd=self.cwd,
        )
        if result.returncode not in self.allowed_returns:
            if logger.isEnabledFor(logging.DEBUG):
                logger.debug(
                    "exec failed name=%s rc=%s cmd=%s",
                    self.name,
                    result.returncode,
                    " ".join(command),
                )
            raise StepFailure(self._error_detail(result))
        return f"ran (rc={result.returncode})"

    def _render_and_normalize(self, value: Any, context: "RunContext") -> list[str]:
        if isinstance(value, str):
            return self._normalize_command(context.render(value, self.variables))
        if isinstance(value, Sequence):
            return self._normalize_command([context.render(str(v), self.variables) for v in value])
        raise ValueError("exec command/guard must be a string or list")

    def _resolve_path(self, path: Path) -> Path:
        if path.is_absolute() or self.cwd is None:
            return path
        return self.cwd / path

    @staticmethod
    def _normalize_command(value: Any) -> list[str]:
        if isinstance(value, str):
            return ["sh", "-c", value]
        return [str(v) for v in value]

    @staticmethod
    def _normalize_env(value: Any) -> Optional[dict[str, str]]:
        if value is None:
            return None
        if isinstance(value, Mapping):
            return {str(k): str(v) for k, v in value.items()}
        if isinstance(value, Iterable) and not isinstance(value, (str, bytes)):
            env: dict[str, str] = {}
            for item in value:
                key, sep, val = str(item).partition("=")
                if not sep:
                    raise ValueError("env list entries must be KEY=VALUE")
                env[key] = val
            return env
        raise ValueError("exec env must be a mapping or list of KEY=VALUE strings")

    @staticmethod
    def _normalize_returns(value: Any) -> list[int]:
        if value is None:
            return [0]
        if isinstance(value, int):
            return [int(value)]
        if isinstance(value, Iterable):
            return [int(v) for v in value]
        raise ValueError("exec returns must be an int or list of ints")

    @staticmethod
    def _error_detail(result: CommandResult) -> str:
        message = summarize_output(result.stderr, result.stdout)
        prefix = f"rc={result.returncode}"
        if message:
            return f"{prefix}: {message}"
        return prefix


def summarize_output(*streams: Optional[str]) -> Optional[str]:
    for text in streams:
        if not text:
            continue
        stripped = text.strip()
        if not stripped:
            continue
        line = stripped.splitlines()[0]
        return (line[:157] + "...") if len(line) > 160 else line
    return None
