from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Mapping, Optional, Union
import logging
import subprocess

from .config import DEFAULT_STEP_TIMEOUT
from .documents import ConfigurationDocument
from .errors import PrivilegeError
from .executors import Executor, is_root
from .templates import TemplateRenderer
from .types import DeviceProfile

logger = logging.getLogger(__name__)


def _sudo_validate() -> bool:
    # sudo owns the terminal for the password prompt.
    return subprocess.run(["sudo", "-v"], check=False).returncode == 0


def _sudo_refresh() -> bool:
    return subprocess.run(["sudo", "-n", "-v"], capture_output=True, check=False).returncode == 0


class PrivilegeBroker:
    """Acquires administrator privilege at most once per run.

    The first request prompts; later requests only refresh the cached
    credential without prompting. A refusal is remembered so every later
    privileged step fails with the same cause.
    """

    def __init__(
        self,
        *,
        prompt: Optional[Callable[[], bool]] = None,
        refresh: Optional[Callable[[], bool]] = None,
    ):
        self._prompt = prompt or _sudo_validate
        self._refresh = refresh or _sudo_refresh
        self._granted = False
        self._as_root = False
        self._error: Optional[str] = None
        self.prompts = 0

    @property
    def granted(self) -> bool:
        return self._granted

    def acquire(self) -> None:
        if self._error:
            raise PrivilegeError(self._error)
        if self._granted:
            if self._as_root or self._refresh():
                return
            self._error = "administrator privileges expired"
            raise PrivilegeError(self._error)
        if is_root():
            self._granted = self._as_root = True
            return
        self.prompts += 1
        logger.info("requesting administrator privileges")
        if not self._prompt():
            self._error = "privilege escalation refused"
            raise PrivilegeError(self._error)
        self._granted = True


@dataclass
class RunContext:
    """Everything a step may touch during one run."""

    profile: DeviceProfile
    document: ConfigurationDocument
    executor: Executor
    renderer: TemplateRenderer = field(default_factory=TemplateRenderer)
    privilege: PrivilegeBroker = field(default_factory=PrivilegeBroker)
    dry_run: bool = False
    step_timeout: Optional[float] = DEFAULT_STEP_TIMEOUT

    def render(self, template: str, variables: Optional[Mapping[str, Any]] = None) -> str:
        return self.renderer.render(template, self.profile, variables)

    def resolve_path(self, value: Union[str, Path]) -> Path:
        path = Path(str(value)).expanduser()
        if path.is_absolute():
            return path
        return self.document.base_dir / path
