from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional, Sequence, Union
import logging
import os
import shutil
import stat
import subprocess
import time

from .errors import StepTimeout

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    command: list[str]
    stdout: str
    stderr: str
    returncode: int


class Executor:
    """Base executor abstraction used by steps.

    Every command runs under the active step deadline, so a hung external
    tool turns into :class:`StepTimeout` instead of blocking the run.
    """

    def __init__(self, *, dry_run: bool = False):
        self.dry_run = dry_run
        self.deadline: Optional[float] = None

    @contextmanager
    def step_deadline(self, seconds: Optional[float]) -> Iterator[None]:
        previous = self.deadline
        self.deadline = time.monotonic() + seconds if seconds else None
        try:
            yield
        finally:
            self.deadline = previous

    def run(
        self,
        command: Sequence[str],
        *,
        check: bool = True,
        mutable: bool = True,
        privileged: bool = False,
        env: Optional[dict[str, str]] = None,
        cwd: Optional[Union[str, Path]] = None,
        timeout: Optional[float] = None,
        input: Optional[str] = None,
    ) -> CommandResult:
        """Run ``command`` and optionally skip it during dry-runs."""

        cmd_list = [str(part) for part in command]
        if self.dry_run and mutable:
            return CommandResult(cmd_list, "", "skipped (dry-run)", 0)
        if privileged and not is_root():
            cmd_list = ["sudo", "-n", *cmd_list]

        exec_env = None
        if env:
            exec_env = os.environ.copy()
            exec_env.update(env)

        logger.debug("run %s", " ".join(cmd_list))
        try:
            proc = subprocess.run(
                cmd_list,
                capture_output=True,
                text=True,
                check=False,
                env=exec_env,
                cwd=str(cwd) if cwd is not None else None,
                timeout=self._effective_timeout(timeout),
                input=input,
            )
        except subprocess.TimeoutExpired:
            logger.warning("command timed out: %s", " ".join(cmd_list))
            raise StepTimeout() from None
        if check and proc.returncode != 0:
            raise subprocess.CalledProcessError(
                proc.returncode,
                cmd_list,
                proc.stdout,
                proc.stderr,
            )
        return CommandResult(cmd_list, proc.stdout, proc.stderr, proc.returncode)

    def _effective_timeout(self, timeout: Optional[float]) -> Optional[float]:
        if self.deadline is None:
            return timeout
        remaining = self.deadline - time.monotonic()
        if remaining <= 0:
            raise StepTimeout()
        if timeout is None:
            return remaining
        return min(timeout, remaining)

    @staticmethod
    def which(binary: str) -> Optional[str]:
        return shutil.which(binary)

    # File primitives -----------------------------------------------------
    def read_file(self, path: Path) -> Optional[str]:
        raise NotImplementedError

    def write_file(
        self, path: Path, *, content: str, mode: Optional[int], privileged: bool = False
    ) -> tuple[bool, str]:
        raise NotImplementedError

    def file_mode(self, path: Path) -> Optional[int]:
        raise NotImplementedError


class LocalExecutor(Executor):
    """Executor that acts directly on the local machine."""

    def read_file(self, path: Path) -> Optional[str]:
        try:
            return path.read_text()
        except FileNotFoundError:
            return None

    def write_file(
        self, path: Path, *, content: str, mode: Optional[int], privileged: bool = False
    ) -> tuple[bool, str]:
        current = self.read_file(path)
        changed = False
        reasons: list[str] = []

        if current != content:
            changed = True
            reasons.append("content")
            if not self.dry_run:
                if privileged and not is_root():
                    self.run(["mkdir", "-p", str(path.parent)], privileged=True)
                    self.run(["tee", str(path)], privileged=True, input=content)
                else:
                    path.parent.mkdir(parents=True, exist_ok=True)
                    path.write_text(content)

        if mode is not None:
            existing_mode = self.file_mode(path)
            if existing_mode != mode:
                changed = True
                reasons.append(f"mode->{mode:04o}")
                # ``chmod`` fails if the file is absent, so guard it.
                if not self.dry_run and path.exists():
                    if privileged and not is_root():
                        self.run(["chmod", f"{mode:04o}", str(path)], privileged=True)
                    else:
                        os.chmod(path, mode)
        detail = ", ".join(reasons) if reasons else "noop"
        return changed, detail

    def file_mode(self, path: Path) -> Optional[int]:
        try:
            return stat.S_IMODE(path.stat().st_mode)
        except FileNotFoundError:
            return None


def is_root() -> bool:
    return hasattr(os, "geteuid") and os.geteuid() == 0
