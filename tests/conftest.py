from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Callable, Optional

import pytest

from tinker_provision.context import PrivilegeBroker, RunContext
from tinker_provision.documents import ConfigurationDocument
from tinker_provision.executors import CommandResult, Executor
from tinker_provision.types import DeviceProfile

Handler = Callable[[list[str]], tuple[int, str, str]]


def _ok(command: list[str]) -> tuple[int, str, str]:
    return 0, "", ""


class FakeExecutor(Executor):
    """Executor that records commands and keeps files in memory."""

    def __init__(self, handler: Optional[Handler] = None, *, dry_run: bool = False):
        super().__init__(dry_run=dry_run)
        self.handler = handler or _ok
        self.calls: list[list[str]] = []
        self.privileged_calls: list[list[str]] = []
        self.files: dict[Path, str] = {}
        self.modes: dict[Path, int] = {}
        self.binaries: dict[str, str] = {}

    def run(
        self,
        command,
        *,
        check=True,
        mutable=True,
        privileged=False,
        env=None,
        cwd=None,
        timeout=None,
        input=None,
    ) -> CommandResult:
        cmd = [str(part) for part in command]
        if self.dry_run and mutable:
            return CommandResult(cmd, "", "skipped (dry-run)", 0)
        self._effective_timeout(timeout)
        self.calls.append(cmd)
        if privileged:
            self.privileged_calls.append(cmd)
        rc, out, err = self.handler(cmd)
        if check and rc != 0:
            raise subprocess.CalledProcessError(rc, cmd, out, err)
        return CommandResult(cmd, out, err, rc)

    def read_file(self, path: Path) -> Optional[str]:
        return self.files.get(path)

    def write_file(self, path: Path, *, content: str, mode: Optional[int], privileged: bool = False):
        changed = self.files.get(path) != content or (mode is not None and self.modes.get(path) != mode)
        if not self.dry_run:
            self.files[path] = content
            if mode is not None:
                self.modes[path] = mode
        return changed, "content" if changed else "noop"

    def file_mode(self, path: Path) -> Optional[int]:
        return self.modes.get(path)

    def which(self, binary: str) -> Optional[str]:
        return self.binaries.get(binary)


@pytest.fixture
def profile() -> DeviceProfile:
    return DeviceProfile(
        name="mac-studio",
        device_class="headless-server",
        variables={"hostname": "studio", "font": "Maple Mono NF"},
    )


@pytest.fixture
def make_context(tmp_path: Path, profile: DeviceProfile):
    def factory(executor: Optional[Executor] = None, *, data=None, dry_run: bool = False, privilege=None):
        document = ConfigurationDocument(data or {"schema_version": 1}, sources=[tmp_path / "tinker.toml"])
        return RunContext(
            profile=profile,
            document=document,
            executor=executor or FakeExecutor(dry_run=dry_run),
            privilege=privilege or PrivilegeBroker(prompt=lambda: True, refresh=lambda: True),
            dry_run=dry_run,
        )

    return factory


@pytest.fixture
def fake_executor_cls():
    return FakeExecutor
