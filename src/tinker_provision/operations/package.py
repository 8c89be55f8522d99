from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Any, Mapping, Optional
import logging
import os

from .base import Step
from ..executors import Executor

if TYPE_CHECKING:  # pragma: no cover
    from ..context import RunContext

logger = logging.getLogger(__name__)

HOMEBREW_INSTALL_URL = "https://raw.githubusercontent.com/Homebrew/install/HEAD/install.sh"
HOMEBREW_PREFIXES = ("/opt/homebrew/bin/brew", "/usr/local/bin/brew")


class PackageStep(Step):
    """Install or remove Homebrew formulae and casks."""

    kind = "package"

    def __init__(self, spec: Mapping[str, Any]):
        super().__init__(spec)
        packages = spec.get("name") or spec.get("packages")
        if isinstance(packages, str):
            self.packages = [packages]
        else:
            self.packages = [str(pkg) for pkg in packages or []]
        if not self.packages:
            raise ValueError("package step requires at least one package")
        self.state = str(spec.get("state", "present"))
        if self.state not in {"present", "absent"}:
            raise ValueError("package step state must be 'present' or 'absent'")
        self.cask = bool(spec.get("cask", False))
        self.preferred_manager = spec.get("manager")
        known = PackageManagerFactory.names()
        if self.preferred_manager is not None and str(self.preferred_manager).lower() not in known:
            raise ValueError(f"unknown package manager '{self.preferred_manager}'")
        self._manager: Optional[PackageManager] = None

    @property
    def manager(self) -> "PackageManager":
        if self._manager is None:
            preferred = "brew" if self.cask else self.preferred_manager
            self._manager = PackageManagerFactory.create(preferred)
        return self._manager

    @property
    def requires_privilege(self) -> bool:
        if self._privileged_override is not None:
            return self._privileged_override
        return self.manager.privileged

    def describe(self) -> str:
        label = "cask" if self.cask else "package"
        return f"{label} {','.join(self.packages)} {self.state}"

    def check(self, context: "RunContext") -> bool:
        return not self._pending(context.executor)

    def apply(self, context: "RunContext") -> Optional[str]:
        pending = self._pending(context.executor)
        manager = self.manager
        logger.debug("package-manager=%s packages=%s", manager.name, pending)
        if self.state == "present":
            manager.install(context.executor, pending, cask=self.cask)
            return f"manager={manager.name} installed={','.join(pending)}"
        manager.remove(context.executor, pending, cask=self.cask)
        return f"manager={manager.name} removed={','.join(pending)}"

    def _pending(self, executor: Executor) -> list[str]:
        want_installed = self.state == "present"
        return [
            pkg
            for pkg in self.packages
            if self.manager.is_installed(executor, pkg, cask=self.cask) != want_installed
        ]


class PackageManagerFactory:
    _MANAGERS = {
        "brew": lambda: BrewPackageManager(),
    }

    @classmethod
    def names(cls) -> tuple[str, ...]:
        return tuple(cls._MANAGERS)

    @classmethod
    def create(cls, preferred: Optional[object]) -> "PackageManager":
        key = "brew" if preferred is None else str(preferred).lower()
        factory = cls._MANAGERS.get(key)
        if factory is None:
            raise ValueError(f"Unknown package manager '{preferred}'")
        return factory()


class PackageManager:
    name = "generic"
    privileged = False

    def install(self, executor: Executor, packages: list[str], *, cask: bool = False) -> None:
        raise NotImplementedError

    def remove(self, executor: Executor, packages: list[str], *, cask: bool = False) -> None:
        raise NotImplementedError

    def is_installed(self, executor: Executor, package: str, *, cask: bool = False) -> bool:
        raise NotImplementedError


class BrewPackageManager(PackageManager):
    name = "brew"

    def install(self, executor: Executor, packages: list[str], *, cask: bool = False) -> None:
        executor.run([brew_binary(executor), "install", *self._cask_flag(cask), *packages])

    def remove(self, executor: Executor, packages: list[str], *, cask: bool = False) -> None:
        executor.run([brew_binary(executor), "uninstall", *self._cask_flag(cask), *packages])

    def is_installed(self, executor: Executor, package: str, *, cask: bool = False) -> bool:
        result = executor.run(
            [brew_binary(executor), "list", *self._cask_flag(cask), package], check=False, mutable=False
        )
        return result.returncode == 0

    @staticmethod
    def _cask_flag(cask: bool) -> list[str]:
        return ["--cask"] if cask else []


def find_brew(executor: Executor) -> Optional[str]:
    """Locate ``brew`` on PATH or under a standard install prefix.

    A fresh Apple Silicon install lives in /opt/homebrew/bin, which is not on
    the engine's PATH until the user's shell profile has been reloaded.
    """

    found = executor.which("brew")
    if found:
        return found
    for candidate in HOMEBREW_PREFIXES:
        if os.path.isfile(candidate) and os.access(candidate, os.X_OK):
            return candidate
    return None


def brew_binary(executor: Executor) -> str:
    return find_brew(executor) or "brew"


class BrewBundleStep(Step):
    """Install everything a Brewfile lists with ``brew bundle``.

    The path may carry template placeholders so one document can select a
    per-device Brewfile.
    """

    kind = "brew_bundle"

    def __init__(self, spec: Mapping[str, Any]):
        super().__init__(spec)
        raw = spec.get("file") or spec.get("path")
        if not raw:
            raise ValueError("brew_bundle step requires a file")
        self.raw_path = str(raw)
        self.upgrade = bool(spec.get("upgrade", False))

    def describe(self) -> str:
        return f"brew bundle {self.raw_path}"

    def check(self, context: "RunContext") -> bool:
        result = context.executor.run(
            [brew_binary(context.executor), "bundle", "check", "--file", str(self.brewfile(context))],
            check=False,
            mutable=False,
        )
        return result.returncode == 0

    def apply(self, context: "RunContext") -> Optional[str]:
        brewfile = self.brewfile(context)
        command = [brew_binary(context.executor), "bundle", "install", "--file", str(brewfile)]
        if not self.upgrade:
            command.append("--no-upgrade")
        context.executor.run(command)
        return f"bundled {brewfile}"

    def brewfile(self, context: "RunContext") -> Path:
        path = context.resolve_path(context.render(self.raw_path))
        if not path.exists():
            raise FileNotFoundError(f"Brewfile {path} does not exist")
        return path


class HomebrewStep(Step):
    """Bootstrap Homebrew itself when ``brew`` is not installed."""

    kind = "homebrew"
    privileged = True

    def __init__(self, spec: Mapping[str, Any]):
        super().__init__(spec)
        self.install_url = str(spec.get("install_url", HOMEBREW_INSTALL_URL))

    def describe(self) -> str:
        return "homebrew installed"

    def check(self, context: "RunContext") -> bool:
        return find_brew(context.executor) is not None

    def apply(self, context: "RunContext") -> Optional[str]:
        script = f'/bin/bash -c "$(curl -fsSL {self.install_url})"'
        context.executor.run(["/bin/bash", "-c", script], env={"NONINTERACTIVE": "1"})
        return "installed homebrew"

