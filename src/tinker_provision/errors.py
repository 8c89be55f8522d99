from __future__ import annotations

from typing import Iterable, Optional, Sequence, Union


class ProvisionError(Exception):
    """Base class for errors raised by the provisioning engine."""


class ConfigError(ProvisionError):
    """Raised when configuration documents are malformed or incomplete.

    All problems found during a load are collected into ``problems`` so the
    operator can fix them in one pass.
    """

    def __init__(self, problems: Union[str, Iterable[str]], source: Optional[str] = None):
        if isinstance(problems, str):
            problems = [problems]
        self.problems = list(problems)
        self.source = source
        prefix = f"{source}: " if source else ""
        super().__init__(prefix + "; ".join(self.problems))


class ProfileError(ConfigError):
    """Raised when a device profile cannot be found or is invalid."""


class TemplateError(ProvisionError):
    """Raised when a template cannot be rendered."""

    def __init__(self, message: str, line: Optional[int] = None):
        self.line = line
        if line is not None:
            message = f"line {line}: {message}"
        super().__init__(message)


class CycleError(ProvisionError):
    """Raised when module dependencies form a cycle."""

    def __init__(self, cycle: Sequence[str]):
        self.cycle = list(cycle)
        super().__init__("dependency cycle: " + " -> ".join(self.cycle))


class UnknownModuleError(ProvisionError, LookupError):
    """Raised when a module id is not registered."""

    def __init__(self, module_id: str, referenced_by: Optional[str] = None):
        self.module_id = module_id
        self.referenced_by = referenced_by
        if referenced_by:
            message = f"module '{referenced_by}' depends on unknown module '{module_id}'"
        else:
            message = f"unknown module '{module_id}'"
        super().__init__(message)

    def __str__(self) -> str:
        return str(self.args[0])


class DuplicateModuleError(ProvisionError):
    """Raised when two modules are registered under the same id."""


class StepFailure(ProvisionError):
    """Raised by steps when an external tool or contract check fails."""


class StepTimeout(StepFailure):
    """Raised when a step exceeds its deadline."""

    def __init__(self, message: str = "timeout"):
        super().__init__(message)


class PrivilegeError(StepFailure):
    """Raised when privilege escalation is refused or has lapsed."""


class PluginError(ProvisionError):
    """Raised when a plugin module cannot be imported."""

    def __init__(self, plugin: str, cause: BaseException):
        self.plugin = plugin
        self.cause = cause
        super().__init__(f"plugin '{plugin}' failed to load: {cause}")
