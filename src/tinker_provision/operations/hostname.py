from __future__ import annotations

import re
from typing import TYPE_CHECKING, Any, Mapping, Optional

from .base import Step, require

if TYPE_CHECKING:  # pragma: no cover
    from ..context import RunContext

SCUTIL = "scutil"
NAME_KEYS = ("ComputerName", "HostName", "LocalHostName")


class HostnameStep(Step):
    kind = "hostname"
    privileged = True

    def __init__(self, spec: Mapping[str, Any]):
        super().__init__(spec)
        self.name = str(require(spec, "name", self.kind))
        self.local_name = local_hostname(self.name)
        if not self.local_name:
            raise ValueError(f"hostname '{self.name}' has no usable characters")

    def describe(self) -> str:
        return f"hostname {self.name}"

    def desired(self) -> dict[str, str]:
        return {
            "ComputerName": self.name,
            "HostName": self.name,
            "LocalHostName": self.local_name,
        }

    def check(self, context: "RunContext") -> bool:
        return not self._pending(context)

    def apply(self, context: "RunContext") -> Optional[str]:
        pending = self._pending(context)
        desired = self.desired()
        for key in pending:
            context.executor.run([SCUTIL, "--set", key, desired[key]], privileged=True)
        return ", ".join(f"{key}->{desired[key]}" for key in pending)

    def _pending(self, context: "RunContext") -> list[str]:
        pending: list[str] = []
        for key, value in self.desired().items():
            # An unset HostName makes scutil exit non-zero.
            result = context.executor.run([SCUTIL, "--get", key], check=False, mutable=False)
            current = result.stdout.strip() if result.returncode == 0 else None
            if current != value:
                pending.append(key)
        return pending


def local_hostname(name: str) -> str:
    """Bonjour names allow only letters, digits and hyphens."""

    cleaned = re.sub(r"[^A-Za-z0-9-]+", "-", name.strip())
    return cleaned.strip("-")
