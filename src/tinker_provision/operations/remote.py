from __future__ import annotations

from typing import TYPE_CHECKING, Any, Mapping, Optional

from .base import Step, as_bool

if TYPE_CHECKING:  # pragma: no cover
    from ..context import RunContext

SSHD_SERVICE = "system/com.openssh.sshd"


class RemoteLoginStep(Step):
    """Turn Remote Login (sshd) on or off.

    ``systemsetup -getremotelogin`` needs root, so the state is read from
    launchd instead: the sshd job is only loaded while Remote Login is on.
    """

    kind = "remote_login"
    privileged = True

    def __init__(self, spec: Mapping[str, Any]):
        super().__init__(spec)
        self.enabled = as_bool(spec.get("enabled", True), "enabled", self.kind)

    def describe(self) -> str:
        return f"remote login {'on' if self.enabled else 'off'}"

    def check(self, context: "RunContext") -> bool:
        result = context.executor.run(["launchctl", "print", SSHD_SERVICE], check=False, mutable=False)
        return (result.returncode == 0) == self.enabled

    def apply(self, context: "RunContext") -> Optional[str]:
        value = "on" if self.enabled else "off"
        context.executor.run(["systemsetup", "-f", "-setremotelogin", value], privileged=True)
        return f"remote login {value}"
