from __future__ import annotations

from typing import TYPE_CHECKING, Any, Mapping, Optional

from .base import Step, as_bool
from ..errors import StepFailure

if TYPE_CHECKING:  # pragma: no cover
    from ..context import RunContext

SPCTL = "spctl"
FDESETUP = "fdesetup"


class GatekeeperStep(Step):
    """Turn Gatekeeper assessments on or off with ``spctl``."""

    kind = "gatekeeper"
    privileged = True

    def __init__(self, spec: Mapping[str, Any]):
        super().__init__(spec)
        self.enabled = as_bool(spec.get("enabled", True), "enabled", self.kind)

    def describe(self) -> str:
        return f"gatekeeper {'on' if self.enabled else 'off'}"

    def check(self, context: "RunContext") -> bool:
        # spctl exits 1 when assessments are disabled.
        result = context.executor.run([SPCTL, "--status"], check=False, mutable=False)
        return parse_gatekeeper(result.stdout) == self.enabled

    def apply(self, context: "RunContext") -> Optional[str]:
        flag = "--master-enable" if self.enabled else "--master-disable"
        context.executor.run([SPCTL, flag], privileged=True)
        return f"gatekeeper {'on' if self.enabled else 'off'}"


class FileVaultStep(Step):
    """Require FileVault disk encryption to be on.

    Enabling FileVault needs the user's password and hands out a recovery
    key, so the step only verifies the state and fails with instructions
    when encryption is off.
    """

    kind = "filevault"

    def describe(self) -> str:
        return "filevault on"

    def check(self, context: "RunContext") -> bool:
        result = context.executor.run([FDESETUP, "status"], check=False, mutable=False)
        return parse_filevault(result.stdout)

    def apply(self, context: "RunContext") -> Optional[str]:
        raise StepFailure("FileVault is off; run 'sudo fdesetup enable' and store the recovery key")


def parse_gatekeeper(output: str) -> Optional[bool]:
    text = output.lower()
    if "assessments disabled" in text:
        return False
    if "assessments enabled" in text:
        return True
    return None


def parse_filevault(output: str) -> bool:
    # "Encryption in progress" already counts: the volume converges without us.
    return "FileVault is On" in output or "Encryption in progress" in output
