from __future__ import annotations

from typing import TYPE_CHECKING, Any, Mapping, Optional

from .base import Step, as_bool

if TYPE_CHECKING:  # pragma: no cover
    from ..context import RunContext

SOCKETFILTERFW = "/usr/libexec/ApplicationFirewall/socketfilterfw"

# setting -> (query flag, set flag)
SETTINGS = {
    "globalstate": ("--getglobalstate", "--setglobalstate"),
    "stealthmode": ("--getstealthmode", "--setstealthmode"),
    "loggingmode": ("--getloggingmode", "--setloggingmode"),
    "allowsigned": ("--getallowsigned", "--setallowsigned"),
}


class FirewallStep(Step):
    """Drive one application firewall toggle through ``socketfilterfw``."""

    kind = "firewall"
    privileged = True

    def __init__(self, spec: Mapping[str, Any]):
        super().__init__(spec)
        setting = str(spec.get("setting", ""))
        if setting not in SETTINGS:
            raise ValueError(f"firewall step setting must be one of {', '.join(sorted(SETTINGS))}")
        self.setting = setting
        self.enabled = as_bool(spec.get("enabled"), "enabled", self.kind)

    def describe(self) -> str:
        return f"firewall {self.setting}"

    def check(self, context: "RunContext") -> bool:
        query, _ = SETTINGS[self.setting]
        result = context.executor.run([SOCKETFILTERFW, query], mutable=False)
        return parse_state(result.stdout, self.setting) == self.enabled

    def apply(self, context: "RunContext") -> Optional[str]:
        _, flag = SETTINGS[self.setting]
        value = "on" if self.enabled else "off"
        context.executor.run([SOCKETFILTERFW, flag, value], privileged=True)
        if self.setting == "allowsigned":
            context.executor.run([SOCKETFILTERFW, "--setallowsignedapp", value], privileged=True)
        return f"{self.setting}={value}"


def parse_state(output: str, setting: str) -> Optional[bool]:
    """Interpret the free-form status line socketfilterfw prints.

    ``--getallowsigned`` reports two lines (built-in and downloaded software);
    the setting counts as enabled only when every line says ENABLED.
    """

    text = output.lower()
    if setting == "allowsigned":
        lines = [line for line in text.splitlines() if line.strip()]
        if not lines:
            return None
        return all("enabled" in line for line in lines)
    if "disabled" in text or "is off" in text:
        return False
    if "enabled" in text or "is on" in text or "throttled" in text:
        return True
    return None
