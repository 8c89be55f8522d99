from __future__ import annotations

from typing import TYPE_CHECKING, Any, Mapping, Optional

from .base import Step, require

if TYPE_CHECKING:  # pragma: no cover
    from ..context import RunContext

PMSET = "pmset"
SCOPES = {"all": "-a", "battery": "-b", "charger": "-c"}

# ``pmset -g custom`` section headers per scope.
SECTIONS = {
    "battery": ("Battery Power",),
    "charger": ("AC Power",),
}


class PowerSettingStep(Step):
    """Set one ``pmset`` value for a power source.

    The check reads the stored per-source profiles rather than the settings in
    use, so a battery setting verifies correctly while on AC power.
    """

    kind = "power"
    privileged = True

    def __init__(self, spec: Mapping[str, Any]):
        super().__init__(spec)
        self.setting = str(require(spec, "setting", self.kind))
        value = spec.get("value")
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValueError(f"power setting '{self.setting}' needs an integer value")
        self.value = value
        self.scope = str(spec.get("scope", "all"))
        if self.scope not in SCOPES:
            raise ValueError(f"power scope must be one of {', '.join(sorted(SCOPES))}")

    def describe(self) -> str:
        return f"pmset {self.setting}"

    def check(self, context: "RunContext") -> bool:
        result = context.executor.run([PMSET, "-g", "custom"], mutable=False)
        profiles = parse_custom(result.stdout)
        if self.scope == "all":
            # Desktops only report an AC Power section.
            selected = list(profiles.values())
        else:
            selected = [profiles[name] for name in SECTIONS[self.scope] if name in profiles]
        if not selected:
            return False
        return all(settings.get(self.setting) == str(self.value) for settings in selected)

    def apply(self, context: "RunContext") -> Optional[str]:
        context.executor.run(
            [PMSET, SCOPES[self.scope], self.setting, str(self.value)],
            privileged=True,
        )
        return f"{self.setting}={self.value}"


def parse_custom(output: str) -> dict[str, dict[str, str]]:
    """Split ``pmset -g custom`` into ``{section: {key: value}}``.

    Section headers end with a colon; trailing notes after a value are ignored.
    """

    profiles: dict[str, dict[str, str]] = {}
    current: Optional[dict[str, str]] = None
    for line in output.splitlines():
        stripped = line.strip()
        if not stripped:
            continue
        if stripped.endswith(":"):
            current = profiles.setdefault(stripped[:-1], {})
            continue
        parts = stripped.split()
        if current is not None and len(parts) >= 2:
            current[parts[0]] = parts[1]
    return profiles
