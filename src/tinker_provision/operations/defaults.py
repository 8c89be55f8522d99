from __future__ import annotations

from typing import TYPE_CHECKING, Any, Mapping, Optional

from .base import Step, require

if TYPE_CHECKING:  # pragma: no cover
    from ..context import RunContext

SYSTEM_DOMAIN_PREFIXES = ("/Library/", "/etc/", "/var/")

_TYPE_FLAGS = {
    "bool": "-bool",
    "int": "-int",
    "float": "-float",
    "string": "-string",
}


class DefaultsStep(Step):
    """Set one preference key through ``defaults write``.

    Domains stored under system paths need administrator privilege unless the
    entry says otherwise.
    """

    kind = "defaults"

    def __init__(self, spec: Mapping[str, Any]):
        super().__init__(spec)
        self.domain = str(require(spec, "domain", self.kind))
        self.key = str(require(spec, "key", self.kind))
        if "value" not in spec:
            raise ValueError("defaults step requires 'value'")
        self.value = spec["value"]
        self.value_type = str(spec.get("type") or _infer_type(self.value))
        if self.value_type not in _TYPE_FLAGS:
            raise ValueError(f"unsupported defaults type '{self.value_type}'")
        if self.value_type == "bool" and not isinstance(self.value, bool):
            raise ValueError("defaults bool value must be true or false")
        self.privileged = self.domain.startswith(SYSTEM_DOMAIN_PREFIXES)

    def describe(self) -> str:
        return f"defaults {self.domain} {self.key}"

    def check(self, context: "RunContext") -> bool:
        result = context.executor.run(
            ["defaults", "read", self.domain, self.key],
            check=False,
            mutable=False,
        )
        if result.returncode != 0:
            return False
        return self._normalize(result.stdout.strip()) == self._desired()

    def apply(self, context: "RunContext") -> Optional[str]:
        context.executor.run(
            ["defaults", "write", self.domain, self.key, _TYPE_FLAGS[self.value_type], self._argument()],
            privileged=self.requires_privilege,
        )
        return f"{self.key}={self._argument()}"

    def _argument(self) -> str:
        if self.value_type == "bool":
            return "true" if self.value else "false"
        return str(self.value)

    def _desired(self) -> str:
        # ``defaults read`` prints booleans as 1/0.
        if self.value_type == "bool":
            return "1" if self.value else "0"
        return self._normalize(str(self.value))

    def _normalize(self, text: str) -> str:
        if self.value_type == "float":
            try:
                return repr(float(text))
            except ValueError:
                return text
        return text


def _infer_type(value: Any) -> str:
    if isinstance(value, bool):
        return "bool"
    if isinstance(value, int):
        return "int"
    if isinstance(value, float):
        return "float"
    return "string"
