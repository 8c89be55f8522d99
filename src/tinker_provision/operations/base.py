from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Mapping, Optional

if TYPE_CHECKING:  # pragma: no cover
    from ..context import RunContext


class Step(ABC):
    """Shared surface for idempotent provisioning actions.

    ``check`` inspects the system and must not change it; ``apply`` moves the
    system towards the desired state. The runner only calls ``apply`` after
    ``check`` reported the state as unsatisfied.
    """

    kind = "step"
    privileged = False

    def __init__(self, spec: Mapping[str, Any]):
        self.spec = dict(spec)
        raw_privileged = self.spec.get("privileged")
        self._privileged_override = None if raw_privileged is None else bool(raw_privileged)
        self.timeout = _parse_timeout(self.spec.get("timeout"))

    @property
    def requires_privilege(self) -> bool:
        if self._privileged_override is not None:
            return self._privileged_override
        return self.privileged

    @property
    def description(self) -> str:
        return str(self.spec.get("description") or self.describe())

    def describe(self) -> str:
        return self.kind

    @abstractmethod
    def check(self, context: "RunContext") -> bool:
        """Return True when the system already matches the desired state."""

    @abstractmethod
    def apply(self, context: "RunContext") -> Optional[str]:
        """Change the system; the returned string is reported as detail."""

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.description!r}>"


def _parse_timeout(value: Any) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError("step timeout must be numeric")
    try:
        timeout = float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError("step timeout must be numeric") from exc
    if timeout <= 0:
        raise ValueError("step timeout must be positive")
    return timeout


def require(spec: Mapping[str, Any], key: str, kind: str) -> Any:
    value = spec.get(key)
    if value is None or value == "":
        raise ValueError(f"{kind} step requires '{key}'")
    return value


def as_bool(value: Any, key: str, kind: str) -> bool:
    if not isinstance(value, bool):
        raise ValueError(f"{kind} step '{key}' must be true or false")
    return value
