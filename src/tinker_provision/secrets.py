from __future__ import annotations

import os
from typing import Any, Mapping, Optional


class SecretResolver:
    """Resolves ``{ env = "NAME" }`` references in variable mappings.

    Secret values are only ever read from the environment at render time;
    nothing here caches or writes them.
    """

    def __init__(self, environ: Optional[Mapping[str, str]] = None):
        self._environ = environ

    def resolve(self, values: Mapping[str, Any]) -> dict[str, Any]:
        return {k: self._resolve_value(v) for k, v in values.items()}

    def _resolve_value(self, value: Any) -> Any:
        if isinstance(value, Mapping):
            if is_reference(value):
                return self._resolve_env(value)
            return {k: self._resolve_value(v) for k, v in value.items()}
        if isinstance(value, (list, tuple)):
            return [self._resolve_value(v) for v in value]
        return value

    def _resolve_env(self, spec: Mapping[str, Any]) -> Any:
        environ = self._environ if self._environ is not None else os.environ
        name = str(spec["env"])
        if name in environ:
            return environ[name]
        if "default" in spec:
            return spec["default"]
        raise KeyError(f"environment variable {name} is not set")


def is_reference(value: Any) -> bool:
    return isinstance(value, Mapping) and "env" in value and set(value) <= {"env", "default"}
