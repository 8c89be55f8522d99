from __future__ import annotations

from typing import Iterator

from .errors import DuplicateModuleError, UnknownModuleError
from .types import Module


class ModuleRegistry:
    """Modules available to a run, keyed by id."""

    def __init__(self) -> None:
        self._modules: dict[str, Module] = {}

    def register(self, module: Module) -> None:
        if module.id in self._modules:
            raise DuplicateModuleError(f"module '{module.id}' is already registered")
        self._modules[module.id] = module

    def lookup(self, module_id: str) -> Module:
        try:
            return self._modules[module_id]
        except KeyError:
            raise UnknownModuleError(module_id) from None

    def ids(self) -> list[str]:
        return sorted(self._modules)

    def __contains__(self, module_id: object) -> bool:
        return module_id in self._modules

    def __len__(self) -> int:
        return len(self._modules)

    def __iter__(self) -> Iterator[Module]:
        for module_id in self.ids():
            yield self._modules[module_id]
