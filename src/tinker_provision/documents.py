from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path
from types import MappingProxyType
from typing import Any, Iterator, Sequence, Union
import copy
import logging

try:
    import tomllib  # type: ignore[attr-defined]
except ModuleNotFoundError:  # pragma: no cover
    import tomli as tomllib  # type: ignore[no-redef]

from .errors import ConfigError
from .schema import validate

logger = logging.getLogger(__name__)

_MISSING = object()


class ConfigurationDocument(Mapping):
    """Merged, validated and read-only view over configuration documents."""

    def __init__(self, data: Mapping[str, Any], sources: Sequence[Union[str, Path]] = ()):
        self._data = _freeze(data)
        self.sources = tuple(Path(source) for source in sources)

    def __getitem__(self, key: str) -> Any:
        return self._data[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def get(self, key: str, default: Any = None) -> Any:
        """Look up ``key`` using dotted paths (``network.dns``)."""
        node: Any = self._data
        for part in key.split("."):
            if not isinstance(node, Mapping):
                return default
            node = node.get(part, _MISSING)
            if node is _MISSING:
                return default
        return node

    def domain(self, name: str) -> Mapping[str, Any]:
        value = self._data.get(name)
        if isinstance(value, Mapping):
            return value
        return MappingProxyType({})

    @property
    def base_dir(self) -> Path:
        if self.sources:
            return self.sources[0].parent
        return Path.cwd()

    def to_dict(self) -> dict[str, Any]:
        return _thaw(self._data)

    def __repr__(self) -> str:
        sources = ", ".join(str(source) for source in self.sources)
        return f"ConfigurationDocument(domains={sorted(self._data)}, sources=[{sources}])"


class DocumentLoader:
    """Reads TOML configuration documents and merges them in order."""

    def load(self, paths: Sequence[Union[str, Path]]) -> ConfigurationDocument:
        if not paths:
            raise ConfigError("no configuration documents given")
        merged: dict[str, Any] = {}
        problems: list[str] = []
        for raw in paths:
            path = Path(raw)
            try:
                data = self._read(path)
            except ConfigError as exc:
                problems.extend(f"{path}: {problem}" for problem in exc.problems)
                continue
            logger.debug("merging configuration document %s", path)
            merged = merge(merged, data)
        if problems:
            raise ConfigError(problems)
        problems = validate(merged)
        if problems:
            raise ConfigError(problems)
        return ConfigurationDocument(merged, sources=[Path(p) for p in paths])

    @staticmethod
    def _read(path: Path) -> dict[str, Any]:
        try:
            text = path.read_text()
        except OSError as exc:
            raise ConfigError(f"cannot read document ({exc.strerror or exc})") from None
        try:
            return tomllib.loads(text)
        except tomllib.TOMLDecodeError as exc:
            raise ConfigError(f"invalid TOML: {exc}") from None


def load(paths: Sequence[Union[str, Path]]) -> ConfigurationDocument:
    return DocumentLoader().load(paths)


def merge(base: Mapping[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    """Merge ``override`` onto ``base``.

    Mappings merge key by key; every other value, sequences included, is
    replaced wholesale by the later document.
    """

    result: dict[str, Any] = {key: copy.deepcopy(value) for key, value in base.items()}
    for key, value in override.items():
        current = result.get(key)
        if isinstance(current, Mapping) and isinstance(value, Mapping):
            result[key] = merge(current, value)
        else:
            result[key] = copy.deepcopy(value)
    return result


def _freeze(value: Any) -> Any:
    if isinstance(value, Mapping):
        return MappingProxyType({key: _freeze(item) for key, item in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(_freeze(item) for item in value)
    return value


def _thaw(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {key: _thaw(item) for key, item in value.items()}
    if isinstance(value, tuple):
        return [_thaw(item) for item in value]
    return value

