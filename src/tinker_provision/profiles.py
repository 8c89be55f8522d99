from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Optional
import logging
import subprocess

try:
    import tomllib  # type: ignore[attr-defined]
except ModuleNotFoundError:  # pragma: no cover
    import tomli as tomllib  # type: ignore[no-redef]

from .errors import ProfileError
from .types import RESERVED_VARIABLES, DeviceProfile

logger = logging.getLogger(__name__)

AUTO = "auto"

BUILTIN_PROFILES: dict[str, DeviceProfile] = {
    "macbook-pro": DeviceProfile(
        name="macbook-pro",
        device_class="portable",
        variables={
            "hostname": "macbook-pro",
            "ip_address": "dhcp",
            "network_service": "Wi-Fi",
            "font": "Maple Mono NF",
        },
    ),
    "mac-studio": DeviceProfile(
        name="mac-studio",
        device_class="headless-server",
        variables={
            "hostname": "mac-studio",
            "ip_address": "10.20.0.10",
            "router": "10.20.0.1",
            "network_service": "Ethernet",
            "font": "Maple Mono NF",
        },
    ),
    "mac-mini": DeviceProfile(
        name="mac-mini",
        device_class="compact-desktop",
        variables={
            "hostname": "mac-mini",
            "ip_address": "10.20.0.12",
            "router": "10.20.0.1",
            "network_service": "Ethernet",
            "font": "Maple Mono NF",
        },
    ),
}

MODEL_PREFIXES = (
    ("MacBookPro", "macbook-pro"),
    ("MacBookAir", "macbook-air"),
    ("MacStudio", "mac-studio"),
    ("Macmini", "mac-mini"),
    ("iMac", "imac"),
    ("MacPro", "mac-pro"),
)


class ProfileLoader:
    """Resolves a profile identifier to a :class:`DeviceProfile`.

    ``<profiles_dir>/<name>.toml`` wins over the built-in profiles.
    """

    def __init__(self, profiles_dir: Optional[Path] = None, *, model_reader: Optional[Callable[[], str]] = None):
        self.profiles_dir = profiles_dir
        self.model_reader = model_reader or read_model_identifier

    def load(self, identifier: str) -> DeviceProfile:
        name = identifier
        if identifier == AUTO:
            name = self.detect()
            logger.info("detected device profile %s", name)
        if self.profiles_dir is not None:
            path = self.profiles_dir / f"{name}.toml"
            if path.exists():
                return self._load_file(path, name)
        profile = BUILTIN_PROFILES.get(name)
        if profile is None:
            raise ProfileError(f"unknown device profile '{name}'")
        return profile

    def detect(self) -> str:
        try:
            model = self.model_reader()
        except (OSError, subprocess.SubprocessError) as exc:
            raise ProfileError(f"unable to detect device model: {exc}") from None
        for prefix, name in MODEL_PREFIXES:
            if model.startswith(prefix):
                return name
        raise ProfileError(f"unrecognised device model '{model}'")

    @staticmethod
    def _load_file(path: Path, name: str) -> DeviceProfile:
        try:
            data = tomllib.loads(path.read_text())
        except tomllib.TOMLDecodeError as exc:
            raise ProfileError(f"invalid TOML: {exc}", source=str(path)) from None
        problems: list[str] = []
        variables = data.get("variables", {})
        if not isinstance(variables, dict):
            problems.append("variables: expected a table")
            variables = {}
        for key in RESERVED_VARIABLES:
            if key in variables:
                problems.append(f"variables.{key}: reserved name")
        documents = data.get("documents", [])
        if not isinstance(documents, list) or not all(isinstance(d, str) for d in documents):
            problems.append("documents: expected a list of paths")
            documents = []
        device_class = data.get("class", "generic")
        if not isinstance(device_class, str):
            problems.append("class: expected a string")
        if problems:
            raise ProfileError(problems, source=str(path))
        resolved = [str(_resolve(path.parent, item)) for item in documents]
        return DeviceProfile(
            name=str(data.get("name", name)),
            device_class=str(device_class),
            variables=variables,
            documents=tuple(resolved),
        )


def read_model_identifier() -> str:
    result = subprocess.run(
        ["sysctl", "-n", "hw.model"],
        capture_output=True,
        text=True,
        check=True,
        timeout=10,
    )
    return result.stdout.strip()


def _resolve(base: Path, value: Any) -> Path:
    path = Path(str(value)).expanduser()
    return path if path.is_absolute() else base / path
