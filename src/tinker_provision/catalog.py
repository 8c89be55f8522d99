"""Built-in modules derived from the configuration document.

A module is registered only when its domain is configured, so a document
that never mentions ``power`` produces no ``power`` module at all.
"""

from __future__ import annotations

from typing import Any, Callable, Mapping, Optional
import logging

from .documents import ConfigurationDocument
from .errors import ConfigError
from .operations import STEP_REGISTRY
from .operations.base import Step
from .registry import ModuleRegistry
from .types import DeviceProfile, Module

logger = logging.getLogger(__name__)

StepFactory = Callable[[Mapping[str, Any]], Step]

DEFAULT_NETWORK_SERVICE = "Wi-Fi"

FIREWALL_SETTINGS = (
    ("firewall", "globalstate"),
    ("stealth_mode", "stealthmode"),
    ("logging", "loggingmode"),
    ("allow_signed", "allowsigned"),
)


class CatalogBuilder:
    def __init__(
        self,
        document: ConfigurationDocument,
        profile: DeviceProfile,
        step_registry: Optional[Mapping[str, StepFactory]] = None,
    ):
        self.document = document
        self.profile = profile
        self.step_registry = STEP_REGISTRY if step_registry is None else step_registry
        self.problems: list[str] = []

    def build(self) -> ModuleRegistry:
        registry = ModuleRegistry()
        builders = (
            self._homebrew,
            self._packages,
            self._fonts,
            self._network,
            self._security,
            self._time_sync,
            self._hostname,
            self._power,
            self._preferences,
            self._remote_access,
            self._dotfiles,
        )
        for builder in builders:
            module = builder()
            if module is not None:
                registry.register(module)
        for module in self._user_modules():
            registry.register(module)
        if self.problems:
            raise ConfigError(self.problems)
        logger.debug("registered modules: %s", ", ".join(registry.ids()))
        return registry

    def _step(self, path: str, kind: str, spec: Mapping[str, Any]) -> Optional[Step]:
        factory = self.step_registry.get(kind)
        if factory is None:
            self.problems.append(f"{path}: unknown step type '{kind}'")
            return None
        try:
            return factory(spec)
        except ValueError as exc:
            self.problems.append(f"{path}: {exc}")
            return None

    def _module(self, module_id: str, steps: list[Optional[Step]], *, depends_on=(), description="") -> Module:
        return Module(
            id=module_id,
            steps=tuple(step for step in steps if step is not None),
            depends_on=tuple(depends_on),
            description=description,
        )

    def _homebrew(self) -> Optional[Module]:
        if "packages" not in self.document and "fonts" not in self.document:
            return None
        step = self._step("homebrew", "homebrew", {})
        return self._module("homebrew", [step], description="Homebrew package manager")

    def _packages(self) -> Optional[Module]:
        if "packages" not in self.document:
            return None
        packages = self.document.domain("packages")
        manager = packages.get("manager", "brew")
        steps: list[Optional[Step]] = []
        for index, brewfile in enumerate(packages.get("brewfiles", ())):
            steps.append(self._step(f"packages.brewfiles[{index}]", "brew_bundle", {"file": brewfile}))
        for name in packages.get("formulae", ()):
            steps.append(self._step("packages.formulae", "package", {"name": name, "manager": manager}))
        for name in packages.get("casks", ()):
            steps.append(self._step("packages.casks", "package", {"name": name, "cask": True}))
        return self._module("packages", steps, depends_on=("homebrew",), description="Homebrew bundles and packages")

    def _fonts(self) -> Optional[Module]:
        if "fonts" not in self.document:
            return None
        steps = [
            self._step("fonts.casks", "package", {"name": name, "cask": True})
            for name in self.document.get("fonts.casks", ())
        ]
        return self._module("fonts", steps, depends_on=("homebrew",), description="Font casks")

    def _network(self) -> Optional[Module]:
        if "network" not in self.document:
            return None
        network = self.document.domain("network")
        variables = self.profile.variables
        service = network.get("service") or variables.get("network_service") or DEFAULT_NETWORK_SERVICE
        steps: list[Optional[Step]] = []
        address = variables.get("ip_address")
        if address:
            spec: dict[str, Any] = {"service": service, "address": str(address)}
            router = network.get("router") or variables.get("router")
            if router:
                spec["router"] = router
            subnet_mask = network.get("subnet_mask") or variables.get("subnet_mask")
            if subnet_mask:
                spec["subnet_mask"] = subnet_mask
            steps.append(self._step("network", "network_address", spec))
        steps.append(self._step("network.dns", "dns", {"service": service, "servers": network.get("dns", ())}))
        if "search_domains" in network:
            steps.append(
                self._step(
                    "network.search_domains",
                    "search_domains",
                    {"service": service, "domains": network["search_domains"]},
                )
            )
        return self._module("network", steps, description=f"Network settings for {service}")

    def _security(self) -> Optional[Module]:
        if "security" not in self.document:
            return None
        security = self.document.domain("security")
        steps = [
            self._step(f"security.{key}", "firewall", {"setting": setting, "enabled": security[key]})
            for key, setting in FIREWALL_SETTINGS
            if key in security
        ]
        if "gatekeeper" in security:
            steps.append(self._step("security.gatekeeper", "gatekeeper", {"enabled": security["gatekeeper"]}))
        # FileVault is verify-only and stays last in the module.
        if security.get("filevault"):
            steps.append(self._step("security.filevault", "filevault", {}))
        return self._module("security", steps, description="Firewall, Gatekeeper and FileVault")

    def _time_sync(self) -> Optional[Module]:
        if "time" not in self.document:
            return None
        time_domain = self.document.domain("time")
        steps = [self._step("time.timezone", "timezone", {"zone": time_domain.get("timezone")})]
        if time_domain.get("ntp_server"):
            steps.append(self._step("time.ntp_server", "network_time", {"server": time_domain["ntp_server"]}))
        depends_on = ("network",) if "network" in self.document else ()
        return self._module("time-sync", steps, depends_on=depends_on, description="Timezone and network time")

    def _hostname(self) -> Optional[Module]:
        hostname = self.profile.variables.get("hostname")
        if not hostname:
            return None
        step = self._step("profile.hostname", "hostname", {"name": str(hostname)})
        return self._module("hostname", [step], description="Computer and host names")

    def _power(self) -> Optional[Module]:
        if "power" not in self.document:
            return None
        settings = self.document.get("power.settings", {})
        steps = [
            self._step(f"power.settings.{key}", "power", {"setting": key, "value": value})
            for key, value in settings.items()
        ]
        return self._module("power", steps, description="Energy settings")

    def _preferences(self) -> Optional[Module]:
        if "preferences" not in self.document:
            return None
        steps = [
            self._step(f"preferences.defaults[{index}]", "defaults", entry)
            for index, entry in enumerate(self.document.get("preferences.defaults", ()))
        ]
        return self._module("preferences", steps, description="User and system defaults")

    def _remote_access(self) -> Optional[Module]:
        if "remote_access" not in self.document:
            return None
        step = self._step("remote_access.ssh", "remote_login", {"enabled": self.document.get("remote_access.ssh")})
        depends_on = ("security",) if "security" in self.document else ()
        return self._module("remote-access", [step], depends_on=depends_on, description="Remote Login (SSH)")

    def _dotfiles(self) -> Optional[Module]:
        if "dotfiles" not in self.document:
            return None
        steps: list[Optional[Step]] = []
        for index, entry in enumerate(self.document.get("dotfiles.templates", ())):
            spec: dict[str, Any] = {
                "path": entry["destination"],
                "template": entry["source"],
                "backup": entry.get("backup", True),
            }
            if "mode" in entry:
                spec["mode"] = entry["mode"]
            steps.append(self._step(f"dotfiles.templates[{index}]", "file", spec))
        return self._module("dotfiles", steps, description="Rendered dotfiles")

    def _user_modules(self) -> list[Module]:
        modules: list[Module] = []
        for module_id, entry in self.document.domain("modules").items():
            steps: list[Optional[Step]] = []
            for index, raw in enumerate(entry.get("steps", ())):
                spec = {key: value for key, value in raw.items() if key != "type"}
                steps.append(self._step(f"modules.{module_id}.steps[{index}]", raw["type"], spec))
            modules.append(
                self._module(
                    module_id,
                    steps,
                    depends_on=entry.get("depends_on", ()),
                    description=entry.get("description", ""),
                )
            )
        return modules


def build_registry(
    document: ConfigurationDocument,
    profile: DeviceProfile,
    step_registry: Optional[Mapping[str, StepFactory]] = None,
) -> ModuleRegistry:
    return CatalogBuilder(document, profile, step_registry).build()
