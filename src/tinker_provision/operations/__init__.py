from .base import Step
from .defaults import DefaultsStep
from .exec import ExecStep
from .file import FileStep
from .firewall import FirewallStep
from .hostname import HostnameStep
from .network import DnsServersStep, NetworkAddressStep, SearchDomainsStep
from .package import BrewBundleStep, HomebrewStep, PackageStep
from .power import PowerSettingStep
from .remote import RemoteLoginStep
from .security import FileVaultStep, GatekeeperStep
from .timezone import NetworkTimeStep, TimezoneStep

STEP_REGISTRY = {
    "file": FileStep,
    "package": PackageStep,
    "brew_bundle": BrewBundleStep,
    "homebrew": HomebrewStep,
    "defaults": DefaultsStep,
    "exec": ExecStep,
    "dns": DnsServersStep,
    "network_address": NetworkAddressStep,
    "search_domains": SearchDomainsStep,
    "timezone": TimezoneStep,
    "network_time": NetworkTimeStep,
    "firewall": FirewallStep,
    "gatekeeper": GatekeeperStep,
    "filevault": FileVaultStep,
    "hostname": HostnameStep,
    "power": PowerSettingStep,
    "remote_login": RemoteLoginStep,
}

__all__ = [
    "Step",
    "FileStep",
    "PackageStep",
    "BrewBundleStep",
    "HomebrewStep",
    "DefaultsStep",
    "ExecStep",
    "DnsServersStep",
    "NetworkAddressStep",
    "SearchDomainsStep",
    "TimezoneStep",
    "NetworkTimeStep",
    "FirewallStep",
    "GatekeeperStep",
    "FileVaultStep",
    "HostnameStep",
    "PowerSettingStep",
    "RemoteLoginStep",
    "STEP_REGISTRY",
]
