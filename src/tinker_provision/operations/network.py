from __future__ import annotations

from typing import TYPE_CHECKING, Any, Mapping, Optional
import ipaddress

from .base import Step, require

if TYPE_CHECKING:  # pragma: no cover
    from ..context import RunContext

NETWORKSETUP = "networksetup"
DHCP = "dhcp"
NO_DNS_MARKER = "There aren't any DNS Servers"
NO_SEARCH_DOMAINS_MARKER = "There aren't any Search Domains"


class DnsServersStep(Step):
    """Pin the DNS servers of one network service, in order.

    An empty list clears the manual servers so DHCP-provided ones apply.
    """

    kind = "dns"
    privileged = True

    def __init__(self, spec: Mapping[str, Any]):
        super().__init__(spec)
        self.service = str(require(spec, "service", self.kind))
        servers = spec.get("servers", [])
        if isinstance(servers, str) or not all(isinstance(s, str) for s in servers):
            raise ValueError("dns step servers must be a list of addresses")
        for server in servers:
            _check_address(server, "dns server")
        self.servers = list(servers)

    def describe(self) -> str:
        return f"dns {self.service}"

    def check(self, context: "RunContext") -> bool:
        result = context.executor.run(
            [NETWORKSETUP, "-getdnsservers", self.service],
            mutable=False,
        )
        return parse_dns_servers(result.stdout) == self.servers

    def apply(self, context: "RunContext") -> Optional[str]:
        arguments = self.servers or ["Empty"]
        context.executor.run(
            [NETWORKSETUP, "-setdnsservers", self.service, *arguments],
            privileged=True,
        )
        return f"dns={','.join(self.servers) or 'cleared'}"


class NetworkAddressStep(Step):
    """Configure a service for DHCP or a static IPv4 address."""

    kind = "network_address"
    privileged = True

    def __init__(self, spec: Mapping[str, Any]):
        super().__init__(spec)
        self.service = str(require(spec, "service", self.kind))
        self.address = str(require(spec, "address", self.kind))
        self.subnet_mask = str(spec.get("subnet_mask", "255.255.255.0"))
        self.router = spec.get("router")
        if self.address != DHCP:
            _check_address(self.address, "address")
            _check_address(self.subnet_mask, "subnet mask")
            if not self.router:
                raise ValueError("network_address step requires a router for a static address")
            _check_address(str(self.router), "router")
            self.router = str(self.router)

    def describe(self) -> str:
        return f"address {self.service} {self.address}"

    def check(self, context: "RunContext") -> bool:
        result = context.executor.run(
            [NETWORKSETUP, "-getinfo", self.service],
            mutable=False,
        )
        info = parse_service_info(result.stdout)
        if self.address == DHCP:
            return info.get("configuration") == DHCP
        return (
            info.get("configuration") == "manual"
            and info.get("IP address") == self.address
            and info.get("Subnet mask") == self.subnet_mask
            and info.get("Router") == self.router
        )

    def apply(self, context: "RunContext") -> Optional[str]:
        if self.address == DHCP:
            context.executor.run([NETWORKSETUP, "-setdhcp", self.service], privileged=True)
            return "dhcp"
        context.executor.run(
            [NETWORKSETUP, "-setmanual", self.service, self.address, self.subnet_mask, str(self.router)],
            privileged=True,
        )
        return f"manual {self.address}"


def parse_dns_servers(output: str) -> list[str]:
    if NO_DNS_MARKER in output:
        return []
    return [line.strip() for line in output.splitlines() if line.strip()]


def parse_service_info(output: str) -> dict[str, str]:
    info: dict[str, str] = {}
    for line in output.splitlines():
        line = line.strip()
        if line == "DHCP Configuration":
            info["configuration"] = DHCP
        elif line == "Manual Configuration":
            info["configuration"] = "manual"
        key, sep, value = line.partition(":")
        if sep and key:
            info[key.strip()] = value.strip()
    return info


def _check_address(value: str, label: str) -> None:
    try:
        ipaddress.ip_address(value)
    except ValueError:
        raise ValueError(f"invalid {label} '{value}'") from None


class SearchDomainsStep(Step):
    kind = "search_domains"
    privileged = True

    def __init__(self, spec: Mapping[str, Any]):
        super().__init__(spec)
        self.service = str(require(spec, "service", self.kind))
        domains = spec.get("domains", [])
        if isinstance(domains, str) or not all(isinstance(d, str) for d in domains):
            raise ValueError("search_domains step domains must be a list of names")
        self.domains = list(domains)

    def describe(self) -> str:
        return f"search domains {self.service}"

    def check(self, context: "RunContext") -> bool:
        result = context.executor.run(
            [NETWORKSETUP, "-getsearchdomains", self.service],
            mutable=False,
        )
        current = [] if NO_SEARCH_DOMAINS_MARKER in result.stdout else result.stdout.split()
        return current == self.domains

    def apply(self, context: "RunContext") -> Optional[str]:
        context.executor.run(
            [NETWORKSETUP, "-setsearchdomains", self.service, *(self.domains or ["Empty"])],
            privileged=True,
        )
        return f"search={','.join(self.domains) or 'cleared'}"
