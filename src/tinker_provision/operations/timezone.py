from __future__ import annotations

import filecmp
import os
from pathlib import Path
from typing import TYPE_CHECKING, Any, Mapping, Optional

from .base import Step

if TYPE_CHECKING:  # pragma: no cover
    from ..context import RunContext

SYSTEMSETUP = "systemsetup"
TIMED_PREFERENCES = "/Library/Preferences/com.apple.timed"


class TimezoneStep(Step):
    kind = "timezone"
    privileged = True

    def __init__(self, spec: Mapping[str, Any]):
        super().__init__(spec)
        zone = spec.get("zone") or spec.get("name")
        if not zone:
            raise ValueError("timezone step requires a zone")
        self.zone = str(zone)
        self.localtime_path = Path(spec.get("localtime_path", "/etc/localtime"))
        self.zoneinfo_dir = Path(spec.get("zoneinfo_dir", "/usr/share/zoneinfo"))

    def describe(self) -> str:
        return f"timezone {self.zone}"

    def check(self, context: "RunContext") -> bool:
        if self.localtime_path.is_symlink():
            try:
                target = os.readlink(self.localtime_path)
            except OSError:
                return False
            # macOS links into /var/db/timezone/zoneinfo rather than /usr/share.
            return target.endswith(f"zoneinfo/{self.zone}")
        target_file = self.zoneinfo_dir / self.zone
        if not self.localtime_path.exists() or not target_file.exists():
            return False
        try:
            return filecmp.cmp(self.localtime_path, target_file, shallow=False)
        except OSError:
            return False

    def apply(self, context: "RunContext") -> Optional[str]:
        context.executor.run([SYSTEMSETUP, "-settimezone", self.zone], privileged=True)
        return f"zone->{self.zone}"


class NetworkTimeStep(Step):
    """Point the clock at an NTP server and turn network time on."""

    kind = "network_time"
    privileged = True

    def __init__(self, spec: Mapping[str, Any]):
        super().__init__(spec)
        server = spec.get("server")
        if not server:
            raise ValueError("network_time step requires a server")
        self.server = str(server)
        self.ntp_conf = Path(spec.get("ntp_conf", "/etc/ntp.conf"))

    def describe(self) -> str:
        return f"network time {self.server}"

    def check(self, context: "RunContext") -> bool:
        return self._server_matches(context) and network_time_enabled(context)

    def _server_matches(self, context: "RunContext") -> bool:
        content = context.executor.read_file(self.ntp_conf)
        if content is None:
            return False
        servers = [
            line.split()[1]
            for line in content.splitlines()
            if line.startswith("server ") and len(line.split()) > 1
        ]
        return servers[:1] == [self.server]

    def apply(self, context: "RunContext") -> Optional[str]:
        context.executor.run([SYSTEMSETUP, "-setnetworktimeserver", self.server], privileged=True)
        context.executor.run([SYSTEMSETUP, "-setusingnetworktime", "on"], privileged=True)
        return f"ntp->{self.server}"


def network_time_enabled(context: "RunContext") -> bool:
    """Read "Set time automatically" without root.

    ``systemsetup -getusingnetworktime`` needs administrator rights, but timed
    keeps the same switch in a world-readable preference file.
    """

    result = context.executor.run(
        ["defaults", "read", TIMED_PREFERENCES, "TMAutomaticTimeOnlyEnabled"],
        check=False,
        mutable=False,
    )
    return result.returncode == 0 and result.stdout.strip() == "1"
