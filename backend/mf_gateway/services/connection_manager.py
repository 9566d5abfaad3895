from __future__ import annotations

import abc
import logging
import threading
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from ..models.topology import Interface, InterfaceMode
from .commands import CommandRunner
from .errors import ConflictError, ExternalCommandFailure


log = logging.getLogger(__name__)

# nmcli exit status for "connection, device or access point does not exist"
NMCLI_NOT_FOUND = 10

WIRELESS_MODE = "802-11-wireless.mode"
WIRELESS_SSID = "802-11-wireless.ssid"


@dataclass
class ProfileState:
    name: str
    uuid: str = ""
    interface: Optional[str] = None
    settings: Dict[str, str] = field(default_factory=dict)
    active: bool = False

    @property
    def mode(self) -> Optional[str]:
        return self.settings.get(WIRELESS_MODE)

    @property
    def ssid(self) -> Optional[str]:
        return self.settings.get(WIRELESS_SSID)

    def matches(self, desired: Dict[str, str]) -> bool:
        return all(self.settings.get(k) == v for k, v in desired.items())


class ConnectionManagerClient(abc.ABC):
    """Operations the engine needs from the host's connection-profile service."""

    @abc.abstractmethod
    def list_interfaces(self) -> List[Interface]: ...

    @abc.abstractmethod
    def set_managed(self, interface: str) -> None: ...

    @abc.abstractmethod
    def disconnect(self, interface: str) -> None: ...

    @abc.abstractmethod
    def connect_wifi(self, ssid: str, passphrase: str, interface: str) -> None: ...

    @abc.abstractmethod
    def active_ssid(self, interface: str) -> Optional[str]: ...

    @abc.abstractmethod
    def get_profile(self, name: str) -> Optional[ProfileState]: ...

    @abc.abstractmethod
    def list_profiles(self) -> List[ProfileState]: ...

    @abc.abstractmethod
    def create_profile(self, name: str, interface: str, ssid: str) -> None: ...

    @abc.abstractmethod
    def modify_profile(self, name: str, values: Dict[str, str]) -> None: ...

    @abc.abstractmethod
    def activate_profile(self, name: str) -> None: ...

    @abc.abstractmethod
    def deactivate_profile(self, name: str) -> None: ...

    @abc.abstractmethod
    def delete_profile(self, name: str) -> int:
        """Delete every profile called ``name``; returns how many were removed."""


def split_terse(line: str) -> List[str]:
    """Split one line of ``nmcli -t`` output, honouring ``\\:`` escapes."""
    fields: List[str] = []
    cur: List[str] = []
    escaped = False
    for ch in line:
        if escaped:
            cur.append(ch)
            escaped = False
        elif ch == "\\":
            escaped = True
        elif ch == ":":
            fields.append("".join(cur))
            cur = []
        else:
            cur.append(ch)
    fields.append("".join(cur))
    return fields


def unescape_terse(value: str) -> str:
    """Undo ``nmcli -t`` escaping (``\\:`` and ``\\\\``) in a single value."""
    out: List[str] = []
    escaped = False
    for ch in value:
        if escaped:
            out.append(ch)
            escaped = False
        elif ch == "\\":
            escaped = True
        else:
            out.append(ch)
    return "".join(out)


def parse_iw_dev(text: str) -> Dict[str, InterfaceMode]:
    modes: Dict[str, InterfaceMode] = {}
    current: Optional[str] = None
    for raw in text.splitlines():
        line = raw.strip()
        if line.startswith("Interface "):
            current = line.split(None, 1)[1].strip()
            modes[current] = InterfaceMode.UNKNOWN
        elif line.startswith("type ") and current:
            kind = line.split(None, 1)[1].strip().lower()
            if kind == "managed":
                modes[current] = InterfaceMode.MANAGED
            elif kind == "ap":
                modes[current] = InterfaceMode.AP
    return modes


class NmcliConnectionManager(ConnectionManagerClient):
    """NetworkManager backend driven through ``nmcli``."""

    def __init__(self, runner: Optional[CommandRunner] = None) -> None:
        self._runner = runner or CommandRunner()
        # Serializes writes to NetworkManager's connection store
        self._store_lock = threading.RLock()

    def _nmcli(self, *args: str, check: bool = True):
        return self._runner.run(["nmcli", *args], check=check)

    def list_interfaces(self) -> List[Interface]:
        out = self._nmcli("-t", "-f", "DEVICE,TYPE", "device").stdout
        modes = self._interface_modes()
        result: List[Interface] = []
        for line in out.splitlines():
            if not line.strip():
                continue
            parts = split_terse(line)
            if len(parts) < 2 or parts[1] != "wifi":
                continue
            name = parts[0]
            result.append(Interface(name=name, current_mode=modes.get(name, InterfaceMode.UNKNOWN)))
        return result

    def _interface_modes(self) -> Dict[str, InterfaceMode]:
        if not self._runner.which("iw"):
            return {}
        p = self._runner.run(["iw", "dev"], check=False)
        return parse_iw_dev(p.stdout) if p.ok else {}

    def set_managed(self, interface: str) -> None:
        self._nmcli("device", "set", interface, "managed", "yes")

    def disconnect(self, interface: str) -> None:
        self._nmcli("device", "disconnect", interface)

    def connect_wifi(self, ssid: str, passphrase: str, interface: str) -> None:
        self._nmcli("device", "wifi", "connect", ssid, "password", passphrase, "ifname", interface)

    def active_ssid(self, interface: str) -> Optional[str]:
        p = self._nmcli("-t", "-f", "ACTIVE,SSID", "device", "wifi", "list", "ifname", interface, "--rescan", "no",
                        check=False)
        if not p.ok:
            return None
        for line in p.stdout.splitlines():
            parts = split_terse(line)
            if len(parts) >= 2 and parts[0] == "yes" and parts[1]:
                return parts[1]
        return None

    def _profile_index(self) -> List[List[str]]:
        out = self._nmcli("-t", "-f", "NAME,UUID,TYPE", "connection", "show").stdout
        return [split_terse(l) for l in out.splitlines() if l.strip()]

    def _show(self, ref: str, name: str) -> Optional[ProfileState]:
        p = self._nmcli("-s", "-t", "connection", "show", ref, check=False)
        if p.returncode == NMCLI_NOT_FOUND:
            return None
        if not p.ok:
            raise ExternalCommandFailure(f"cannot read profile {name}", p.argv, p.returncode, p.output)
        values: Dict[str, str] = {}
        for line in p.stdout.splitlines():
            key, sep, value = line.partition(":")
            if not sep:
                continue
            # Multi-valued keys (GENERAL.* of several active instances) keep the first entry
            values.setdefault(key.strip(), unescape_terse(value))
        return ProfileState(
            name=name,
            uuid=values.get("connection.uuid", ""),
            interface=values.get("connection.interface-name") or None,
            settings=values,
            active=values.get("GENERAL.STATE", "") == "activated",
        )

    def get_profile(self, name: str) -> Optional[ProfileState]:
        return self._show(name, name)

    def list_profiles(self) -> List[ProfileState]:
        profiles: List[ProfileState] = []
        for parts in self._profile_index():
            if len(parts) < 3 or parts[2] != "802-11-wireless":
                continue
            state = self._show(parts[1], parts[0])
            if state is not None:
                profiles.append(state)
        return profiles

    def create_profile(self, name: str, interface: str, ssid: str) -> None:
        with self._store_lock:
            if any(parts[0] == name for parts in self._profile_index()):
                raise ConflictError(f"profile already exists: {name}", "ssid")
            self._nmcli(
                "connection", "add",
                "type", "wifi",
                "ifname", interface,
                "con-name", name,
                "autoconnect", "yes",
                "ssid", ssid,
            )

    def modify_profile(self, name: str, values: Dict[str, str]) -> None:
        args: List[str] = []
        for key, value in values.items():
            args += [key, value]
        with self._store_lock:
            self._nmcli("connection", "modify", name, *args)

    def activate_profile(self, name: str) -> None:
        with self._store_lock:
            self._nmcli("connection", "up", name)

    def deactivate_profile(self, name: str) -> None:
        with self._store_lock:
            self._nmcli("connection", "down", name)

    def delete_profile(self, name: str) -> int:
        removed = 0
        with self._store_lock:
            for parts in self._profile_index():
                if len(parts) >= 2 and parts[0] == name:
                    self._nmcli("connection", "delete", "uuid", parts[1])
                    removed += 1
        return removed
