from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator


class InterfaceMode(str, Enum):
    MANAGED = "managed"
    AP = "ap"
    UNKNOWN = "unknown"


class Band(str, Enum):
    BG = "bg"  # 2.4GHz
    A = "a"  # 5GHz


class AccessPointMode(str, Enum):
    AP = "ap"
    HOTSPOT = "hotspot"


class TunnelKind(str, Enum):
    WIREGUARD = "wireguard"
    OPENVPN = "openvpn"


_BAND_ALIASES = {
    "bg": Band.BG,
    "2.4ghz": Band.BG,
    "2.4": Band.BG,
    "a": Band.A,
    "5ghz": Band.A,
    "5": Band.A,
}


class Interface(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    capability: str = "wifi"
    current_mode: InterfaceMode = InterfaceMode.UNKNOWN


class UplinkSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    ssid: str
    passphrase: str = Field(repr=False)
    interface: str


class AccessPointProfile(BaseModel):
    model_config = ConfigDict(frozen=True)

    ssid: str
    passphrase: str = Field(repr=False)
    interface: str
    channel: int = 1
    band: Band = Band.BG
    mode: AccessPointMode = AccessPointMode.AP

    @field_validator("band", mode="before")
    @classmethod
    def _band_alias(cls, v):
        if isinstance(v, str):
            key = v.strip().lower()
            if key in _BAND_ALIASES:
                return _BAND_ALIASES[key]
        return v


class DriverSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    driver_name: str
    source_repo: Optional[str] = None
    conflicting_driver: Optional[str] = None
    package_name: Optional[str] = None


class VPNTunnelSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    tunnel_config_path: str
    autostart: bool = False
    kind: Optional[TunnelKind] = None
    tunnel_interface: Optional[str] = None

    @property
    def resolved_kind(self) -> TunnelKind:
        if self.kind is not None:
            return self.kind
        if Path(self.tunnel_config_path).suffix.lower() == ".ovpn":
            return TunnelKind.OPENVPN
        return TunnelKind.WIREGUARD

    @property
    def tunnel_name(self) -> str:
        return Path(self.tunnel_config_path).stem

    @property
    def resolved_interface(self) -> str:
        if self.tunnel_interface:
            return self.tunnel_interface
        if self.resolved_kind is TunnelKind.WIREGUARD:
            return self.tunnel_name
        return "tun0"


class RoleAssignment(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: str  # "uplink", "ap1", "ap2"
    interface: str


class Topology(BaseModel):
    model_config = ConfigDict(frozen=True)

    uplink: UplinkSpec
    access_points: Tuple[AccessPointProfile, ...] = Field(min_length=1, max_length=2)
    driver: Optional[DriverSpec] = None
    vpn: Optional[VPNTunnelSpec] = None

    def role_assignments(self) -> List[RoleAssignment]:
        roles = [RoleAssignment(role="uplink", interface=self.uplink.interface)]
        for idx, ap in enumerate(self.access_points, start=1):
            roles.append(RoleAssignment(role=f"ap{idx}", interface=ap.interface))
        return roles
