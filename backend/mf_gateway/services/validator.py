from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Iterable, List, Optional, Set

from ..models.topology import Band, Interface, Topology
from .errors import GatewayError, ResourceNotFound, ValidationError


log = logging.getLogger(__name__)

INSUFFICIENT_INTERFACES = "insufficient_interfaces"

CHANNELS = {
    Band.BG: range(1, 15),
    Band.A: range(32, 197),
}


@dataclass
class ValidationResult:
    error: Optional[GatewayError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def validate(topology: Topology, observed: Iterable[Interface]) -> ValidationResult:
    """All-or-nothing precondition gate run before any mutating call.

    Stops at the first violation.
    """
    try:
        _check(topology, list(observed))
    except (ValidationError, ResourceNotFound) as exc:
        return ValidationResult(error=exc)
    return ValidationResult()


def _check(topology: Topology, observed: List[Interface]) -> None:
    roles = topology.role_assignments()
    names: Set[str] = {i.name for i in observed}

    # (a) enough radios for every requested role
    if len(names) < len(roles):
        log.info("%d interfaces required, %d found (%s)", len(roles), len(names), ", ".join(sorted(names)) or "none")
        raise ValidationError(INSUFFICIENT_INTERFACES, "interfaces")

    # (b) every referenced interface exists
    for role in roles:
        if role.interface and role.interface not in names:
            raise ResourceNotFound(f"interface {role.interface} not found", f"{role.role}.interface")

    # (c) uniqueness of interfaces across roles and of AP ssids
    seen: Set[str] = set()
    for role in roles:
        if not role.interface:
            continue
        if role.interface in seen:
            raise ValidationError(f"interface {role.interface} already assigned to another role",
                                  f"{role.role}.interface")
        seen.add(role.interface)
    ssids: Set[str] = set()
    for idx, ap in enumerate(topology.access_points, start=1):
        if ap.ssid and ap.ssid in ssids:
            raise ValidationError(f"ssid {ap.ssid} used by more than one access point", f"ap{idx}.ssid")
        ssids.add(ap.ssid)

    # (d) required fields
    for key in ("ssid", "passphrase", "interface"):
        if not str(getattr(topology.uplink, key)).strip():
            raise ValidationError("required field is empty", f"uplink.{key}")
    for idx, ap in enumerate(topology.access_points, start=1):
        for key in ("ssid", "passphrase", "interface"):
            if not str(getattr(ap, key)).strip():
                raise ValidationError("required field is empty", f"ap{idx}.{key}")

    # (e) driver name
    if topology.driver is not None and not topology.driver.driver_name.strip():
        raise ValidationError("required field is empty", "driver.driver_name")

    for idx, ap in enumerate(topology.access_points, start=1):
        if not 8 <= len(ap.passphrase) <= 63:
            raise ValidationError("WPA2 passphrase must be 8..63 characters", f"ap{idx}.passphrase")
        if ap.channel not in CHANNELS[ap.band]:
            raise ValidationError(f"channel {ap.channel} is not valid for band {ap.band.value}", f"ap{idx}.channel")

    if topology.vpn is not None:
        path = topology.vpn.tunnel_config_path
        if not path.strip():
            raise ValidationError("required field is empty", "vpn.tunnel_config_path")
        if not os.path.isfile(path):
            raise ResourceNotFound(f"tunnel configuration {path} not found", "vpn.tunnel_config_path")
