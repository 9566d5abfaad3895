from __future__ import annotations

import logging
from typing import Dict, Optional, Union

from ..models.report import OperationResult, Phase
from ..models.topology import AccessPointMode, AccessPointProfile, UplinkSpec
from .connection_manager import ConnectionManagerClient
from .errors import ConflictError, ExternalCommandFailure


log = logging.getLogger(__name__)


def access_point_settings(ap: AccessPointProfile) -> Dict[str, str]:
    """Every property an access point profile carries after reconciliation."""
    return {
        "connection.interface-name": ap.interface,
        "connection.autoconnect": "no" if ap.mode is AccessPointMode.HOTSPOT else "yes",
        "802-11-wireless.ssid": ap.ssid,
        "802-11-wireless.mode": "ap",
        "802-11-wireless.band": ap.band.value,
        "802-11-wireless.channel": str(ap.channel),
        "ipv4.method": "shared",
        "802-11-wireless-security.key-mgmt": "wpa-psk",
        "802-11-wireless-security.psk": ap.passphrase,
        "802-11-wireless-security.pairwise": "ccmp",
        "802-11-wireless-security.group": "ccmp",
        "802-11-wireless-security.proto": "rsn",
    }


class ProfileReconciler:
    def __init__(self, client: ConnectionManagerClient) -> None:
        self._client = client

    def reconcile(self, role: str, spec: Union[UplinkSpec, AccessPointProfile]) -> OperationResult:
        if role == "uplink":
            if not isinstance(spec, UplinkSpec):
                raise TypeError("uplink role requires an UplinkSpec")
            return self.reconcile_uplink(spec)
        if not isinstance(spec, AccessPointProfile):
            raise TypeError(f"{role} role requires an AccessPointProfile")
        pending = self.prepare_access_point(spec)
        if pending is not None:
            return pending
        return self.activate_access_point(spec)

    def reconcile_uplink(self, spec: UplinkSpec) -> OperationResult:
        target = f"{spec.interface}:{spec.ssid}"
        try:
            if self._client.active_ssid(spec.interface) == spec.ssid:
                return OperationResult.satisfied(Phase.UPLINK, target, "already associated")
            try:
                self._client.disconnect(spec.interface)
            except ExternalCommandFailure as exc:
                log.warning("disconnect %s: %s", spec.interface, exc)
            self._client.connect_wifi(spec.ssid, spec.passphrase, spec.interface)
        except ExternalCommandFailure as exc:
            log.error("uplink %s: %s", target, exc)
            return OperationResult.failed(Phase.UPLINK, target, f"failed to join {spec.ssid}: {exc}")
        log.info("connected %s to %s", spec.interface, spec.ssid)
        return OperationResult.applied(Phase.UPLINK, target)

    def prepare_access_point(self, ap: AccessPointProfile) -> Optional[OperationResult]:
        """Steps up to (not including) activation.

        Returns a final result when there is nothing left to do or a step
        failed, ``None`` when the profile is ready to be activated.
        """
        target = f"{ap.interface}:{ap.ssid}"
        desired = access_point_settings(ap)
        try:
            current = self._client.get_profile(ap.ssid)
            if current is not None and current.active and current.matches(desired):
                return OperationResult.satisfied(Phase.ACCESS_POINT, target, "profile active and unchanged")

            self._client.set_managed(ap.interface)
            self._remove_existing(ap.ssid)
            try:
                self._client.create_profile(ap.ssid, ap.interface, ap.ssid)
            except ConflictError:
                self._remove_existing(ap.ssid)
                self._client.create_profile(ap.ssid, ap.interface, ap.ssid)
            self._client.modify_profile(ap.ssid, desired)
        except (ExternalCommandFailure, ConflictError) as exc:
            log.error("access point %s: %s", target, exc)
            return OperationResult.failed(Phase.ACCESS_POINT, target, str(exc))
        return None

    def activate_access_point(self, ap: AccessPointProfile) -> OperationResult:
        target = f"{ap.interface}:{ap.ssid}"
        try:
            self._client.activate_profile(ap.ssid)
        except ExternalCommandFailure as exc:
            log.error("access point %s: %s", target, exc)
            return OperationResult.failed(Phase.ACCESS_POINT, target, f"failed to activate: {exc}")
        log.info("access point %s active on %s", ap.ssid, ap.interface)
        return OperationResult.applied(Phase.ACCESS_POINT, target)

    def _remove_existing(self, name: str) -> None:
        try:
            removed = self._client.delete_profile(name)
        except ExternalCommandFailure as exc:
            log.warning("delete profile %s: %s", name, exc)
            return
        if removed:
            log.info("removed %d existing profile(s) named %s", removed, name)
