from __future__ import annotations

import logging
import os
from typing import Iterable, Optional, Sequence

from ..config import settings
from ..models.report import OperationResult, Phase
from ..models.topology import AccessPointProfile, TunnelKind, VPNTunnelSpec
from ..utils.paths import write_private_file
from .commands import CommandRunner
from .errors import ExternalCommandFailure
from .netfilter import Netfilter


log = logging.getLogger(__name__)


class VpnLayer:
    """Routes access point egress through a tunnel interface.

    Runs only after every access point is up; it never creates access points
    itself. Bringing the tunnel up is mandatory; when it fails no forwarding
    rule is installed.
    """

    def __init__(
        self,
        runner: Optional[CommandRunner] = None,
        netfilter: Optional[Netfilter] = None,
        wireguard_dir: Optional[str] = None,
        openvpn_dir: Optional[str] = None,
        kill_switch: Optional[bool] = None,
    ) -> None:
        self._runner = runner or CommandRunner()
        self._netfilter = netfilter or Netfilter(self._runner)
        self._wireguard_dir = wireguard_dir or settings.wireguard_dir
        self._openvpn_dir = openvpn_dir or settings.openvpn_dir
        self._kill_switch = settings.vpn_kill_switch if kill_switch is None else kill_switch

    def apply(
        self,
        spec: Optional[VPNTunnelSpec],
        access_points: Sequence[AccessPointProfile] = (),
        uplink_interface: Optional[str] = None,
        ap_results: Iterable[OperationResult] = (),
    ) -> OperationResult:
        if spec is None:
            return OperationResult.satisfied(Phase.VPN, "-", "no tunnel requested")
        tun = spec.resolved_interface
        pending = [r.target for r in ap_results if not r.succeeded]
        if pending:
            return OperationResult.failed(Phase.VPN, tun, f"access points not ready: {', '.join(pending)}")

        try:
            changed = self._deploy(spec)
            changed |= self._bring_up(spec)
            self._netfilter.enable_forwarding()
            changed |= self._route(tun, access_points, uplink_interface)
            if spec.autostart:
                changed |= self._enable_autostart(spec)
        except (ExternalCommandFailure, OSError, ValueError) as exc:
            log.error("tunnel %s: %s", tun, exc)
            return OperationResult.failed(Phase.VPN, tun, str(exc))
        if not changed:
            return OperationResult.satisfied(Phase.VPN, tun, "tunnel up and routing in place")
        log.info("access point traffic routed through %s", tun)
        return OperationResult.applied(Phase.VPN, tun)

    def config_destination(self, spec: VPNTunnelSpec) -> str:
        base = self._wireguard_dir if spec.resolved_kind is TunnelKind.WIREGUARD else self._openvpn_dir
        return os.path.join(base, f"{spec.tunnel_name}.conf")

    def unit_name(self, spec: VPNTunnelSpec) -> str:
        if spec.resolved_kind is TunnelKind.WIREGUARD:
            return f"wg-quick@{spec.tunnel_name}"
        return f"openvpn-client@{spec.tunnel_name}"

    def _deploy(self, spec: VPNTunnelSpec) -> bool:
        dest = self.config_destination(spec)
        with open(spec.tunnel_config_path, "rb") as f:
            content = f.read()
        if os.path.exists(dest):
            with open(dest, "rb") as f:
                if f.read() == content:
                    os.chmod(dest, 0o600)
                    return False
        write_private_file(dest, content)
        log.info("tunnel configuration deployed to %s", dest)
        return True

    def _bring_up(self, spec: VPNTunnelSpec) -> bool:
        tun = spec.resolved_interface
        if self._runner.run(["ip", "link", "show", tun], check=False).ok:
            return False
        if spec.resolved_kind is TunnelKind.WIREGUARD:
            self._runner.run(["wg-quick", "up", spec.tunnel_name])
        else:
            self._runner.run(["systemctl", "start", self.unit_name(spec)])
        log.info("tunnel %s up", tun)
        return True

    def _route(self, tun: str, access_points: Sequence[AccessPointProfile], uplink: Optional[str]) -> bool:
        nf = self._netfilter
        changed = nf.ensure_rule("nat", "POSTROUTING", ["-o", tun, "-j", "MASQUERADE"])
        for ap in access_points:
            changed |= nf.ensure_rule("filter", "FORWARD", ["-i", ap.interface, "-o", tun, "-j", "ACCEPT"])
            changed |= nf.ensure_rule(
                "filter",
                "FORWARD",
                ["-i", tun, "-o", ap.interface, "-m", "conntrack", "--ctstate", "RELATED,ESTABLISHED",
                 "-j", "ACCEPT"],
            )
            if self._kill_switch and uplink:
                changed |= nf.ensure_rule(
                    "filter", "FORWARD", ["-i", ap.interface, "-o", uplink, "-j", "REJECT"], insert=True
                )
        return changed

    def _enable_autostart(self, spec: VPNTunnelSpec) -> bool:
        unit = self.unit_name(spec)
        if self._runner.run(["systemctl", "is-enabled", unit], check=False).ok:
            return False
        self._runner.run(["systemctl", "enable", unit])
        log.info("%s enabled at boot", unit)
        return True
