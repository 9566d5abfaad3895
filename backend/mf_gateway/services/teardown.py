from __future__ import annotations

import logging
from typing import Iterable, List, Optional, Set

from ..models.report import OperationResult, Phase, RunReport, RunState
from ..utils.logging import log_result
from .connection_manager import ConnectionManagerClient, ProfileState
from .errors import ExternalCommandFailure
from .netfilter import Netfilter


log = logging.getLogger(__name__)


def gateway_profiles(client: ConnectionManagerClient, ssids: Optional[Iterable[str]] = None) -> List[ProfileState]:
    wanted: Optional[Set[str]] = set(ssids) if ssids else None
    return [
        p for p in client.list_profiles()
        if p.mode == "ap" and (wanted is None or p.name in wanted)
    ]


def _record(report: RunReport, result: OperationResult) -> None:
    report.add(result)
    log_result(log, result)


def teardown(
    client: ConnectionManagerClient,
    ssids: Optional[Iterable[str]] = None,
    netfilter: Optional[Netfilter] = None,
    operator: Optional[str] = None,
) -> RunReport:
    """Remove access point profiles and hand their radios back to managed mode.

    A failed delete is reported and the remaining profiles are still
    processed; the report then ends in ``failed``. A full teardown (no
    ``ssids``) with ``netfilter`` also drops the gateway's iptables rules.
    """
    report = RunReport(operator=operator)
    log.info("teardown started by %s", operator or "unknown operator")
    try:
        profiles = gateway_profiles(client, ssids)
    except ExternalCommandFailure as exc:
        _record(report, OperationResult.failed(Phase.TEARDOWN, "profiles", str(exc)))
        report.state = RunState.FAILED
        return report.finish()

    if not profiles:
        log.info("no gateway profiles found")

    interfaces: List[str] = []
    for profile in profiles:
        if profile.active:
            try:
                client.deactivate_profile(profile.name)
            except ExternalCommandFailure as exc:
                log.warning("deactivate %s: %s", profile.name, exc)
        try:
            client.delete_profile(profile.name)
        except ExternalCommandFailure as exc:
            _record(report, OperationResult.failed(Phase.TEARDOWN, profile.name, str(exc)))
            continue
        _record(report, OperationResult.applied(Phase.TEARDOWN, profile.name, "profile removed"))
        if profile.interface and profile.interface not in interfaces:
            interfaces.append(profile.interface)

    for name in interfaces:
        try:
            client.set_managed(name)
        except ExternalCommandFailure as exc:
            log.warning("reset %s to managed: %s", name, exc)

    if netfilter is not None and not ssids:
        try:
            removed = netfilter.remove_owned()
        except ExternalCommandFailure as exc:
            _record(report, OperationResult.failed(Phase.TEARDOWN, "iptables", str(exc)))
        else:
            if removed:
                _record(report, OperationResult.applied(Phase.TEARDOWN, "iptables", f"{removed} rule(s) removed"))

    report.state = RunState.FAILED if report.failure else RunState.DONE
    return report.finish()
