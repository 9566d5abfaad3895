from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List, Optional

from ..config import settings
from ..models.report import OperationResult, Phase, RunReport, RunState
from ..models.topology import Topology
from ..utils.logging import log_result
from .connection_manager import ConnectionManagerClient
from .driver_resolver import DriverResolver
from .errors import ExternalCommandFailure
from .profile_reconciler import ProfileReconciler
from .validator import validate
from .vpn_layer import VpnLayer


log = logging.getLogger(__name__)

NEXT_STATE: Dict[RunState, RunState] = {
    RunState.INIT: RunState.VALIDATED,
    RunState.VALIDATED: RunState.DRIVER_READY,
    RunState.DRIVER_READY: RunState.UPLINK_READY,
    RunState.UPLINK_READY: RunState.APS_READY,
    RunState.APS_READY: RunState.VPN_READY,
    RunState.VPN_READY: RunState.DONE,
}


class ReconciliationOrchestrator:
    """Drives one run: validate, driver, uplink, access points, tunnel.

    Halts on the first failed phase and returns the partial report. Earlier
    phases are left in place.
    """

    def __init__(
        self,
        client: ConnectionManagerClient,
        driver_resolver: Optional[DriverResolver] = None,
        vpn_layer: Optional[VpnLayer] = None,
        reconciler: Optional[ProfileReconciler] = None,
        parallel_access_points: Optional[bool] = None,
    ) -> None:
        self._client = client
        self._driver = driver_resolver or DriverResolver()
        self._vpn = vpn_layer or VpnLayer()
        self._reconciler = reconciler or ProfileReconciler(client)
        self._parallel = settings.parallel_access_points if parallel_access_points is None else parallel_access_points

    def run(self, topology: Topology, operator: Optional[str] = None) -> RunReport:
        report = RunReport(operator=operator)
        log.info("run started by %s", operator or "unknown operator")
        try:
            self._run(topology, report)
        finally:
            report.finish()
        if report.failure is not None:
            f = report.failure
            log.error("run failed in %s (%s): %s", f.phase.value, f.target, f.diagnostic)
        else:
            log.info("run complete: %d operation(s)", len(report.results))
        return report

    def _advance(self, report: RunReport, to: RunState) -> None:
        if to is RunState.FAILED:
            if report.state in (RunState.DONE, RunState.FAILED):
                raise RuntimeError(f"cannot fail from terminal state {report.state.value}")
        elif NEXT_STATE.get(report.state) is not to:
            raise RuntimeError(f"illegal transition {report.state.value} -> {to.value}")
        log.debug("state %s -> %s", report.state.value, to.value)
        report.state = to

    def _record(self, report: RunReport, result: OperationResult) -> OperationResult:
        report.add(result)
        log_result(log, result)
        return result

    def _fail(self, report: RunReport, result: OperationResult) -> None:
        self._record(report, result)
        self._advance(report, RunState.FAILED)

    def _run(self, topology: Topology, report: RunReport) -> None:
        try:
            observed = self._client.list_interfaces()
        except ExternalCommandFailure as exc:
            self._fail(report, OperationResult.failed(Phase.VALIDATE, "interfaces", str(exc)))
            return
        checked = validate(topology, observed)
        if not checked.ok:
            err = checked.error
            self._fail(report, OperationResult.failed(Phase.VALIDATE, err.field or "topology", err.reason))
            return
        self._advance(report, RunState.VALIDATED)

        if topology.driver is not None:
            result = self._record(report, self._driver.resolve(topology.driver))
            if not result.succeeded:
                self._advance(report, RunState.FAILED)
                return
        self._advance(report, RunState.DRIVER_READY)

        result = self._record(report, self._reconciler.reconcile("uplink", topology.uplink))
        if not result.succeeded:
            self._advance(report, RunState.FAILED)
            return
        self._advance(report, RunState.UPLINK_READY)

        ap_results = self._reconcile_access_points(topology, report)
        if any(not r.succeeded for r in ap_results):
            self._advance(report, RunState.FAILED)
            return
        self._advance(report, RunState.APS_READY)

        if topology.vpn is not None:
            result = self._record(
                report,
                self._vpn.apply(topology.vpn, topology.access_points, topology.uplink.interface, ap_results)
            )
            if not result.succeeded:
                self._advance(report, RunState.FAILED)
                return
        self._advance(report, RunState.VPN_READY)
        self._advance(report, RunState.DONE)

    def _reconcile_access_points(self, topology: Topology, report: RunReport) -> List[OperationResult]:
        aps = topology.access_points
        results: List[OperationResult] = []
        if not self._parallel or len(aps) < 2:
            for idx, ap in enumerate(aps, start=1):
                result = self._record(report, self._reconciler.reconcile(f"ap{idx}", ap))
                results.append(result)
                if not result.succeeded:
                    break
            return results

        # Preparation is independent per radio; activations stay in declared order
        with ThreadPoolExecutor(max_workers=len(aps), thread_name_prefix="ap-prepare") as pool:
            prepared = list(pool.map(self._reconciler.prepare_access_point, aps))
        for ap, early in zip(aps, prepared):
            result = early if early is not None else self._reconciler.activate_access_point(ap)
            results.append(self._record(report, result))
            if not result.succeeded:
                break
        return results
