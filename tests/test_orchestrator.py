import json
import logging

import pytest
from fakes import FakeConnectionManager, FakeModuleHost, FakeRunner

from mf_gateway.models.report import OperationResult, OperationStatus, Phase, RunReport, RunState
from mf_gateway.models.topology import AccessPointProfile, DriverSpec, Topology, UplinkSpec, VPNTunnelSpec
from mf_gateway.services.driver_resolver import DriverResolver
from mf_gateway.services.errors import ExternalCommandFailure
from mf_gateway.services.orchestrator import ReconciliationOrchestrator
from mf_gateway.utils.logging import JsonFormatter


class RecordingVpn:
    def __init__(self, result=None):
        self.calls = []
        self._result = result

    def apply(self, spec, access_points=(), uplink_interface=None, ap_results=()):
        self.calls.append((spec, list(ap_results)))
        return self._result or OperationResult.applied(Phase.VPN, "wg0")


class RecordingDriver:
    def __init__(self, result):
        self.calls = []
        self._result = result

    def resolve(self, spec):
        self.calls.append(spec)
        return self._result


def _orchestrator(client, driver=None, vpn=None, parallel=False):
    return ReconciliationOrchestrator(
        client,
        driver_resolver=driver or RecordingDriver(OperationResult.satisfied(Phase.DRIVER, "-")),
        vpn_layer=vpn or RecordingVpn(),
        parallel_access_points=parallel,
    )


def _two_aps(**extra):
    return Topology(
        uplink=UplinkSpec(ssid="Home", passphrase="secret123", interface="wlan0"),
        access_points=[
            AccessPointProfile(ssid="Guard1", passphrase="guardpass1", interface="wlan1"),
            AccessPointProfile(ssid="Guard2", passphrase="guardpass2", interface="wlan2"),
        ],
        **extra,
    )


def test_happy_path_scenario(home_topology):
    client = FakeConnectionManager(["wlan0", "wlan1"])
    driver = RecordingDriver(OperationResult.satisfied(Phase.DRIVER, "-"))
    vpn = RecordingVpn()
    report = _orchestrator(client, driver, vpn).run(home_topology)

    assert report.state is RunState.DONE
    assert report.ok
    assert [(r.phase, r.target, r.status) for r in report.results] == [
        (Phase.UPLINK, "wlan0:Home", OperationStatus.APPLIED),
        (Phase.ACCESS_POINT, "wlan1:Guard1", OperationStatus.APPLIED),
    ]
    # absent optional phases are not invoked
    assert driver.calls == []
    assert vpn.calls == []
    assert report.finished_at is not None


def test_missing_interface_issues_no_mutation(home_topology):
    client = FakeConnectionManager(["wlan0", "wlan2"])
    report = _orchestrator(client).run(home_topology)

    assert report.state is RunState.FAILED
    assert not report.ok
    assert report.failure.phase is Phase.VALIDATE
    assert report.failure.target == "ap1.interface"
    assert client.mutating_calls() == []


def test_shared_interface_fails_before_any_phase():
    topo = Topology(
        uplink=UplinkSpec(ssid="Home", passphrase="secret123", interface="wlan0"),
        access_points=[
            AccessPointProfile(ssid="Guard1", passphrase="guardpass1", interface="wlan1"),
            AccessPointProfile(ssid="Guard2", passphrase="guardpass2", interface="wlan1"),
        ],
    )
    client = FakeConnectionManager()
    report = _orchestrator(client).run(topo)
    assert report.state is RunState.FAILED
    assert report.failure.target == "ap2.interface"
    assert len(report.results) == 1
    assert client.mutating_calls() == []


def test_interface_listing_failure_fails_validation(home_topology):
    client = FakeConnectionManager()
    client.fail["list_interfaces"] = ExternalCommandFailure("command not found: nmcli")
    report = _orchestrator(client).run(home_topology)
    assert report.state is RunState.FAILED
    assert report.failure.phase is Phase.VALIDATE


def test_driver_runs_before_radios(home_topology, tmp_path):
    client = FakeConnectionManager()
    host = FakeModuleHost(modules_file=str(tmp_path / "modules"), blacklist_file=str(tmp_path / "bl.conf"))
    resolver = DriverResolver(host, FakeRunner(available=["apt-get"]), build_dir=str(tmp_path))
    topo = home_topology.model_copy(update={"driver": DriverSpec(driver_name="8812au", conflicting_driver="rtl8xxxu")})

    report = _orchestrator(client, driver=resolver).run(topo)

    assert report.ok
    assert [r.phase for r in report.results] == [Phase.DRIVER, Phase.UPLINK, Phase.ACCESS_POINT]


def test_driver_failure_stops_run(home_topology):
    client = FakeConnectionManager()
    driver = RecordingDriver(OperationResult.failed(Phase.DRIVER, "8812au", "modprobe failed"))
    topo = home_topology.model_copy(update={"driver": DriverSpec(driver_name="8812au")})
    report = _orchestrator(client, driver).run(topo)
    assert report.state is RunState.FAILED
    assert report.failure.phase is Phase.DRIVER
    assert client.mutating_calls() == []


def test_uplink_failure_stops_before_access_points(home_topology):
    client = FakeConnectionManager()
    client.fail["connect_wifi"] = ExternalCommandFailure("command failed: nmcli device wifi connect")
    report = _orchestrator(client).run(home_topology)
    assert report.state is RunState.FAILED
    assert report.failure.phase is Phase.UPLINK
    assert "create_profile" not in [c[0] for c in client.calls]


def test_vpn_never_runs_after_failed_access_point(tmp_path):
    conf = tmp_path / "wg0.conf"
    conf.write_text("[Interface]\n")
    client = FakeConnectionManager()
    client.fail["activate_profile"] = ExternalCommandFailure("command failed: nmcli connection up")
    vpn = RecordingVpn()

    report = _orchestrator(client, vpn=vpn).run(_two_aps(vpn=VPNTunnelSpec(tunnel_config_path=str(conf))))

    assert report.state is RunState.FAILED
    assert vpn.calls == []
    assert all(r.phase is not Phase.VPN for r in report.results)
    # fail fast: the second access point is never attempted
    assert [r.target for r in report.results if r.phase is Phase.ACCESS_POINT] == ["wlan1:Guard1"]


def test_vpn_receives_access_point_results(tmp_path):
    conf = tmp_path / "wg0.conf"
    conf.write_text("[Interface]\n")
    vpn = RecordingVpn()
    report = _orchestrator(FakeConnectionManager(), vpn=vpn).run(
        _two_aps(vpn=VPNTunnelSpec(tunnel_config_path=str(conf)))
    )
    assert report.ok
    assert len(vpn.calls) == 1
    assert [r.status for r in vpn.calls[0][1]] == [OperationStatus.APPLIED, OperationStatus.APPLIED]
    assert report.results[-1].phase is Phase.VPN


def test_vpn_failure_fails_run(tmp_path):
    conf = tmp_path / "wg0.conf"
    conf.write_text("[Interface]\n")
    vpn = RecordingVpn(OperationResult.failed(Phase.VPN, "wg0", "wg-quick up failed"))
    report = _orchestrator(FakeConnectionManager(), vpn=vpn).run(
        _two_aps(vpn=VPNTunnelSpec(tunnel_config_path=str(conf)))
    )
    assert report.state is RunState.FAILED
    assert report.failure.phase is Phase.VPN


def test_rerun_is_idempotent(home_topology):
    client = FakeConnectionManager()
    orch = _orchestrator(client)
    orch.run(home_topology)
    client.calls.clear()

    report = orch.run(home_topology)

    assert report.ok
    assert {r.status for r in report.results} == {OperationStatus.ALREADY_SATISFIED}
    assert client.mutating_calls() == []
    assert len(client.profiles_named("Guard1")) == 1


def test_parallel_preparation_serializes_activation():
    client = FakeConnectionManager()
    report = _orchestrator(client, parallel=True).run(_two_aps())
    assert report.ok
    activations = [c[1] for c in client.calls if c[0] == "activate_profile"]
    assert activations == ["Guard1", "Guard2"]


def test_illegal_transition_is_rejected():
    orch = _orchestrator(FakeConnectionManager())
    report = RunReport()
    with pytest.raises(RuntimeError):
        orch._advance(report, RunState.UPLINK_READY)
    report.state = RunState.DONE
    with pytest.raises(RuntimeError):
        orch._advance(report, RunState.FAILED)


def test_each_result_is_logged_with_its_phase(home_topology, caplog):
    caplog.set_level(logging.INFO, logger="mf_gateway")
    report = _orchestrator(FakeConnectionManager()).run(home_topology, operator="alice")

    logged = [r for r in caplog.records if hasattr(r, "phase")]
    assert [(r.phase, r.target, r.status) for r in logged] == [
        ("uplink", "wlan0:Home", "applied"),
        ("access_point", "wlan1:Guard1", "applied"),
    ]
    line = json.loads(JsonFormatter().format(logged[-1]))
    assert (line["phase"], line["target"], line["status"]) == ("access_point", "wlan1:Guard1", "applied")
    assert report.operator == "alice"
    assert "operator: alice" in report.summary_lines()


def test_failed_result_is_logged_as_error(home_topology, caplog):
    caplog.set_level(logging.INFO, logger="mf_gateway")
    client = FakeConnectionManager()
    client.fail["connect_wifi"] = ExternalCommandFailure("command failed: nmcli device wifi connect")
    _orchestrator(client).run(home_topology)

    failed = [r for r in caplog.records if getattr(r, "status", None) == "failed"]
    assert len(failed) == 1
    assert failed[0].levelno == logging.ERROR
    assert failed[0].phase == "uplink"
