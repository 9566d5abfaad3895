import pytest

from mf_gateway.models.topology import AccessPointProfile, DriverSpec, Interface, Topology, UplinkSpec, VPNTunnelSpec
from mf_gateway.services.errors import ResourceNotFound, ValidationError
from mf_gateway.services.validator import validate


def _topology(**overrides):
    base = dict(
        uplink=UplinkSpec(ssid="Home", passphrase="secret123", interface="wlan0"),
        access_points=[AccessPointProfile(ssid="Guard1", passphrase="guardpass1", interface="wlan1")],
    )
    base.update(overrides)
    return Topology(**base)


def _ifaces(*names):
    return [Interface(name=n) for n in names]


def test_valid_topology(home_topology, observed):
    result = validate(home_topology, observed)
    assert result.ok
    assert result.error is None


def test_two_access_points_valid(observed):
    topo = _topology(access_points=[
        AccessPointProfile(ssid="Guard1", passphrase="guardpass1", interface="wlan1"),
        AccessPointProfile(ssid="Guard2", passphrase="guardpass2", interface="wlan2", band="5GHz", channel=36),
    ])
    assert validate(topo, observed).ok


def test_not_enough_interfaces(home_topology):
    result = validate(home_topology, _ifaces("wlan0"))
    assert isinstance(result.error, ValidationError)
    assert result.error.field == "interfaces"
    assert result.error.reason == "insufficient_interfaces"


def test_missing_interface_is_resource_not_found(home_topology):
    result = validate(home_topology, _ifaces("wlan0", "wlan2"))
    assert not result.ok
    assert isinstance(result.error, ResourceNotFound)
    assert result.error.field == "ap1.interface"


def test_shared_interface_between_access_points(observed):
    topo = _topology(access_points=[
        AccessPointProfile(ssid="Guard1", passphrase="guardpass1", interface="wlan1"),
        AccessPointProfile(ssid="Guard2", passphrase="guardpass2", interface="wlan1"),
    ])
    result = validate(topo, observed)
    assert isinstance(result.error, ValidationError)
    assert result.error.field == "ap2.interface"


def test_uplink_and_access_point_same_interface(observed):
    topo = _topology(access_points=[AccessPointProfile(ssid="Guard1", passphrase="guardpass1", interface="wlan0")])
    result = validate(topo, observed)
    assert result.error.field == "ap1.interface"


def test_duplicate_ssid(observed):
    topo = _topology(access_points=[
        AccessPointProfile(ssid="Guard", passphrase="guardpass1", interface="wlan1"),
        AccessPointProfile(ssid="Guard", passphrase="guardpass2", interface="wlan2"),
    ])
    result = validate(topo, observed)
    assert isinstance(result.error, ValidationError)
    assert result.error.field == "ap2.ssid"


def test_failure_is_deterministic(observed):
    topo = _topology(access_points=[
        AccessPointProfile(ssid="Guard", passphrase="guardpass1", interface="wlan1"),
        AccessPointProfile(ssid="Guard", passphrase="guardpass2", interface="wlan1"),
    ])
    fields = {validate(topo, observed).error.field for _ in range(5)}
    # interface reuse is checked before ssid reuse
    assert fields == {"ap2.interface"}


@pytest.mark.parametrize("field", ["ssid", "passphrase"])
def test_empty_uplink_field(observed, field):
    values = dict(ssid="Home", passphrase="secret123", interface="wlan0")
    values[field] = ""
    result = validate(_topology(uplink=UplinkSpec(**values)), observed)
    assert result.error.field == f"uplink.{field}"


def test_empty_ap_ssid(observed):
    topo = _topology(access_points=[AccessPointProfile(ssid=" ", passphrase="guardpass1", interface="wlan1")])
    assert validate(topo, observed).error.field == "ap1.ssid"


def test_empty_driver_name(observed):
    result = validate(_topology(driver=DriverSpec(driver_name="")), observed)
    assert result.error.field == "driver.driver_name"


def test_short_wpa_passphrase(observed):
    topo = _topology(access_points=[AccessPointProfile(ssid="Guard1", passphrase="short", interface="wlan1")])
    assert validate(topo, observed).error.field == "ap1.passphrase"


def test_channel_must_match_band(observed):
    topo = _topology(access_points=[
        AccessPointProfile(ssid="Guard1", passphrase="guardpass1", interface="wlan1", band="a", channel=6),
    ])
    assert validate(topo, observed).error.field == "ap1.channel"


def test_vpn_config_must_exist(observed, tmp_path):
    missing = _topology(vpn=VPNTunnelSpec(tunnel_config_path=str(tmp_path / "nope.conf")))
    result = validate(missing, observed)
    assert isinstance(result.error, ResourceNotFound)
    assert result.error.field == "vpn.tunnel_config_path"

    conf = tmp_path / "wg0.conf"
    conf.write_text("[Interface]\n")
    assert validate(_topology(vpn=VPNTunnelSpec(tunnel_config_path=str(conf))), observed).ok
