import json

import pytest

from mf_gateway.models.topology import AccessPointMode, Band, TunnelKind
from mf_gateway.services.errors import ValidationError
from mf_gateway.services.topology_loader import (
    build_topology,
    empty_raw,
    load_topology,
    missing_fields,
    parse_shell_config,
    read_raw,
    set_field,
)


SHELL_CONF = """# mf-gateway.conf
INTERNET_SSID="Home"
INTERNET_PASS='secret123'
INTERNET_INTERFACE=wlan0
GATEWAY_SSID="Guard1"
GATEWAY_PASS="guard pass 1"
GATEWAY_INTERFACE=wlan1
GATEWAY_CHANNEL=6   # inline comment
export GATEWAY2_SSID=Guard2
GATEWAY2_PASS=guardpass2
GATEWAY2_INTERFACE=wlan2
GATEWAY2_BAND=5GHz
GATEWAY2_CHANNEL=36
DRIVER_NAME=8812au
CONFLICTING_DRIVER=rtl8xxxu
"""


def test_parse_shell_config_quotes_and_comments():
    values = parse_shell_config(SHELL_CONF)
    assert values["INTERNET_SSID"] == "Home"
    assert values["INTERNET_PASS"] == "secret123"
    assert values["GATEWAY_PASS"] == "guard pass 1"
    assert values["GATEWAY_CHANNEL"] == "6"
    assert values["GATEWAY2_SSID"] == "Guard2"


def test_shell_config_is_not_executed(tmp_path):
    marker = tmp_path / "pwned"
    conf = tmp_path / "evil.conf"
    conf.write_text(f'INTERNET_SSID="$(touch {marker})"\ntouch {marker}\n')
    values = parse_shell_config(conf.read_text())
    assert not marker.exists()
    assert values["INTERNET_SSID"] == f"$(touch {marker})"


def test_load_shell_config(tmp_path):
    conf = tmp_path / "mf-gateway.conf"
    conf.write_text(SHELL_CONF)
    topo = load_topology(str(conf))

    assert topo.uplink.interface == "wlan0"
    first, second = topo.access_points
    assert (first.ssid, first.channel, first.band, first.mode) == ("Guard1", 6, Band.BG, AccessPointMode.AP)
    assert (second.ssid, second.band, second.channel) == ("Guard2", Band.A, 36)
    assert topo.driver.driver_name == "8812au"
    assert topo.driver.conflicting_driver == "rtl8xxxu"
    assert topo.vpn is None


def test_load_json(tmp_path):
    path = tmp_path / "topology.json"
    path.write_text(json.dumps({
        "uplink": {"ssid": "Home", "passphrase": "secret123", "interface": "wlan0"},
        "access_points": [{"ssid": "Guard1", "passphrase": "guardpass1", "interface": "wlan1"}],
        "vpn": {"tunnel_config_path": "/etc/mf/wg0.conf", "autostart": True},
    }))
    topo = load_topology(str(path))
    assert topo.access_points[0].band is Band.BG
    assert topo.vpn.autostart is True
    assert topo.vpn.resolved_kind is TunnelKind.WIREGUARD
    assert topo.vpn.resolved_interface == "wg0"


def test_vpn_autostart_flag_from_shell(tmp_path):
    conf = tmp_path / "c.conf"
    conf.write_text(SHELL_CONF + "VPN_CONFIG=/etc/mf/nl.ovpn\nVPN_AUTOSTART=yes\n")
    topo = build_topology(read_raw(str(conf)))
    assert topo.vpn.autostart is True
    assert topo.vpn.resolved_kind is TunnelKind.OPENVPN


def test_missing_fields_and_fill():
    raw = empty_raw()
    assert missing_fields(raw) == [
        "uplink.ssid", "uplink.passphrase", "uplink.interface",
        "ap1.ssid", "ap1.passphrase", "ap1.interface",
    ]
    for dotted, value in [("uplink.ssid", "Home"), ("uplink.passphrase", "secret123"),
                          ("uplink.interface", "wlan0"), ("ap1.ssid", "Guard1"),
                          ("ap1.passphrase", "guardpass1"), ("ap1.interface", "wlan1")]:
        set_field(raw, dotted, value)
    assert missing_fields(raw) == []
    assert build_topology(raw).access_points[0].ssid == "Guard1"


def test_missing_file():
    with pytest.raises(ValidationError):
        load_topology("/nonexistent/mf-gateway.conf")


def test_model_errors_become_validation_errors():
    raw = empty_raw()
    raw["access_points"][0]["channel"] = "eleven"
    with pytest.raises(ValidationError) as info:
        build_topology(raw)
    assert info.value.field == "access_points.0.channel"


def test_topology_is_immutable(home_topology):
    with pytest.raises(Exception):
        home_topology.uplink = None


def test_access_points_cannot_be_mutated_in_place(home_topology):
    assert isinstance(home_topology.access_points, tuple)
    with pytest.raises(AttributeError):
        home_topology.access_points.append(home_topology.access_points[0])
    assert len(home_topology.access_points) == 1
