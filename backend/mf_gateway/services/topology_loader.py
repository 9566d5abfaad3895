from __future__ import annotations

import json
import os
import shlex
from typing import Any, Dict, List, Optional

from pydantic import ValidationError as ModelValidationError

from ..models.topology import Topology
from .errors import ValidationError


# Shell-style config keys -> (section, field)
UPLINK_KEYS = {
    "INTERNET_SSID": "ssid",
    "INTERNET_PASS": "passphrase",
    "INTERNET_INTERFACE": "interface",
}
AP_KEYS = {
    "SSID": "ssid",
    "PASS": "passphrase",
    "INTERFACE": "interface",
    "CHANNEL": "channel",
    "BAND": "band",
    "MODE": "mode",
}
AP_PREFIXES = ("GATEWAY", "GATEWAY2")
DRIVER_KEYS = {
    "DRIVER_NAME": "driver_name",
    "DRIVER_REPO": "source_repo",
    "CONFLICTING_DRIVER": "conflicting_driver",
    "DRIVER_PACKAGE": "package_name",
}
VPN_KEYS = {
    "VPN_CONFIG": "tunnel_config_path",
    "VPN_AUTOSTART": "autostart",
    "VPN_INTERFACE": "tunnel_interface",
    "VPN_KIND": "kind",
}
AP_DEFAULTS = {"channel": "1", "band": "bg", "mode": "ap"}

REQUIRED_UPLINK = ("ssid", "passphrase", "interface")
REQUIRED_AP = ("ssid", "passphrase", "interface")


def parse_shell_config(text: str) -> Dict[str, str]:
    """Parse ``KEY=value`` lines the way a shell would quote them.

    Nothing is executed; ``export`` prefixes and comments are ignored.
    """
    values: Dict[str, str] = {}
    for raw in text.splitlines():
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("export "):
            line = line[len("export "):].lstrip()
        key, sep, rest = line.partition("=")
        if not sep or not key.strip().isidentifier():
            continue
        try:
            tokens = shlex.split(rest, comments=True)
        except ValueError as exc:
            raise ValidationError(f"cannot parse value: {exc}", key.strip())
        values[key.strip()] = " ".join(tokens)
    return values


def raw_from_shell(values: Dict[str, str]) -> Dict[str, Any]:
    uplink = {field: values.get(key, "") for key, field in UPLINK_KEYS.items()}
    aps: List[Dict[str, Any]] = []
    for prefix in AP_PREFIXES:
        ap = {field: values[f"{prefix}_{key}"] for key, field in AP_KEYS.items() if values.get(f"{prefix}_{key}")}
        if prefix != AP_PREFIXES[0] and not ap:
            continue
        for field, default in AP_DEFAULTS.items():
            ap.setdefault(field, default)
        for field in REQUIRED_AP:
            ap.setdefault(field, "")
        aps.append(ap)
    raw: Dict[str, Any] = {"uplink": uplink, "access_points": aps}
    driver = {field: values[key] for key, field in DRIVER_KEYS.items() if values.get(key)}
    if driver:
        driver.setdefault("driver_name", "")
        raw["driver"] = driver
    vpn = {field: values[key] for key, field in VPN_KEYS.items() if values.get(key)}
    if vpn:
        vpn.setdefault("tunnel_config_path", "")
        if "autostart" in vpn:
            vpn["autostart"] = vpn["autostart"].strip().lower() in ("1", "yes", "true", "y", "on")
        raw["vpn"] = vpn
    return raw


def read_raw(path: str) -> Dict[str, Any]:
    with open(path, "r", encoding="utf-8") as f:
        text = f.read()
    if path.endswith(".json") or text.lstrip().startswith("{"):
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ValidationError(f"invalid JSON: {exc}", path)
        if not isinstance(data, dict):
            raise ValidationError("top-level JSON value must be an object", path)
        return data
    return raw_from_shell(parse_shell_config(text))


def empty_raw() -> Dict[str, Any]:
    uplink = {f: "" for f in REQUIRED_UPLINK}
    ap: Dict[str, Any] = {f: "" for f in REQUIRED_AP}
    ap.update(AP_DEFAULTS)
    return {"uplink": uplink, "access_points": [ap]}


def missing_fields(raw: Dict[str, Any]) -> List[str]:
    """Dotted names of required values that are absent or empty."""
    missing = [f"uplink.{f}" for f in REQUIRED_UPLINK if not str(raw.get("uplink", {}).get(f, "")).strip()]
    for idx, ap in enumerate(raw.get("access_points", []) or [], start=1):
        missing += [f"ap{idx}.{f}" for f in REQUIRED_AP if not str(ap.get(f, "")).strip()]
    return missing


def set_field(raw: Dict[str, Any], dotted: str, value: str) -> None:
    section, field = dotted.split(".", 1)
    if section == "uplink":
        raw.setdefault("uplink", {})[field] = value
    else:
        idx = int(section[2:]) - 1
        raw["access_points"][idx][field] = value


def build_topology(raw: Dict[str, Any]) -> Topology:
    try:
        return Topology.model_validate(raw)
    except ModelValidationError as exc:
        first = exc.errors()[0]
        loc = ".".join(str(p) for p in first.get("loc", ()))
        raise ValidationError(first.get("msg", "invalid value"), loc or None)


def load_topology(path: Optional[str]) -> Topology:
    if not path or not os.path.exists(path):
        raise ValidationError(f"configuration file not found: {path}", "config")
    return build_topology(read_raw(path))
