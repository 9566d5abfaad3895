from __future__ import annotations

import argparse
import getpass
import logging
import os
import shutil
import sys
from typing import Any, Callable, Dict, List, Optional

from .config import settings
from .models.report import RunReport
from .services.engine import build_netfilter, build_orchestrator, get_client, run_lock
from .services.errors import GatewayError
from .services.report_store import get_report_store
from .services.teardown import gateway_profiles, teardown
from .services.operator_store import get_operator_store
from .services.topology_loader import build_topology, empty_raw, load_topology, missing_fields, read_raw, set_field
from .services.validator import validate
from .utils.logging import setup_logging


VERSION = "2.0.0"

# Host tools every mutating command relies on
REQUIRED_TOOLS = ("nmcli", "systemctl")

log = logging.getLogger(__name__)

PROMPTS = {
    "uplink.ssid": "SSID for internet connection",
    "uplink.passphrase": "Password for internet connection",
    "uplink.interface": "Interface for internet connection (e.g., wlan1)",
    "ap1.ssid": "SSID for secured gateway",
    "ap1.passphrase": "Password for secured gateway",
    "ap1.interface": "Interface for secured gateway (e.g., wlan2)",
    "ap2.ssid": "SSID for second access point",
    "ap2.passphrase": "Password for second access point",
    "ap2.interface": "Interface for second access point",
}


def _ask(dotted: str, reader: Callable[[str], str], secret_reader: Callable[[str], str]) -> str:
    label = PROMPTS.get(dotted, dotted)
    if dotted.endswith(".passphrase"):
        return secret_reader(f"{label}: ")
    return reader(f"{label}: ")


def collect_raw(
    path: Optional[str],
    interactive: bool,
    reader: Callable[[str], str] = input,
    secret_reader: Callable[[str], str] = getpass.getpass,
) -> Dict[str, Any]:
    if path and os.path.exists(path):
        log.info("loading configuration from %s", path)
        raw = read_raw(path)
    else:
        log.warning("configuration file not found: %s", path)
        raw = empty_raw()
    missing = missing_fields(raw)
    if missing and not interactive:
        raise GatewayError(f"missing required values: {', '.join(missing)}", missing[0])
    for dotted in missing:
        set_field(raw, dotted, _ask(dotted, reader, secret_reader).strip())
    return raw


def _confirm(question: str, reader: Callable[[str], str] = input) -> bool:
    return reader(f"{question} (y/N): ").strip().lower() in ("y", "yes")


def _print_summary(raw: Dict[str, Any]) -> None:
    print("Configuration summary:")
    up = raw.get("uplink", {})
    print(f"  Internet SSID: {up.get('ssid')}")
    print(f"  Internet Interface: {up.get('interface')}")
    for idx, ap in enumerate(raw.get("access_points", []), start=1):
        print(f"  AP{idx} SSID: {ap.get('ssid')}  interface={ap.get('interface')} "
              f"band={ap.get('band')} channel={ap.get('channel')} mode={ap.get('mode')}")
    if raw.get("driver"):
        print(f"  Driver: {raw['driver'].get('driver_name')} (replaces {raw['driver'].get('conflicting_driver') or '-'})")
    if raw.get("vpn"):
        print(f"  Tunnel: {raw['vpn'].get('tunnel_config_path')} autostart={raw['vpn'].get('autostart', False)}")


def _print_report(report: RunReport) -> None:
    for line in report.summary_lines():
        print(line)
    if report.failure is not None:
        f = report.failure
        print(f"error: {f.phase.value} {f.target}: {f.diagnostic}", file=sys.stderr)


def _preflight() -> Optional[str]:
    if hasattr(os, "geteuid") and os.geteuid() != 0:
        return "this command must be run as root (use sudo)"
    missing = [tool for tool in REQUIRED_TOOLS if not shutil.which(tool)]
    if missing:
        return f"missing required tools: {', '.join(missing)} (install NetworkManager and systemd)"
    return None


def _local_operator() -> str:
    return os.environ.get("SUDO_USER") or getpass.getuser()


def cmd_apply(args: argparse.Namespace) -> int:
    problem = _preflight()
    if problem:
        print(f"error: {problem}", file=sys.stderr)
        return 1
    raw = collect_raw(args.config, interactive=not args.no_input)
    topology = build_topology(raw)
    if not args.yes:
        _print_summary(raw)
        if not _confirm("Proceed with this configuration?"):
            print("cancelled")
            return 0
    with run_lock:
        report = build_orchestrator().run(topology, _local_operator())
    get_report_store().save(report)
    _print_report(report)
    return 0 if report.ok else 1


def cmd_validate(args: argparse.Namespace) -> int:
    topology = load_topology(args.config)
    result = validate(topology, get_client().list_interfaces())
    if result.ok:
        print("configuration is valid")
        return 0
    err = result.error
    print(f"invalid: {type(err).__name__} {err.field}: {err.reason}", file=sys.stderr)
    return 1


def cmd_teardown(args: argparse.Namespace) -> int:
    problem = _preflight()
    if problem:
        print(f"error: {problem}", file=sys.stderr)
        return 1
    client = get_client()
    if not args.yes:
        names = [p.name for p in gateway_profiles(client, args.ssid)]
        if not names:
            print("no gateway profiles found")
            return 0
        print(f"This will remove: {', '.join(names)}")
        if not _confirm("Are you sure you want to continue?"):
            print("cancelled")
            return 0
    with run_lock:
        report = teardown(client, args.ssid, build_netfilter(), _local_operator())
    get_report_store().save(report)
    _print_report(report)
    return 0 if report.ok else 1


def cmd_status(args: argparse.Namespace) -> int:
    for iface in get_client().list_interfaces():
        print(f"{iface.name:<12} {iface.capability:<6} {iface.current_mode.value}")
    report = get_report_store().load()
    if report is None:
        print("no run recorded yet")
    else:
        print(f"last run: {report.started_at.isoformat()}")
        _print_report(report)
    return 0


def cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("mf_gateway.main:app", host=args.host, port=args.port, log_config=None)
    return 0


def cmd_operator(args: argparse.Namespace, secret_reader: Callable[[str], str] = getpass.getpass) -> int:
    password = secret_reader(f"Password for operator {args.name}: ")
    if secret_reader("Repeat password: ") != password:
        print("error: passwords do not match", file=sys.stderr)
        return 1
    operator = get_operator_store().enroll(args.name, password, replace=args.replace)
    print(f"operator {operator.name} enrolled")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="mf-gateway", description="Multi-radio WiFi gateway setup")
    parser.add_argument("-v", "--version", action="version", version=f"%(prog)s {VERSION}")
    parser.add_argument("--log-level", default=None)
    parser.add_argument("--log-file", default=None)
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("apply", help="bring the gateway to the configured state")
    p.add_argument("-c", "--config", default=settings.topology_file)
    p.add_argument("-y", "--yes", action="store_true", help="do not ask for confirmation")
    p.add_argument("--no-input", action="store_true", help="never prompt for missing values")
    p.set_defaults(func=cmd_apply)

    p = sub.add_parser("validate", help="check the configuration against the host")
    p.add_argument("-c", "--config", default=settings.topology_file)
    p.set_defaults(func=cmd_validate)

    p = sub.add_parser("teardown", help="remove access point profiles")
    p.add_argument("-y", "--yes", action="store_true")
    p.add_argument("--ssid", action="append", default=None)
    p.set_defaults(func=cmd_teardown)

    p = sub.add_parser("status", help="show interfaces and the last run")
    p.set_defaults(func=cmd_status)

    p = sub.add_parser("serve", help="run the HTTP API")
    p.add_argument("--host", default=settings.host)
    p.add_argument("--port", type=int, default=settings.port)
    p.set_defaults(func=cmd_serve)

    p = sub.add_parser("operator", help="enroll the account allowed to use the HTTP API")
    p.add_argument("name")
    p.add_argument("--replace", action="store_true", help="replace an already enrolled operator")
    p.set_defaults(func=cmd_operator)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level, args.log_file)
    try:
        return args.func(args)
    except GatewayError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
