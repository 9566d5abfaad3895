from __future__ import annotations

import socket
from typing import Dict, List, Optional

import psutil
from fastapi import APIRouter, Depends, HTTPException
from starlette.concurrency import run_in_threadpool

from ..models.interfaces import InterfacesResponse, InterfaceStatus
from ..models.report import Phase, RunReport
from ..models.topology import Interface
from ..security.auth import current_operator
from ..services.engine import get_client
from ..services.errors import ExternalCommandFailure
from ..services.report_store import get_report_store


router = APIRouter()


def _roles(report: Optional[RunReport]) -> Dict[str, str]:
    roles: Dict[str, str] = {}
    if report is None:
        return roles
    for r in report.results:
        if r.phase in (Phase.UPLINK, Phase.ACCESS_POINT) and r.succeeded:
            roles[r.target.split(":", 1)[0]] = r.phase.value
    return roles


def describe(observed: List[Interface], report: Optional[RunReport]) -> List[InterfaceStatus]:
    stats = psutil.net_if_stats()
    addrs = psutil.net_if_addrs()
    roles = _roles(report)
    out: List[InterfaceStatus] = []
    for iface in observed:
        mac = None
        ipv4s: List[str] = []
        for a in addrs.get(iface.name, []):
            if a.family == psutil.AF_LINK:
                mac = a.address
            elif a.family == socket.AF_INET:
                ipv4s.append(a.address)
        st = stats.get(iface.name)
        out.append(
            InterfaceStatus(
                name=iface.name,
                capability=iface.capability,
                current_mode=iface.current_mode,
                is_up=bool(st and st.isup),
                mac_address=mac,
                ipv4_addresses=ipv4s,
                role=roles.get(iface.name),
            )
        )
    return out


@router.get("/", response_model=InterfacesResponse, dependencies=[Depends(current_operator)])
async def list_interfaces() -> InterfacesResponse:
    try:
        observed = await run_in_threadpool(get_client().list_interfaces)
    except ExternalCommandFailure as exc:
        raise HTTPException(status_code=502, detail=str(exc))
    return InterfacesResponse(interfaces=describe(observed, get_report_store().load()))
