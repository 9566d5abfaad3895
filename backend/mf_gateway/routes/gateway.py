from __future__ import annotations

from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from starlette.concurrency import run_in_threadpool

from ..models.report import RunReport
from ..models.topology import Topology
from ..security.auth import current_operator
from ..services.engine import build_netfilter, build_orchestrator, get_client, run_lock
from ..services.errors import ExternalCommandFailure
from ..services.report_store import get_report_store
from ..services.teardown import teardown
from ..services.validator import validate


router = APIRouter()


class TeardownRequest(BaseModel):
    ssids: List[str] = Field(default_factory=list)


def _locked(fn, *args):
    if not run_lock.acquire(blocking=False):
        raise HTTPException(status_code=409, detail="Another gateway run is in progress")
    try:
        return fn(*args)
    finally:
        run_lock.release()


@router.post("/validate", dependencies=[Depends(current_operator)])
async def validate_topology(topology: Topology) -> Dict[str, Any]:
    try:
        observed = await run_in_threadpool(get_client().list_interfaces)
    except ExternalCommandFailure as exc:
        raise HTTPException(status_code=502, detail=str(exc))
    result = validate(topology, observed)
    if result.ok:
        return {"ok": True}
    err = result.error
    return {"ok": False, "error": type(err).__name__, "field": err.field, "reason": err.reason}


def _apply(topology: Topology, operator: str) -> RunReport:
    report = build_orchestrator().run(topology, operator)
    get_report_store().save(report)
    return report


@router.post("/apply", response_model=RunReport)
async def apply(topology: Topology, operator: str = Depends(current_operator)) -> RunReport:
    return await run_in_threadpool(_locked, _apply, topology, operator)


@router.get("/report", response_model=RunReport, dependencies=[Depends(current_operator)])
async def last_report() -> RunReport:
    report = get_report_store().load()
    if report is None:
        raise HTTPException(status_code=404, detail="No run recorded yet")
    return report


def _teardown(ssids: List[str], operator: str) -> RunReport:
    report = teardown(get_client(), ssids or None, build_netfilter(), operator)
    get_report_store().save(report)
    return report


@router.post("/teardown", response_model=RunReport)
async def remove(req: TeardownRequest, operator: str = Depends(current_operator)) -> RunReport:
    return await run_in_threadpool(_locked, _teardown, req.ssids, operator)
