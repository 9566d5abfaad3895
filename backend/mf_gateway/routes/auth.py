from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Response
from pydantic import BaseModel

from ..security.auth import current_operator, sessions
from ..services.errors import ConflictError, ValidationError
from ..services.operator_store import get_operator_store
from ..services.report_store import get_report_store


router = APIRouter()


class Credentials(BaseModel):
    name: str
    password: str


@router.get("/state")
async def state(operator: str = Depends(current_operator)) -> dict:
    report = get_report_store().load()
    return {
        "operator": operator,
        "last_run": None if report is None else {
            "state": report.state.value,
            "operator": report.operator,
            "finished_at": report.finished_at,
        },
    }


@router.post("/login")
async def login(req: Credentials, response: Response) -> dict:
    store = get_operator_store()
    if store.current() is None:
        raise HTTPException(status_code=503, detail="No operator enrolled")
    operator = store.authenticate(req.name, req.password)
    if operator is None:
        raise HTTPException(status_code=401, detail="Invalid credentials")
    sessions.issue(response, operator)
    return {"ok": True, "operator": operator}


@router.post("/logout")
async def logout(response: Response) -> dict:
    sessions.end(response)
    return {"ok": True}


@router.post("/enroll")
async def enroll(req: Credentials) -> dict:
    # First enrollment only; replacing the operator is done from the host console
    try:
        operator = get_operator_store().enroll(req.name, req.password)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except ConflictError as exc:
        raise HTTPException(status_code=409, detail=exc.reason)
    return {"ok": True, "operator": operator.name}
