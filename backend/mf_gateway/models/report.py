from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class Phase(str, Enum):
    VALIDATE = "validate"
    DRIVER = "driver"
    UPLINK = "uplink"
    ACCESS_POINT = "access_point"
    VPN = "vpn"
    TEARDOWN = "teardown"


class OperationStatus(str, Enum):
    APPLIED = "applied"
    ALREADY_SATISFIED = "already-satisfied"
    FAILED = "failed"


class RunState(str, Enum):
    INIT = "init"
    VALIDATED = "validated"
    DRIVER_READY = "driver_ready"
    UPLINK_READY = "uplink_ready"
    APS_READY = "aps_ready"
    VPN_READY = "vpn_ready"
    DONE = "done"
    FAILED = "failed"


class OperationResult(BaseModel):
    phase: Phase
    target: str
    status: OperationStatus
    diagnostic: str = ""

    @property
    def succeeded(self) -> bool:
        return self.status is not OperationStatus.FAILED

    @classmethod
    def applied(cls, phase: Phase, target: str, diagnostic: str = "") -> "OperationResult":
        return cls(phase=phase, target=target, status=OperationStatus.APPLIED, diagnostic=diagnostic)

    @classmethod
    def satisfied(cls, phase: Phase, target: str, diagnostic: str = "") -> "OperationResult":
        return cls(phase=phase, target=target, status=OperationStatus.ALREADY_SATISFIED, diagnostic=diagnostic)

    @classmethod
    def failed(cls, phase: Phase, target: str, diagnostic: str) -> "OperationResult":
        return cls(phase=phase, target=target, status=OperationStatus.FAILED, diagnostic=diagnostic)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class RunReport(BaseModel):
    state: RunState = RunState.INIT
    results: List[OperationResult] = Field(default_factory=list)
    failure: Optional[OperationResult] = None
    started_at: datetime = Field(default_factory=_now)
    finished_at: Optional[datetime] = None
    operator: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.failure is None and self.state in (RunState.DONE,)

    def add(self, result: OperationResult) -> OperationResult:
        self.results.append(result)
        if not result.succeeded and self.failure is None:
            self.failure = result
        return result

    def finish(self) -> "RunReport":
        self.finished_at = _now()
        return self

    def summary_lines(self) -> List[str]:
        lines = [f"{r.phase.value:<13} {r.target:<24} {r.status.value}" + (f"  {r.diagnostic}" if r.diagnostic else "")
                 for r in self.results]
        lines.append(f"state: {self.state.value}")
        if self.operator:
            lines.append(f"operator: {self.operator}")
        return lines
