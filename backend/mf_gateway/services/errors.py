from __future__ import annotations

from typing import Optional, Sequence


class GatewayError(Exception):
    """Base class for every error the reconciliation engine reports."""

    def __init__(self, reason: str, field: Optional[str] = None) -> None:
        super().__init__(reason if field is None else f"{field}: {reason}")
        self.reason = reason
        self.field = field


class ValidationError(GatewayError):
    """Desired state violates a precondition. Raised before any mutation."""


class ResourceNotFound(GatewayError):
    """A referenced interface is not present on the host."""


class ConflictError(GatewayError):
    """A connection profile with the same name already exists."""


class ExternalCommandFailure(GatewayError):
    def __init__(
        self,
        reason: str,
        argv: Sequence[str] = (),
        returncode: Optional[int] = None,
        output: str = "",
    ) -> None:
        super().__init__(reason)
        self.argv = list(argv)
        self.returncode = returncode
        self.output = output

    def __str__(self) -> str:
        detail = self.output.strip().splitlines()[-1] if self.output.strip() else ""
        parts = [self.reason]
        if self.returncode is not None:
            parts.append(f"exit={self.returncode}")
        if detail:
            parts.append(detail[:200])
        return " ".join(parts)
