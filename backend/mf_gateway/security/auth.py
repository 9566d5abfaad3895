from __future__ import annotations

import logging
import secrets
from typing import Optional

from fastapi import Cookie, HTTPException, Response, status
from itsdangerous import URLSafeTimedSerializer, BadSignature, SignatureExpired

from ..config import settings
from ..services.operator_store import get_operator_store


log = logging.getLogger(__name__)

SESSION_COOKIE = "mfg_session"


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


class OperatorSessions:
    """Signed cookies naming the operator who logged in."""

    def __init__(self, secret_key: Optional[str], hours: int) -> None:
        if not secret_key:
            log.warning("SECRET_KEY is not set; operator sessions end when the server restarts")
            secret_key = secrets.token_urlsafe(32)
        self._serializer = URLSafeTimedSerializer(secret_key, salt="mf-gateway-operator")
        self.max_age = hours * 3600

    def issue(self, response: Response, operator: str) -> None:
        response.set_cookie(
            key=SESSION_COOKIE,
            value=self._serializer.dumps({"op": operator}),
            max_age=self.max_age,
            httponly=True,
            secure=False,
            samesite="Lax",
            path="/",
        )

    @staticmethod
    def end(response: Response) -> None:
        response.delete_cookie(SESSION_COOKIE, path="/")

    def operator_for(self, token: Optional[str]) -> str:
        if not token:
            raise _unauthorized("Not authenticated")
        try:
            data = self._serializer.loads(token, max_age=self.max_age)
        except SignatureExpired:
            raise _unauthorized("Session expired")
        except BadSignature:
            raise _unauthorized("Invalid session")
        operator = data.get("op") if isinstance(data, dict) else None
        if not operator:
            raise _unauthorized("Invalid session")
        return operator


sessions = OperatorSessions(settings.secret_key, settings.session_hours)


def current_operator(mfg_session: Optional[str] = Cookie(default=None, alias=SESSION_COOKIE)) -> str:
    operator = sessions.operator_for(mfg_session)
    # A session outlives neither its operator nor a re-enrollment under another name
    enrolled = get_operator_store().current()
    if enrolled is None or enrolled.name != operator:
        raise _unauthorized("Operator no longer enrolled")
    return operator
