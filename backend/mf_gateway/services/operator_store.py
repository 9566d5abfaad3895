from __future__ import annotations

import hmac
import json
import logging
import os
from dataclasses import dataclass
from typing import Optional

import bcrypt

from ..config import settings
from ..utils.paths import get_app_data_dir, write_private_file
from .errors import ConflictError, ValidationError


log = logging.getLogger(__name__)

OPERATOR_FILE = "operator.json"
MIN_PASSWORD = 10


@dataclass
class Operator:
    name: str
    password_hash: str


def hash_password(password_plain: str) -> str:
    return bcrypt.hashpw(password_plain.encode(), bcrypt.gensalt()).decode()


class OperatorStore:
    """The one account allowed to apply or tear down the gateway over HTTP.

    An operator provisioned through ``OPERATOR_NAME``/``OPERATOR_PASSWORD_HASH``
    takes precedence over an enrolled one and cannot be replaced.
    """

    def __init__(self, directory: Optional[str] = None) -> None:
        self._dir = directory or get_app_data_dir()
        os.makedirs(self._dir, exist_ok=True)
        self._path = os.path.join(self._dir, OPERATOR_FILE)

    @property
    def provisioned(self) -> bool:
        return bool(settings.operator_name and settings.operator_password_hash)

    def current(self) -> Optional[Operator]:
        if self.provisioned:
            return Operator(settings.operator_name, settings.operator_password_hash)
        if not os.path.exists(self._path):
            return None
        with open(self._path, "r", encoding="utf-8") as f:
            try:
                data = json.load(f)
            except json.JSONDecodeError:
                log.warning("ignoring unreadable %s", self._path)
                return None
        if not data.get("name") or not data.get("password_hash"):
            return None
        return Operator(data["name"], data["password_hash"])

    def enroll(self, name: str, password_plain: str, replace: bool = False) -> Operator:
        name = name.strip()
        if not name:
            raise ValidationError("operator name is empty", "name")
        if len(password_plain) < MIN_PASSWORD:
            raise ValidationError(f"password must be at least {MIN_PASSWORD} characters", "password")
        if self.provisioned:
            raise ConflictError("operator is provisioned from the environment", "name")
        if not replace and self.current() is not None:
            raise ConflictError("an operator is already enrolled", "name")
        operator = Operator(name, hash_password(password_plain))
        write_private_file(self._path, json.dumps({"name": operator.name, "password_hash": operator.password_hash}))
        log.info("operator %s enrolled", operator.name)
        return operator

    def authenticate(self, name: str, password_plain: str) -> Optional[str]:
        """Returns the operator name when the credentials match, else None."""
        operator = self.current()
        if operator is None or not hmac.compare_digest(name.encode(), operator.name.encode()):
            return None
        try:
            matched = bcrypt.checkpw(password_plain.encode(), operator.password_hash.encode())
        except ValueError:
            log.error("stored password hash for %s is malformed", operator.name)
            return None
        return operator.name if matched else None


_store: Optional[OperatorStore] = None


def get_operator_store() -> OperatorStore:
    global _store
    if _store is None:
        _store = OperatorStore()
    return _store
