from __future__ import annotations

import logging
import shutil
import subprocess
from dataclasses import dataclass
from typing import List, Optional, Sequence

from ..config import settings
from .errors import ExternalCommandFailure


log = logging.getLogger(__name__)

# Arguments following these tokens are secrets and must not reach logs
_SECRET_FLAGS = {"password", "wifi-sec.psk", "802-11-wireless-security.psk"}


def redact(argv: Sequence[str]) -> List[str]:
    out: List[str] = []
    hide_next = False
    for arg in argv:
        out.append("***" if hide_next else str(arg))
        hide_next = str(arg) in _SECRET_FLAGS
    return out


@dataclass
class CommandResult:
    argv: List[str]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> str:
        return (self.stdout or "") + (self.stderr or "")


class CommandRunner:
    """Runs external programs, each bounded by a deadline."""

    def __init__(self, timeout: Optional[float] = None) -> None:
        self.timeout = timeout if timeout is not None else settings.command_timeout

    def run(
        self,
        argv: Sequence[str],
        *,
        check: bool = True,
        timeout: Optional[float] = None,
        cwd: Optional[str] = None,
    ) -> CommandResult:
        cmd = [str(a) for a in argv]
        shown = " ".join(redact(cmd))
        deadline = timeout if timeout is not None else self.timeout
        log.debug("exec: %s", shown)
        try:
            p = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                check=False,
                timeout=deadline,
                cwd=cwd,
            )
        except FileNotFoundError:
            raise ExternalCommandFailure(f"command not found: {cmd[0]}", redact(cmd))
        except subprocess.TimeoutExpired:
            raise ExternalCommandFailure(f"timed out after {deadline:g}s: {shown}", redact(cmd))
        result = CommandResult(cmd, p.returncode, p.stdout or "", p.stderr or "")
        if check and not result.ok:
            raise ExternalCommandFailure(f"command failed: {shown}", redact(cmd), p.returncode, result.output)
        return result

    @staticmethod
    def which(name: str) -> Optional[str]:
        return shutil.which(name)
