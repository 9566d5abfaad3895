from __future__ import annotations

import os
from typing import Union

from ..config import settings


def get_app_data_dir() -> str:
    desired = settings.app_data_dir
    try:
        os.makedirs(desired, exist_ok=True)
        # Try write test
        test_path = os.path.join(desired, ".wtest")
        with open(test_path, "w", encoding="utf-8") as f:
            f.write("ok")
        os.remove(test_path)
        return desired
    except OSError:
        # Not root: fall back to the invoking user's home directory
        home_fallback = os.path.expanduser("~/.mf-gateway/data")
        os.makedirs(home_fallback, exist_ok=True)
        return home_fallback


def append_line_once(path: str, line: str) -> bool:
    """Append ``line`` to ``path`` unless an identical line is already present.

    Returns True when the file was changed.
    """
    wanted = line.strip()
    if os.path.exists(path):
        with open(path, "r", encoding="utf-8") as f:
            existing = f.read()
        if wanted in (l.strip() for l in existing.splitlines()):
            return False
        prefix = "" if not existing or existing.endswith("\n") else "\n"
    else:
        parent = os.path.dirname(path)
        if parent:
            os.makedirs(parent, exist_ok=True)
        prefix = ""
    with open(path, "a", encoding="utf-8") as f:
        f.write(f"{prefix}{wanted}\n")
    return True


def write_private_file(path: str, data: Union[str, bytes]) -> None:
    # Atomic replace; the file is never readable by other users
    parent = os.path.dirname(path)
    if parent:
        os.makedirs(parent, exist_ok=True)
    tmp = path + ".tmp"
    fd = os.open(tmp, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    payload = data.encode("utf-8") if isinstance(data, str) else data
    with os.fdopen(fd, "wb") as f:
        f.write(payload)
    os.replace(tmp, path)
    os.chmod(path, 0o600)
