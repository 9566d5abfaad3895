from __future__ import annotations

import logging
from typing import Optional, Set

from ..config import settings
from ..utils.paths import append_line_once
from .commands import CommandRunner


log = logging.getLogger(__name__)

PROC_MODULES = "/proc/modules"


def _normalize(name: str) -> str:
    # The kernel reports module names with underscores
    return name.strip().replace("-", "_")


class KernelModuleHost:
    """Kernel module state and its persistence files on the local host."""

    def __init__(
        self,
        runner: Optional[CommandRunner] = None,
        modules_file: Optional[str] = None,
        blacklist_file: Optional[str] = None,
        proc_modules: str = PROC_MODULES,
    ) -> None:
        self._runner = runner or CommandRunner()
        self.modules_file = modules_file or settings.modules_file
        self.blacklist_file = blacklist_file or settings.blacklist_file
        self._proc_modules = proc_modules

    def loaded_modules(self) -> Set[str]:
        with open(self._proc_modules, "r", encoding="utf-8") as f:
            return {line.split()[0] for line in f if line.strip()}

    def is_loaded(self, name: str) -> bool:
        return _normalize(name) in self.loaded_modules()

    def load(self, name: str) -> None:
        self._runner.run(["modprobe", name])

    def unload(self, name: str) -> None:
        self._runner.run(["modprobe", "-r", name])

    def persist_autoload(self, name: str) -> bool:
        changed = append_line_once(self.modules_file, name)
        if changed:
            log.info("module %s added to %s", name, self.modules_file)
        return changed

    def blacklist(self, name: str) -> bool:
        changed = append_line_once(self.blacklist_file, f"blacklist {name}")
        if changed:
            log.info("module %s blacklisted in %s", name, self.blacklist_file)
        return changed
