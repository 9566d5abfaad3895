from __future__ import annotations

import logging
import os
import shlex
from typing import Dict, List, Optional, Tuple

from ..config import settings
from ..models.report import OperationResult, Phase
from ..models.topology import DriverSpec
from .commands import CommandRunner
from .errors import ExternalCommandFailure
from .kernel_modules import KernelModuleHost


log = logging.getLogger(__name__)

# Tried in order; the first one present on PATH is used
PACKAGE_MANAGERS: List[Tuple[str, List[str]]] = [
    ("apt-get", ["apt-get", "install", "-y"]),
    ("dnf", ["dnf", "install", "-y"]),
    ("pacman", ["pacman", "-S", "--noconfirm", "--needed"]),
    ("zypper", ["zypper", "--non-interactive", "install"]),
]


def parse_dkms_conf(path: str) -> Dict[str, str]:
    values: Dict[str, str] = {}
    with open(path, "r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            key, _, raw = line.partition("=")
            try:
                tokens = shlex.split(raw, comments=True)
            except ValueError:
                continue
            values[key.strip()] = tokens[0] if tokens else ""
    return values


def _repo_dir_name(repo: str) -> str:
    name = repo.rstrip("/").rsplit("/", 1)[-1]
    return name[:-4] if name.endswith(".git") else name


class DriverResolver:
    """Replaces a conflicting kernel WiFi module with the requested one."""

    def __init__(
        self,
        modules: Optional[KernelModuleHost] = None,
        runner: Optional[CommandRunner] = None,
        build_dir: Optional[str] = None,
        build_timeout: Optional[float] = None,
    ) -> None:
        self._runner = runner or CommandRunner()
        self._modules = modules or KernelModuleHost(self._runner)
        self._build_dir = build_dir or settings.driver_build_dir
        self._build_timeout = build_timeout if build_timeout is not None else settings.build_timeout

    def resolve(self, spec: Optional[DriverSpec]) -> OperationResult:
        if spec is None:
            return OperationResult.satisfied(Phase.DRIVER, "-", "no driver requested")
        target = spec.driver_name
        try:
            if self._modules.is_loaded(target):
                return OperationResult.satisfied(Phase.DRIVER, target, "module already loaded")

            conflict = spec.conflicting_driver
            if conflict:
                self._unload_conflict(conflict)

            method = self._install(spec)
            self._modules.load(target)
            self._modules.persist_autoload(target)
            if conflict:
                self._modules.blacklist(conflict)
        except (ExternalCommandFailure, OSError) as exc:
            log.error("driver %s: %s", target, exc)
            return OperationResult.failed(Phase.DRIVER, target, str(exc))
        log.info("driver %s installed via %s and loaded", target, method)
        return OperationResult.applied(Phase.DRIVER, target, f"installed via {method}")

    def _unload_conflict(self, name: str) -> None:
        if not self._modules.is_loaded(name):
            log.info("conflicting driver %s not loaded, skipping unload", name)
            return
        try:
            self._modules.unload(name)
            log.info("conflicting driver %s unloaded", name)
        except ExternalCommandFailure as exc:
            log.warning("could not unload conflicting driver %s: %s", name, exc)

    def _install(self, spec: DriverSpec) -> str:
        src = self._fetch_source(spec.source_repo) if spec.source_repo else None
        if src and os.path.isfile(os.path.join(src, "dkms.conf")):
            self._install_dkms(src)
            return "dkms"
        if src and any(os.path.isfile(os.path.join(src, n)) for n in ("Makefile", "makefile", "GNUmakefile")):
            self._install_make(src)
            return "make"
        self._install_package(spec.package_name or spec.driver_name)
        return "package"

    def _fetch_source(self, repo: str) -> str:
        dest = os.path.join(self._build_dir, _repo_dir_name(repo))
        if os.path.isdir(os.path.join(dest, ".git")):
            log.info("reusing driver source checkout %s", dest)
            return dest
        os.makedirs(self._build_dir, exist_ok=True)
        log.info("cloning %s into %s", repo, dest)
        self._runner.run(["git", "clone", "--depth", "1", repo, dest], timeout=self._build_timeout)
        return dest

    def _install_dkms(self, src: str) -> None:
        conf = parse_dkms_conf(os.path.join(src, "dkms.conf"))
        name = conf.get("PACKAGE_NAME")
        version = conf.get("PACKAGE_VERSION")
        if not name or not version:
            raise ExternalCommandFailure(f"dkms.conf in {src} lacks PACKAGE_NAME/PACKAGE_VERSION")
        added = self._runner.run(["dkms", "add", src], check=False, timeout=self._build_timeout)
        if not added.ok and "already" not in added.output.lower():
            raise ExternalCommandFailure("dkms add failed", added.argv, added.returncode, added.output)
        self._runner.run(["dkms", "build", "-m", name, "-v", version], timeout=self._build_timeout)
        installed = self._runner.run(["dkms", "install", "-m", name, "-v", version], check=False,
                                     timeout=self._build_timeout)
        if not installed.ok and "already installed" not in installed.output.lower():
            raise ExternalCommandFailure("dkms install failed", installed.argv, installed.returncode,
                                         installed.output)

    def _install_make(self, src: str) -> None:
        jobs = str(os.cpu_count() or 1)
        self._runner.run(["make", "-C", src, f"-j{jobs}"], timeout=self._build_timeout)
        self._runner.run(["make", "-C", src, "install"], timeout=self._build_timeout)

    def _install_package(self, package: str) -> None:
        for binary, argv in PACKAGE_MANAGERS:
            if self._runner.which(binary):
                self._runner.run([*argv, package], timeout=self._build_timeout)
                return
        raise ExternalCommandFailure(f"no supported package manager found to install {package}")
