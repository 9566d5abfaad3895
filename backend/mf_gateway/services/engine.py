from __future__ import annotations

import threading
from typing import Optional

from .commands import CommandRunner
from .connection_manager import ConnectionManagerClient, NmcliConnectionManager
from .driver_resolver import DriverResolver
from .kernel_modules import KernelModuleHost
from .netfilter import Netfilter
from .orchestrator import ReconciliationOrchestrator
from .vpn_layer import VpnLayer


# Whole runs never interleave, whichever surface started them
run_lock = threading.Lock()

_client: Optional[ConnectionManagerClient] = None


def get_client() -> ConnectionManagerClient:
    global _client
    if _client is None:
        _client = NmcliConnectionManager(CommandRunner())
    return _client


def build_orchestrator(client: Optional[ConnectionManagerClient] = None) -> ReconciliationOrchestrator:
    runner = CommandRunner()
    return ReconciliationOrchestrator(
        client or get_client(),
        driver_resolver=DriverResolver(KernelModuleHost(runner), runner),
        vpn_layer=VpnLayer(runner),
    )


def build_netfilter() -> Netfilter:
    return Netfilter(CommandRunner())
