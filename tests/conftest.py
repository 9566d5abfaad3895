import os
import sys
import tempfile
from pathlib import Path

_THIS_DIR = Path(__file__).resolve().parent
_BACKEND = _THIS_DIR.parent / "backend"

if str(_BACKEND) not in sys.path:
    sys.path.insert(0, str(_BACKEND))
if str(_THIS_DIR) not in sys.path:
    sys.path.insert(0, str(_THIS_DIR))

# Settings are read at import time; keep every test away from /var/lib
os.environ.setdefault("APP_DATA_DIR", tempfile.mkdtemp(prefix="mf-gateway-test-"))
os.environ.setdefault("SECRET_KEY", "test-secret-key")

import pytest  # noqa: E402

from mf_gateway.models.topology import AccessPointProfile, Interface, Topology, UplinkSpec  # noqa: E402


@pytest.fixture
def home_topology() -> Topology:
    return Topology(
        uplink=UplinkSpec(ssid="Home", passphrase="secret123", interface="wlan0"),
        access_points=[
            AccessPointProfile(ssid="Guard1", passphrase="guardpass1", interface="wlan1", channel=1, band="bg"),
        ],
    )


@pytest.fixture
def observed():
    return [Interface(name="wlan0"), Interface(name="wlan1"), Interface(name="wlan2")]
