from pydantic import BaseModel, Field
from typing import List, Optional

from .topology import InterfaceMode


class InterfaceStatus(BaseModel):
    name: str
    capability: str = "wifi"
    current_mode: InterfaceMode = InterfaceMode.UNKNOWN
    is_up: bool = False
    mac_address: Optional[str] = None
    ipv4_addresses: List[str] = Field(default_factory=list)
    role: Optional[str] = None  # "uplink", "access_point", or None


class InterfacesResponse(BaseModel):
    interfaces: List[InterfaceStatus]
