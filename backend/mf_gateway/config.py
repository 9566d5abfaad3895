from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from typing import Optional


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_data_dir: str = Field("/var/lib/mf-gateway", alias="APP_DATA_DIR")
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_file: Optional[str] = Field(None, alias="LOG_FILE")

    # Deadlines (seconds) for external commands
    command_timeout: float = Field(60.0, alias="COMMAND_TIMEOUT")
    build_timeout: float = Field(900.0, alias="BUILD_TIMEOUT")

    # Kernel module persistence
    modules_file: str = Field("/etc/modules", alias="MODULES_FILE")
    blacklist_file: str = Field("/etc/modprobe.d/blacklist-mf-gateway.conf", alias="BLACKLIST_FILE")
    driver_build_dir: str = Field("/usr/src/mf-gateway", alias="DRIVER_BUILD_DIR")

    # Tunnel integration
    sysctl_conf: str = Field("/etc/sysctl.d/99-mf-gateway.conf", alias="SYSCTL_CONF")
    wireguard_dir: str = Field("/etc/wireguard", alias="WIREGUARD_DIR")
    openvpn_dir: str = Field("/etc/openvpn/client", alias="OPENVPN_DIR")
    vpn_kill_switch: bool = Field(True, alias="VPN_KILL_SWITCH")

    parallel_access_points: bool = Field(False, alias="PARALLEL_ACCESS_POINTS")
    topology_file: str = Field("./mf-gateway.conf", alias="TOPOLOGY_FILE")

    host: str = Field("127.0.0.1", alias="HOST")
    port: int = Field(8080, alias="PORT")
    secret_key: str | None = Field(None, alias="SECRET_KEY")
    session_hours: int = Field(12, alias="SESSION_HOURS")

    # Operator account provisioned out of band (bcrypt hash)
    operator_name: str | None = Field(None, alias="OPERATOR_NAME")
    operator_password_hash: str | None = Field(None, alias="OPERATOR_PASSWORD_HASH")


settings = Settings()
