"""
Provisioning Configuration

Settings for the bulk provisioner and the notification phase.

Paths follow the layout written by the WireGuard server installer:
    <wg_dir>/<interface>.conf    server configuration (peer store)
    <wg_dir>/server_public.key   server public key
    <wg_dir>/server_endpoint     host:port clients connect to
    <wg_dir>/clients/            generated client profiles
"""

import os
from enum import Enum
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_WG_DIR = "/etc/wireguard"
DEFAULT_INTERFACE = "wg0"
DEFAULT_DNS = "8.8.8.8"
DEFAULT_ENDPOINT = "your.server.ip.or.domain:51820"
DEFAULT_EMAIL_SUBJECT = "Your WireGuard VPN Configuration"
IMPLICIT_TLS_PORT = 465


class ProvisioningSettings(BaseModel):
    """Filesystem and profile settings for one provisioning run"""
    model_config = ConfigDict(extra="forbid")

    wg_dir: Path = Field(Path(DEFAULT_WG_DIR), description="WireGuard directory")
    interface: str = Field(DEFAULT_INTERFACE, min_length=1, description="Interface name")
    persistent_keepalive: int = Field(25, ge=0, le=3600)
    client_allowed_ips: List[str] = Field(default_factory=lambda: ["0.0.0.0/0"])
    default_dns: str = DEFAULT_DNS
    default_endpoint: str = DEFAULT_ENDPOINT
    reload_command: Optional[List[str]] = Field(
        None,
        description="Command run once after peers were added; "
                    "defaults to restarting wg-quick@<interface>"
    )

    @classmethod
    def from_env(cls, **overrides) -> "ProvisioningSettings":
        """
        Build settings from WG_DIR / WG_INTERFACE, letting explicit values win

        Args:
            **overrides: Values taken from the command line (None is ignored)
        """
        values = {
            "wg_dir": os.getenv("WG_DIR", DEFAULT_WG_DIR),
            "interface": os.getenv("WG_INTERFACE", DEFAULT_INTERFACE),
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    @property
    def config_path(self) -> Path:
        return self.wg_dir / f"{self.interface}.conf"

    @property
    def clients_dir(self) -> Path:
        return self.wg_dir / "clients"

    @property
    def server_public_key_path(self) -> Path:
        return self.wg_dir / "server_public.key"

    @property
    def server_endpoint_path(self) -> Path:
        return self.wg_dir / "server_endpoint"

    def effective_reload_command(self) -> List[str]:
        if self.reload_command:
            return list(self.reload_command)
        return ["systemctl", "restart", f"wg-quick@{self.interface}"]


class SmtpProtocol(str, Enum):
    """Transport security used for the SMTP session"""
    AUTO = "auto"
    IMPLICIT = "implicit"
    STARTTLS = "starttls"


class NotifyConfig(BaseModel):
    """SMTP settings for e-mailing client profiles"""
    model_config = ConfigDict(extra="forbid")

    smtp_server: Optional[str] = None
    smtp_port: int = Field(587, ge=1, le=65535)
    protocol: SmtpProtocol = SmtpProtocol.AUTO
    from_email: Optional[str] = None
    subject: str = DEFAULT_EMAIL_SUBJECT
    delay: float = Field(2.0, ge=0, description="Seconds to wait between sends")
    smtp_user: Optional[str] = None
    smtp_pass: Optional[str] = Field(None, repr=False)
    timeout: float = Field(30.0, gt=0)

    @classmethod
    def from_env(cls, **values) -> "NotifyConfig":
        """Fill SMTP credentials from SMTP_USER / SMTP_PASS"""
        values.setdefault("smtp_user", os.getenv("SMTP_USER") or None)
        values.setdefault("smtp_pass", os.getenv("SMTP_PASS") or None)
        return cls(**{k: v for k, v in values.items() if v is not None})

    def uses_implicit_tls(self) -> bool:
        """Port 465 implies implicit TLS unless the protocol is set explicitly"""
        if self.protocol == SmtpProtocol.AUTO:
            return self.smtp_port == IMPLICIT_TLS_PORT
        return self.protocol == SmtpProtocol.IMPLICIT

    def missing_fields(self) -> List[str]:
        missing = []
        if not self.smtp_server:
            missing.append("smtp_server")
        if not self.from_email:
            missing.append("from_email")
        if not self.smtp_user or not self.smtp_pass:
            missing.append("SMTP_USER/SMTP_PASS")
        return missing
