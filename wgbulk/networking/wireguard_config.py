"""
WireGuard Configuration Schema

Models for the two WireGuard file formats this tool touches:
- the client profile handed to each user (written once per peer)
- the server configuration, parsed into its interface header and peer blocks
"""

import base64
from ipaddress import AddressValueError, IPv4Address, IPv4Interface, IPv4Network
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.types import conint


def _check_key(v: str, label: str) -> str:
    if len(v) != 44:
        raise ValueError(f"{label} must be 44 characters (base64 encoded)")
    try:
        decoded = base64.b64decode(v, validate=True)
    except ValueError as e:
        raise ValueError(f"Invalid base64 {label.lower()}: {e}")
    if len(decoded) != 32:
        raise ValueError(f"{label} must decode to 32 bytes")
    return v


class ClientInterface(BaseModel):
    """
    [Interface] section of a client profile
    """
    private_key: str = Field(..., description="Client private key (base64)")
    address: str = Field(..., description="Client address with prefix (e.g., 10.0.0.2/24)")
    dns: List[str] = Field(default_factory=list, description="DNS servers")

    @field_validator("private_key")
    @classmethod
    def validate_private_key(cls, v: str) -> str:
        return _check_key(v, "Private key")

    @field_validator("address")
    @classmethod
    def validate_address(cls, v: str) -> str:
        """Validate IP address with CIDR notation"""
        if "/" not in v:
            raise ValueError("Address must include CIDR notation (e.g., 10.0.0.2/24)")
        try:
            IPv4Interface(v)
        except (AddressValueError, ValueError) as e:
            raise ValueError(f"Invalid IP address format: {e}")
        return v


class ServerPeer(BaseModel):
    """
    [Peer] section of a client profile, describing the server
    """
    public_key: str = Field(..., description="Server public key (base64)")
    endpoint: str = Field(..., description="Server endpoint host:port")
    allowed_ips: List[str] = Field(default_factory=lambda: ["0.0.0.0/0"])
    persistent_keepalive: conint(ge=0, le=3600) = 25

    @field_validator("public_key")
    @classmethod
    def validate_public_key(cls, v: str) -> str:
        return _check_key(v, "Public key")

    @field_validator("allowed_ips")
    @classmethod
    def validate_allowed_ips(cls, v: List[str]) -> List[str]:
        """Validate each IP/network in allowed_ips"""
        for ip_range in v:
            try:
                if "/" in ip_range:
                    IPv4Network(ip_range)
                else:
                    IPv4Address(ip_range)
            except (AddressValueError, ValueError) as e:
                raise ValueError(f"Invalid IP range '{ip_range}': {e}")
        return v


class ClientProfile(BaseModel):
    """
    Complete client profile

    Rendered to <clients_dir>/<name>.conf and mailed to the peer's owner.
    """
    name: str
    interface: ClientInterface
    server: ServerPeer

    def to_config_file(self) -> str:
        """
        Convert profile to WireGuard config file format

        Returns:
            String representation of the client configuration file
        """
        lines = [
            "[Interface]",
            f"PrivateKey = {self.interface.private_key}",
            f"Address = {self.interface.address}",
        ]
        if self.interface.dns:
            lines.append(f"DNS = {', '.join(self.interface.dns)}")
        lines.append("")

        lines.append("[Peer]")
        lines.append(f"PublicKey = {self.server.public_key}")
        lines.append(f"Endpoint = {self.server.endpoint}")
        lines.append(f"AllowedIPs = {', '.join(self.server.allowed_ips)}")
        if self.server.persistent_keepalive > 0:
            lines.append(f"PersistentKeepalive = {self.server.persistent_keepalive}")
        lines.append("")

        return "\n".join(lines)


class StoredPeer(BaseModel):
    """A [Peer] block as found in the server configuration"""
    model_config = ConfigDict(frozen=True)

    name: Optional[str] = Field(None, description="Identifying comment above the block")
    public_key: Optional[str] = None
    allowed_ips: List[str] = Field(default_factory=list)

    def addresses(self) -> List[IPv4Address]:
        """Host addresses listed in AllowedIPs; unparseable entries are ignored"""
        result = []
        for entry in self.allowed_ips:
            try:
                result.append(IPv4Interface(entry.strip()).ip)
            except ValueError:
                continue
        return result


class ServerConfig(BaseModel):
    """
    Parsed server configuration

    Attributes:
        interface: Key/value pairs of the [Interface] header (first value wins,
            repeated keys such as PostUp are kept only in the raw text)
        peers: Peer blocks in file order
    """
    interface: Dict[str, str] = Field(default_factory=dict)
    peers: List[StoredPeer] = Field(default_factory=list)

    @property
    def address(self) -> Optional[IPv4Interface]:
        raw = self.interface.get("Address")
        if not raw:
            return None
        # Address may list several entries; the first IPv4 one defines the pool
        for entry in raw.split(","):
            try:
                return IPv4Interface(entry.strip())
            except ValueError:
                continue
        return None

    @property
    def dns(self) -> List[str]:
        raw = self.interface.get("DNS", "")
        return [entry.strip() for entry in raw.split(",") if entry.strip()]


def parse_server_config(text: str) -> ServerConfig:
    """
    Parse server configuration text

    A comment line directly above a [Peer] header names that peer.

    Args:
        text: Contents of the server configuration file

    Returns:
        ServerConfig with the interface header and every peer block
    """
    interface: Dict[str, str] = {}
    peers: List[StoredPeer] = []

    section: Optional[str] = None
    pending_comment: Optional[str] = None
    current: Optional[Dict] = None

    def flush() -> None:
        if current is not None:
            peers.append(StoredPeer(**current))

    for raw_line in text.splitlines():
        line = raw_line.strip()

        if not line:
            pending_comment = None
            continue

        if line.startswith("#"):
            pending_comment = line.lstrip("#").strip() or None
            continue

        if line.startswith("[") and line.endswith("]"):
            flush()
            current = None
            section = line[1:-1].strip().lower()
            if section == "peer":
                current = {"name": pending_comment, "allowed_ips": []}
            pending_comment = None
            continue

        pending_comment = None
        if "=" not in line:
            continue

        key, value = (part.strip() for part in line.split("=", 1))
        if section == "interface":
            interface.setdefault(key, value)
        elif section == "peer" and current is not None:
            if key == "PublicKey":
                current["public_key"] = value
            elif key == "AllowedIPs":
                current["allowed_ips"].extend(
                    entry.strip() for entry in value.split(",") if entry.strip()
                )

    flush()
    return ServerConfig(interface=interface, peers=peers)
