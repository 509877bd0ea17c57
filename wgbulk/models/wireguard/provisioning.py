"""
WireGuard Provisioning Models

Pydantic models for bulk peer provisioning: the peer record persisted to the
server configuration and the per-identity results returned by a batch.

Security considerations:
- Public keys validated for WireGuard base64 format
"""

import base64
from enum import Enum
from ipaddress import IPv4Address
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ProvisioningStatus(str, Enum):
    """Terminal state of one provisioning request"""
    SUCCESS = "success"
    SKIPPED = "skipped"
    FAILED = "failed"


class ProvisioningState(str, Enum):
    """Steps a request passes through, in order"""
    PENDING = "pending"
    SANITIZED = "sanitized"
    ADDRESS_ALLOCATED = "address_allocated"
    KEY_GENERATED = "key_generated"
    PROFILE_WRITTEN = "profile_written"
    REGISTRY_APPENDED = "registry_appended"
    DONE = "done"


class FailureReason(str, Enum):
    """Why a provisioning request ended in the failed state"""
    INVALID_IDENTITY = "invalid_identity"
    POOL_EXHAUSTED = "pool_exhausted"
    INVALID_ADDRESS = "invalid_address"
    KEYGEN_FAILURE = "keygen_failure"
    PROFILE_WRITE_FAILURE = "profile_write_failure"
    STORE_APPEND_FAILURE = "store_append_failure"


class PeerRecord(BaseModel):
    """A peer block in the server configuration"""
    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1, description="Sanitized peer name")
    public_key: str = Field(..., description="WireGuard public key (base64)")
    address: IPv4Address = Field(..., description="Assigned tunnel address")

    @field_validator("public_key")
    @classmethod
    def validate_public_key(cls, v: str) -> str:
        """Validate public key is 44 characters (base64 encoded 32 bytes)"""
        if len(v) != 44:
            raise ValueError("Public key must be 44 characters (base64 encoded)")
        try:
            decoded = base64.b64decode(v, validate=True)
        except ValueError as e:
            raise ValueError(f"Invalid base64 public key: {e}")
        if len(decoded) != 32:
            raise ValueError("Public key must decode to 32 bytes")
        return v

    def to_config_section(self) -> str:
        """
        Render the peer block appended to the server configuration

        Returns:
            Comment line, [Peer] header, PublicKey and AllowedIPs
        """
        lines = [
            f"# {self.name}",
            "[Peer]",
            f"PublicKey = {self.public_key}",
            f"AllowedIPs = {self.address}/32",
        ]
        return "\n".join(lines)


class ProvisioningResult(BaseModel):
    """Outcome of provisioning a single identity"""
    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., description="Sanitized name, or the raw identity if sanitizing failed")
    status: ProvisioningStatus
    reason: Optional[FailureReason] = None
    detail: Optional[str] = Field(None, description="Human-readable cause")
    address: Optional[IPv4Address] = None
    profile_path: Optional[Path] = None
    recipient: Optional[str] = Field(None, description="Identity the profile belongs to")


class BatchReport(BaseModel):
    """Partitioned results of one bulk provisioning run"""

    succeeded: List[ProvisioningResult] = Field(default_factory=list)
    skipped: List[ProvisioningResult] = Field(default_factory=list)
    failed: List[ProvisioningResult] = Field(default_factory=list)
    reloaded: bool = False
    pool_stats: Dict[str, int] = Field(default_factory=dict)

    def record(self, result: ProvisioningResult) -> None:
        if result.status == ProvisioningStatus.SUCCESS:
            self.succeeded.append(result)
        elif result.status == ProvisioningStatus.SKIPPED:
            self.skipped.append(result)
        else:
            self.failed.append(result)

    @property
    def total(self) -> int:
        return len(self.succeeded) + len(self.skipped) + len(self.failed)

    def exhausted_without_success(self) -> bool:
        """True when nothing succeeded and at least one item hit an exhausted pool"""
        return not self.succeeded and any(
            r.reason == FailureReason.POOL_EXHAUSTED for r in self.failed
        )


class DispatchSummary(BaseModel):
    """Counts returned by the notification phase"""

    sent: int = 0
    failed: int = 0
    failures: List[Tuple[str, str]] = Field(
        default_factory=list,
        description="(recipient, error) pairs for failed sends"
    )
