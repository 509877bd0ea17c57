"""
WireGuard models and schemas

Pydantic models for bulk WireGuard peer provisioning.
"""

from .provisioning import (
    BatchReport,
    DispatchSummary,
    FailureReason,
    PeerRecord,
    ProvisioningResult,
    ProvisioningState,
    ProvisioningStatus,
)

__all__ = [
    "BatchReport",
    "DispatchSummary",
    "FailureReason",
    "PeerRecord",
    "ProvisioningResult",
    "ProvisioningState",
    "ProvisioningStatus",
]
