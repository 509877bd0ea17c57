"""
Provisioning Exceptions

Error taxonomy for bulk WireGuard peer provisioning.

Per-item errors carry a FailureReason so the orchestrator can record them
on the item's result and continue with the batch. StoreUnavailableError and
NotifyConfigInvalidError are fatal to the batch and to the notification
phase respectively.
"""

from typing import Optional

from wgbulk.models.wireguard.provisioning import FailureReason


class ProvisioningError(Exception):
    """Base exception for provisioning errors"""

    reason: Optional[FailureReason] = None


class InvalidIdentityError(ProvisioningError):
    """Raised when an identity does not have the user@domain.tld shape"""

    reason = FailureReason.INVALID_IDENTITY

    def __init__(self, identity: str):
        self.identity = identity
        super().__init__(f"Invalid identity format: {identity!r}")


class PoolExhaustedError(ProvisioningError):
    """Raised when the address pool has no free host left"""

    reason = FailureReason.POOL_EXHAUSTED

    def __init__(self, pool_range: str, allocated_count: int):
        self.pool_range = pool_range
        self.allocated_count = allocated_count
        super().__init__(
            f"IP pool exhausted: {allocated_count} addresses allocated "
            f"from range {pool_range}"
        )


class InvalidAddressError(ProvisioningError):
    """Raised when an address fails pool validation"""

    reason = FailureReason.INVALID_ADDRESS


class KeyGenerationError(ProvisioningError):
    """Raised when the key primitive returns nothing usable"""

    reason = FailureReason.KEYGEN_FAILURE


class ProfileWriteError(ProvisioningError):
    """Raised when a client profile cannot be written to the registry"""

    reason = FailureReason.PROFILE_WRITE_FAILURE


class StoreAppendError(ProvisioningError):
    """Raised when a peer block cannot be persisted to the config store"""

    reason = FailureReason.STORE_APPEND_FAILURE


class DuplicatePeerError(ProvisioningError):
    """Raised when a public key or address is already present in the store"""

    def __init__(self, public_key: str, detail: str = ""):
        self.public_key = public_key
        super().__init__(
            detail or f"Peer with public key {public_key[:16]}... already exists"
        )


class StoreUnavailableError(ProvisioningError):
    """Raised when the config store or server key material cannot be loaded"""
    pass


class NotifyConfigInvalidError(ProvisioningError):
    """Raised when notification preconditions are not met"""
    pass
