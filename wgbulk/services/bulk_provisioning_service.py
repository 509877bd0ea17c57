"""
Bulk WireGuard Peer Provisioning Service

Drives a list of identities through the provisioning workflow:

1. Sanitize identity into a peer name
2. Skip peers already registered in the server configuration
3. Allocate the lowest free address from the pool
4. Generate a client keypair
5. Write the client profile
6. Append the peer block to the server configuration
7. Reload the WireGuard service once, if anything was added

A failure moves only the current identity to the failed partition; the batch
always runs to the end. Re-running with the same input is safe: registered
peers are skipped.
"""

import logging
from typing import Iterable, List, Optional, Set, Tuple

from wgbulk.config import ProvisioningSettings
from wgbulk.models.wireguard.provisioning import (
    BatchReport,
    FailureReason,
    PeerRecord,
    ProvisioningResult,
    ProvisioningState,
    ProvisioningStatus,
)
from wgbulk.networking.wireguard_config import ClientInterface, ClientProfile, ServerPeer
from wgbulk.networking.wireguard_keys import (
    CryptographyKeyGenerator,
    WireGuardKeyError,
    get_public_key_from_private,
    load_public_key,
    validate_private_key_format,
    validate_public_key_format,
)
from wgbulk.services.exceptions import (
    DuplicatePeerError,
    InvalidAddressError,
    InvalidIdentityError,
    KeyGenerationError,
    PoolExhaustedError,
    ProfileWriteError,
    StoreAppendError,
    StoreUnavailableError,
)
from wgbulk.services.identity_sanitizer import is_valid_identity, sanitize
from wgbulk.services.ip_pool_manager import allocate, pool_stats, validate_address
from wgbulk.services.peer_registry import PeerRegistry
from wgbulk.services.wireguard_config_manager import WireGuardConfigManager

logger = logging.getLogger(__name__)


def read_identities(lines: Iterable[str]) -> List[str]:
    """Drop blank lines and '#' comments from an identity list"""
    identities = []
    for line in lines:
        entry = line.strip()
        if entry and not entry.startswith("#"):
            identities.append(entry)
    return identities


class BulkProvisioningService:
    """
    Bulk WireGuard peer provisioning service

    Attributes:
        settings: Paths and profile defaults
        config_store: Server configuration store
        registry: Client profile directory
        key_generator: Object with generate_private_key() and
            derive_public_key(private_key)
        server_public_key: Server key placed in every client profile
        server_endpoint: host:port placed in every client profile
        dns_servers: DNS servers placed in every client profile
    """

    def __init__(
        self,
        settings: ProvisioningSettings,
        config_store: Optional[WireGuardConfigManager] = None,
        registry: Optional[PeerRegistry] = None,
        key_generator=None
    ):
        self.settings = settings
        self.config_store = config_store or WireGuardConfigManager(
            config_path=str(settings.config_path),
            reload_command=settings.effective_reload_command()
        )
        self.registry = registry or PeerRegistry(settings.clients_dir)
        self.key_generator = key_generator or CryptographyKeyGenerator()

        self.server_public_key: Optional[str] = None
        self.server_endpoint: Optional[str] = None
        self.dns_servers: List[str] = []

    # ------------------------------------------------------------------
    # Batch
    # ------------------------------------------------------------------

    def prepare(self) -> None:
        """
        Load everything the batch depends on

        Raises:
            StoreUnavailableError: If the store or the server public key is
                missing or malformed
        """
        self.config_store.load()

        try:
            self.server_public_key = load_public_key(self.settings.server_public_key_path)
        except WireGuardKeyError as e:
            raise StoreUnavailableError(f"Server public key unavailable: {e}")

        self.server_endpoint = self._load_endpoint()

        self.dns_servers = self.config_store.dns_servers
        if not self.dns_servers:
            self.dns_servers = [self.settings.default_dns]
            logger.warning(
                f"DNS server not found in config, using default: {self.settings.default_dns}"
            )
        logger.debug(f"DNS Server: {', '.join(self.dns_servers)}")

        self.registry.ensure_directory()

    def _load_endpoint(self) -> str:
        path = self.settings.server_endpoint_path
        try:
            endpoint = path.read_text().strip()
        except FileNotFoundError:
            endpoint = ""
        except OSError as e:
            logger.warning(f"Cannot read {path}: {e}")
            endpoint = ""

        if not endpoint:
            endpoint = self.settings.default_endpoint
            logger.warning(
                f"Server endpoint file not found, using default: {endpoint}. "
                f"Please update the endpoint in the generated client config files."
            )
        return endpoint

    def run(self, identities: Iterable[str]) -> BatchReport:
        """
        Provision every identity in order

        Args:
            identities: Raw identities, one per entry

        Returns:
            BatchReport with succeeded, skipped and failed partitions

        Raises:
            StoreUnavailableError: Before any identity is processed, if the
                store cannot be loaded or locked
        """
        report = BatchReport()
        seen: Set[str] = set()

        with self.config_store.lock():
            self.prepare()
            for raw_identity in read_identities(identities):
                result = self.provision_one(raw_identity, seen)
                report.record(result)
            report.pool_stats = pool_stats(
                self.config_store.pool, self.config_store.load_peer_addresses()
            )

        if report.succeeded:
            logger.info("Restarting WireGuard to apply changes...")
            report.reloaded = self.config_store.reload_service()
        else:
            logger.info("No new clients were created")

        logger.info(
            f"Batch complete: {len(report.succeeded)} created, "
            f"{len(report.skipped)} skipped, {len(report.failed)} failed"
        )
        return report

    # ------------------------------------------------------------------
    # Single identity
    # ------------------------------------------------------------------

    def provision_one(self, raw_identity: str, seen: Set[str]) -> ProvisioningResult:
        """
        Run one identity through the state machine

        Args:
            raw_identity: Identity as read from input
            seen: Names already handled in this batch; updated in place

        Returns:
            Terminal result for this identity
        """
        state = ProvisioningState.PENDING
        identity = raw_identity.strip()

        # Input lines must be full e-mail addresses; sanitize() alone would
        # also accept an already-sanitized name
        if not is_valid_identity(identity):
            logger.error(f"Invalid email format: {identity}")
            error = InvalidIdentityError(identity)
            return self._failed(identity, error.reason, str(error))

        name = sanitize(identity)
        recipient = identity
        state = self._advance(name, state, ProvisioningState.SANITIZED)

        if name in seen:
            logger.warning(f"Client '{name}' appears twice in this batch, skipping")
            return self._skipped(name, "Duplicate name in this batch", recipient)
        seen.add(name)

        if self.config_store.has_peer_named(name):
            if not self.registry.exists(name):
                logger.warning(
                    f"Client '{name}' is registered but its profile is missing; "
                    f"it cannot be regenerated without the private key"
                )
            else:
                logger.warning(f"Client '{name}' already exists, skipping")
            return self._skipped(name, "Already registered", recipient)

        if self.registry.exists(name):
            if self._profile_key_registered(name):
                logger.warning(
                    f"Client '{name}' already exists under another comment, skipping"
                )
                return self._skipped(name, "Profile key already registered", recipient)
            logger.warning(
                f"Profile for '{name}' exists but the peer is not registered; "
                f"regenerating it"
            )

        pool = self.config_store.pool
        try:
            address = validate_address(
                pool, allocate(pool, self.config_store.load_peer_addresses())
            )
            state = self._advance(name, state, ProvisioningState.ADDRESS_ALLOCATED)

            private_key, public_key = self._generate_keys()
            state = self._advance(name, state, ProvisioningState.KEY_GENERATED)
        except (PoolExhaustedError, InvalidAddressError, KeyGenerationError) as e:
            logger.error(f"Failed to provision {name}: {e}")
            return self._failed(name, e.reason, str(e), recipient)

        if self.config_store.has_peer(public_key):
            logger.warning(f"Client {name} already exists in WireGuard config, skipping")
            return self._skipped(name, "Public key already registered", recipient)

        profile = self._build_profile(name, private_key, address)
        try:
            profile_path = self.registry.write(profile)
        except ProfileWriteError as e:
            logger.error(f"Failed to write profile for {name}: {e}")
            return self._failed(name, e.reason, str(e), recipient)
        state = self._advance(name, state, ProvisioningState.PROFILE_WRITTEN)

        record = PeerRecord(name=name, public_key=public_key, address=address)
        try:
            self.config_store.append_peer(record)
        except DuplicatePeerError as e:
            self.registry.remove(name)
            logger.warning(f"Client {name} already exists in WireGuard config, skipping")
            return self._skipped(name, str(e), recipient)
        except StoreAppendError as e:
            self.registry.remove(name)
            logger.error(f"Failed to register {name}: {e}")
            return self._failed(name, e.reason, str(e), recipient)
        state = self._advance(name, state, ProvisioningState.REGISTRY_APPENDED)

        self._advance(name, state, ProvisioningState.DONE)
        logger.info(f"Created client: {name} with IP: {address}")

        return ProvisioningResult(
            name=name,
            status=ProvisioningStatus.SUCCESS,
            address=address,
            profile_path=profile_path,
            recipient=recipient,
        )

    def _generate_keys(self) -> Tuple[str, str]:
        """
        Call the key primitive: generate a private key, derive its public key

        Raises:
            KeyGenerationError: On empty output, malformed keys or any error
                raised by the key generator
        """
        try:
            private_key = (self.key_generator.generate_private_key() or "").strip()
        except Exception as e:
            raise KeyGenerationError(f"Private key generation failed: {e}")
        if not private_key:
            raise KeyGenerationError("Key generation returned an empty private key")

        try:
            public_key = (self.key_generator.derive_public_key(private_key) or "").strip()
        except Exception as e:
            raise KeyGenerationError(f"Public key derivation failed: {e}")
        if not public_key:
            raise KeyGenerationError("Key derivation returned an empty public key")

        if not validate_private_key_format(private_key) or not validate_public_key_format(public_key):
            raise KeyGenerationError("Key generation returned malformed key material")

        return private_key, public_key

    def _profile_key_registered(self, name: str) -> bool:
        """Whether the key in an existing profile belongs to a registered peer"""
        private_key = self.registry.read_private_key(name)
        if private_key is None:
            return False
        try:
            public_key = get_public_key_from_private(private_key)
        except WireGuardKeyError as e:
            logger.warning(f"Profile for '{name}' holds an unusable private key: {e}")
            return False
        return self.config_store.has_peer(public_key)

    def _build_profile(self, name: str, private_key: str, address) -> ClientProfile:
        prefix = self.config_store.pool.network.prefixlen
        return ClientProfile(
            name=name,
            interface=ClientInterface(
                private_key=private_key,
                address=f"{address}/{prefix}",
                dns=self.dns_servers,
            ),
            server=ServerPeer(
                public_key=self.server_public_key,
                endpoint=self.server_endpoint,
                allowed_ips=self.settings.client_allowed_ips,
                persistent_keepalive=self.settings.persistent_keepalive,
            ),
        )

    @staticmethod
    def _advance(name: str, current: ProvisioningState, target: ProvisioningState) -> ProvisioningState:
        logger.debug(f"{name}: {current.value} -> {target.value}")
        return target

    @staticmethod
    def _failed(
        name: str,
        reason: FailureReason,
        detail: str,
        recipient: Optional[str] = None
    ) -> ProvisioningResult:
        return ProvisioningResult(
            name=name,
            status=ProvisioningStatus.FAILED,
            reason=reason,
            detail=detail,
            recipient=recipient,
        )

    @staticmethod
    def _skipped(name: str, detail: str, recipient: Optional[str]) -> ProvisioningResult:
        return ProvisioningResult(
            name=name,
            status=ProvisioningStatus.SKIPPED,
            detail=detail,
            recipient=recipient,
        )
