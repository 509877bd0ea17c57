"""
WireGuard Configuration Manager

Treats the server configuration file as the durable peer store: the single
source of truth for which peers, keys and addresses exist.

Security considerations:
- Config file permissions: 0600 (owner read/write only)
- Atomic config updates (write to temp, then replace) to prevent corruption
- Duplicate keys and addresses are rejected, never merged
- Advisory lock so two provisioning runs cannot interleave appends
"""

import fcntl
import logging
import os
import subprocess
import tempfile
from contextlib import contextmanager
from ipaddress import IPv4Address
from pathlib import Path
from typing import Iterator, List, Optional, Set

from wgbulk.models.wireguard.provisioning import PeerRecord
from wgbulk.networking.wireguard_config import (
    ServerConfig,
    StoredPeer,
    parse_server_config,
)
from wgbulk.services.exceptions import (
    DuplicatePeerError,
    StoreAppendError,
    StoreUnavailableError,
)
from wgbulk.services.ip_pool_manager import AddressPool

logger = logging.getLogger(__name__)


class WireGuardConfigManager:
    """
    WireGuard server configuration store

    The file is read fully by load(); afterwards the parsed view is kept in
    memory and updated by every successful append_peer(), so address and
    duplicate queries see peers added earlier in the same batch.

    Attributes:
        config_path: Path to WireGuard configuration file
        reload_command: Command that applies the configuration to the service
    """

    def __init__(
        self,
        config_path: str = "/etc/wireguard/wg0.conf",
        reload_command: Optional[List[str]] = None,
        reload_timeout: float = 30.0
    ):
        """
        Initialize config manager

        Args:
            config_path: Path to WireGuard config file
            reload_command: Command run by reload_service(); defaults to
                restarting wg-quick for the interface named by the file
            reload_timeout: Seconds to wait for the reload command
        """
        self.config_path = Path(config_path)
        interface = self.config_path.stem  # e.g., "wg0" from "wg0.conf"
        self.reload_command = reload_command or [
            "systemctl", "restart", f"wg-quick@{interface}"
        ]
        self.reload_timeout = reload_timeout
        self._config: Optional[ServerConfig] = None
        self._pool: Optional[AddressPool] = None

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def _read_config(self) -> str:
        """
        Read configuration file

        Raises:
            StoreUnavailableError: If the file is missing or unreadable
        """
        try:
            return self.config_path.read_text()
        except FileNotFoundError:
            raise StoreUnavailableError(
                f"WireGuard configuration file not found: {self.config_path}. "
                f"Please run the server installation first."
            )
        except (OSError, UnicodeDecodeError) as e:
            logger.error(f"Cannot read config {self.config_path}: {e}")
            raise StoreUnavailableError(f"Cannot read {self.config_path}: {e}")

    def load(self) -> ServerConfig:
        """
        Read and parse the store

        Returns:
            Parsed server configuration

        Raises:
            StoreUnavailableError: If the file is missing, unreadable, has no
                interface Address, or contains an incomplete peer block
        """
        config = parse_server_config(self._read_config())

        address = config.address
        if address is None:
            raise StoreUnavailableError(
                f"Could not extract server IP from {self.config_path}"
            )

        for index, peer in enumerate(config.peers, start=1):
            if not peer.public_key or not peer.allowed_ips:
                raise StoreUnavailableError(
                    f"Peer block #{index} in {self.config_path} is missing "
                    f"PublicKey or AllowedIPs"
                )

        try:
            pool = AddressPool(address.network, gateway=address.ip)
        except ValueError as e:
            raise StoreUnavailableError(f"Unusable server address {address}: {e}")

        self._config = config
        self._pool = pool

        logger.debug(f"Server IP: {address.ip}")
        logger.debug(f"VPN Network: {address.network}")
        logger.info(
            f"Loaded {self.config_path} with {len(config.peers)} peer(s)"
        )
        return config

    def _require_loaded(self) -> ServerConfig:
        if self._config is None:
            raise StoreUnavailableError("Config store has not been loaded")
        return self._config

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def pool(self) -> AddressPool:
        self._require_loaded()
        return self._pool

    @property
    def peers(self) -> List[StoredPeer]:
        return list(self._require_loaded().peers)

    @property
    def dns_servers(self) -> List[str]:
        return self._require_loaded().dns

    def load_peer_addresses(self) -> Set[IPv4Address]:
        """
        Addresses referenced by peer blocks inside the pool network

        Returns:
            Set of used IPv4 addresses
        """
        config = self._require_loaded()
        network = self._pool.network
        return {
            ip
            for peer in config.peers
            for ip in peer.addresses()
            if ip in network
        }

    def has_peer(self, public_key: str) -> bool:
        """Duplicate detection by exact public key match"""
        return any(p.public_key == public_key for p in self.peers)

    def has_peer_named(self, name: str) -> bool:
        """Whether a peer block carries this identifying comment"""
        return any(p.name == name for p in self.peers)

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def _write_config(self, content: str) -> None:
        """
        Write configuration file atomically

        Uses atomic write (write to temp, then replace) to prevent corruption.

        Args:
            content: Config file contents
        """
        temp_fd, temp_path = tempfile.mkstemp(
            dir=self.config_path.parent,
            prefix=".wg_",
            suffix=".conf.tmp"
        )

        try:
            with os.fdopen(temp_fd, 'w') as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())

            # Owner read/write only
            os.chmod(temp_path, 0o600)

            os.replace(temp_path, self.config_path)

            logger.debug(f"Updated config file: {self.config_path}")

        except BaseException:
            try:
                os.unlink(temp_path)
            except FileNotFoundError:
                pass
            raise

    def append_peer(self, record: PeerRecord) -> None:
        """
        Append a peer block to the store

        Reads the current file, appends the block and replaces the file in
        one step; the in-memory view is updated only after the write lands.

        Args:
            record: Peer to register

        Raises:
            DuplicatePeerError: If the key or address is already registered
            StoreAppendError: If the file cannot be read or replaced
        """
        config = self._require_loaded()

        if any(p.public_key == record.public_key for p in config.peers):
            raise DuplicatePeerError(record.public_key)

        if any(record.address in p.addresses() for p in config.peers):
            raise DuplicatePeerError(
                record.public_key,
                f"Address {record.address} is already assigned in {self.config_path}"
            )

        try:
            current_config = self.config_path.read_text()
        except OSError as e:
            raise StoreAppendError(f"Cannot read {self.config_path}: {e}")

        if current_config and not current_config.endswith("\n"):
            current_config += "\n"
        separator = "\n" if current_config and not current_config.endswith("\n\n") else ""

        new_config = current_config + separator + record.to_config_section() + "\n"

        try:
            self._write_config(new_config)
        except OSError as e:
            logger.error(f"Failed to append peer {record.name}: {e}")
            raise StoreAppendError(f"Cannot write {self.config_path}: {e}")

        config.peers.append(StoredPeer(
            name=record.name,
            public_key=record.public_key,
            allowed_ips=[f"{record.address}/32"],
        ))

        logger.info(f"Added peer {record.name} ({record.address}) to config")

    @contextmanager
    def lock(self) -> Iterator[None]:
        """
        Hold an exclusive advisory lock on the store for the mutation phase

        Raises:
            StoreUnavailableError: If another provisioning run holds the lock
        """
        lock_path = self.config_path.with_name(f".{self.config_path.name}.lock")
        try:
            fd = os.open(str(lock_path), os.O_RDWR | os.O_CREAT, 0o600)
        except OSError as e:
            raise StoreUnavailableError(f"Cannot create lock file {lock_path}: {e}")

        try:
            try:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
            except BlockingIOError:
                raise StoreUnavailableError(
                    f"{self.config_path} is locked by another provisioning run"
                )
            try:
                yield
            finally:
                fcntl.flock(fd, fcntl.LOCK_UN)
        finally:
            os.close(fd)

    def reload_service(self) -> bool:
        """
        Apply the configuration to the running WireGuard service

        Returns:
            True if the reload command succeeded

        Note:
            Requires root privileges in production.
        """
        try:
            result = subprocess.run(
                self.reload_command,
                capture_output=True,
                text=True,
                timeout=self.reload_timeout
            )
        except subprocess.TimeoutExpired:
            logger.error("WireGuard reload timed out")
            return False
        except FileNotFoundError:
            logger.warning(
                f"{self.reload_command[0]} command not found - skipping reload"
            )
            return False
        except OSError as e:
            logger.error(f"Error reloading WireGuard config: {e}")
            return False

        if result.returncode == 0:
            logger.info(f"Reloaded WireGuard with: {' '.join(self.reload_command)}")
            return True

        logger.error(f"Failed to reload config: {result.stderr.strip()}")
        return False
