"""
WireGuard keypair generation and key material loading.

This module provides functionality for:
- Generating X25519 private keys and deriving their public keys
- Generating keys with the `wg` tool when it is preferred
- Loading the server public key written by the server installer
- Validating key formats

Keys are stored in base64 format as per WireGuard conventions.
"""

import base64
import logging
import subprocess
from pathlib import Path

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PrivateKey

logger = logging.getLogger(__name__)


class WireGuardKeyError(Exception):
    """Custom exception for WireGuard key operations."""
    pass


def generate_private_key() -> str:
    """
    Generate a new X25519 private key.

    Returns:
        str: Base64-encoded private key (44 characters)
    """
    private_key_bytes = X25519PrivateKey.generate().private_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PrivateFormat.Raw,
        encryption_algorithm=serialization.NoEncryption()
    )
    return base64.b64encode(private_key_bytes).decode('ascii')


def get_public_key_from_private(private_key: str) -> str:
    """
    Derive the public key from a private key.

    Args:
        private_key: Base64-encoded X25519 private key

    Returns:
        str: Base64-encoded X25519 public key

    Raises:
        WireGuardKeyError: If the private key is invalid
    """
    try:
        private_key_bytes = base64.b64decode(private_key, validate=True)
    except (ValueError, TypeError) as e:
        raise WireGuardKeyError(f"Invalid private key format: {str(e)}")

    # X25519 keys are 32 bytes
    if len(private_key_bytes) != 32:
        raise WireGuardKeyError(
            f"Invalid private key length: expected 32 bytes, got {len(private_key_bytes)}"
        )

    public_key_bytes = X25519PrivateKey.from_private_bytes(private_key_bytes).public_key().public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw
    )
    return base64.b64encode(public_key_bytes).decode('ascii')


class CryptographyKeyGenerator:
    """Key primitive backed by the cryptography package"""

    def generate_private_key(self) -> str:
        return generate_private_key()

    def derive_public_key(self, private_key: str) -> str:
        return get_public_key_from_private(private_key)


class WgToolKeyGenerator:
    """
    Key primitive backed by the `wg genkey` / `wg pubkey` commands

    Attributes:
        wg_binary: Name or path of the wg executable
        timeout: Seconds to wait for each command
    """

    def __init__(self, wg_binary: str = "wg", timeout: float = 5.0):
        self.wg_binary = wg_binary
        self.timeout = timeout

    def _run(self, args, stdin: str = None) -> str:
        try:
            result = subprocess.run(
                [self.wg_binary, *args],
                input=stdin,
                capture_output=True,
                text=True,
                check=True,
                timeout=self.timeout,
            )
        except FileNotFoundError:
            raise WireGuardKeyError(f"{self.wg_binary} command not found")
        except subprocess.CalledProcessError as e:
            raise WireGuardKeyError(f"{self.wg_binary} {args[0]} failed: {e.stderr.strip()}")
        except subprocess.TimeoutExpired:
            raise WireGuardKeyError(f"{self.wg_binary} {args[0]} timed out")
        except OSError as e:
            raise WireGuardKeyError(f"Cannot run {self.wg_binary} {args[0]}: {e}")
        except UnicodeDecodeError as e:
            raise WireGuardKeyError(f"{self.wg_binary} {args[0]} returned undecodable output: {e}")
        return result.stdout.strip()

    def generate_private_key(self) -> str:
        return self._run(["genkey"])

    def derive_public_key(self, private_key: str) -> str:
        return self._run(["pubkey"], stdin=private_key)


def load_public_key(file_path) -> str:
    """
    Load a public key from a file.

    Args:
        file_path: Path to the key file

    Returns:
        str: Base64-encoded public key

    Raises:
        WireGuardKeyError: If the file is missing, unreadable or malformed
    """
    path = Path(file_path)

    if not path.is_file():
        raise WireGuardKeyError(f"Public key file not found: {file_path}")

    try:
        public_key = path.read_text(encoding='utf-8').strip()
    except OSError as e:
        raise WireGuardKeyError(f"Failed to read public key: {str(e)}")

    if not validate_public_key_format(public_key):
        raise WireGuardKeyError(f"Malformed public key in {file_path}")

    return public_key


def validate_public_key_format(public_key) -> bool:
    """
    Validate that a public key matches the WireGuard base64 format.

    Args:
        public_key: Public key to validate (can be None)

    Returns:
        bool: True if valid, False otherwise
    """
    if public_key is None or not isinstance(public_key, str):
        return False

    if len(public_key) != 44:
        return False

    try:
        return len(base64.b64decode(public_key, validate=True)) == 32
    except ValueError:
        return False


def validate_private_key_format(private_key) -> bool:
    """
    Validate that a private key matches the WireGuard base64 format.

    Args:
        private_key: Private key to validate (can be None)

    Returns:
        bool: True if valid, False otherwise
    """
    if not validate_public_key_format(private_key):
        return False

    try:
        X25519PrivateKey.from_private_bytes(base64.b64decode(private_key))
    except ValueError:
        return False
    return True
