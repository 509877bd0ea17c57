"""
WireGuard Networking Package

Key material and configuration file formats for peer provisioning.
"""

from wgbulk.networking.wireguard_config import (
    ClientInterface,
    ClientProfile,
    ServerConfig,
    ServerPeer,
    StoredPeer,
    parse_server_config,
)

from wgbulk.networking.wireguard_keys import (
    CryptographyKeyGenerator,
    WgToolKeyGenerator,
    WireGuardKeyError,
    get_public_key_from_private,
    load_public_key,
)

__all__ = [
    "ClientInterface",
    "ClientProfile",
    "ServerConfig",
    "ServerPeer",
    "StoredPeer",
    "parse_server_config",
    "CryptographyKeyGenerator",
    "WgToolKeyGenerator",
    "WireGuardKeyError",
    "get_public_key_from_private",
    "load_public_key",
]
