"""
Peer Registry

Directory of client profiles, one <name>.conf per provisioned peer.

Profiles are derived artifacts: the config store decides whether a peer
exists, the registry only holds the file each user receives.
"""

import logging
import os
import tempfile
from pathlib import Path
from typing import Optional

from wgbulk.networking.wireguard_config import ClientProfile
from wgbulk.services.exceptions import ProfileWriteError

logger = logging.getLogger(__name__)


class PeerRegistry:
    """
    Client profile directory

    Attributes:
        clients_dir: Directory holding <name>.conf profiles
    """

    def __init__(self, clients_dir):
        self.clients_dir = Path(clients_dir)

    def ensure_directory(self) -> None:
        self.clients_dir.mkdir(mode=0o700, parents=True, exist_ok=True)

    def profile_path(self, name: str) -> Path:
        return self.clients_dir / f"{name}.conf"

    def exists(self, name: str) -> bool:
        return self.profile_path(name).is_file()

    def read_private_key(self, name: str) -> Optional[str]:
        """
        PrivateKey of an existing profile

        Returns:
            The key, or None if the profile is missing, unreadable or has no
            [Interface] PrivateKey line
        """
        path = self.profile_path(name)
        try:
            text = path.read_text()
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(f"Cannot read profile {path}: {e}")
            return None

        section = None
        for raw_line in text.splitlines():
            line = raw_line.strip()
            if line.startswith("[") and line.endswith("]"):
                section = line[1:-1].strip().lower()
            elif section == "interface" and "=" in line:
                key, value = (part.strip() for part in line.split("=", 1))
                if key == "PrivateKey" and value:
                    return value
        return None

    def write(self, profile: ClientProfile) -> Path:
        """
        Write a client profile with owner-only permissions

        Args:
            profile: Profile to materialize

        Returns:
            Path of the written profile

        Raises:
            ProfileWriteError: If the directory or file cannot be written
        """
        path = self.profile_path(profile.name)
        try:
            self.ensure_directory()
            temp_fd, temp_path = tempfile.mkstemp(
                dir=self.clients_dir, prefix=".client_", suffix=".conf.tmp"
            )
        except OSError as e:
            raise ProfileWriteError(f"Cannot write profile {path}: {e}")

        try:
            with os.fdopen(temp_fd, "w") as f:
                f.write(profile.to_config_file())
            os.chmod(temp_path, 0o600)
            os.replace(temp_path, path)
        except OSError as e:
            try:
                os.unlink(temp_path)
            except FileNotFoundError:
                pass
            raise ProfileWriteError(f"Cannot write profile {path}: {e}")

        logger.debug(f"Wrote client profile {path}")
        return path

    def remove(self, name: str) -> None:
        """Delete a profile; a missing file is not an error"""
        try:
            self.profile_path(name).unlink()
        except FileNotFoundError:
            pass
