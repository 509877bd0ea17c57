"""
Unit tests for WireGuard Config Manager

Tests loading the server configuration, peer queries, atomic appends,
locking and service reload.
"""

import stat
import subprocess
from ipaddress import IPv4Address
from unittest.mock import MagicMock, patch

import pytest

from wgbulk.models.wireguard.provisioning import PeerRecord
from wgbulk.services.exceptions import (
    DuplicatePeerError,
    StoreAppendError,
    StoreUnavailableError,
)
from wgbulk.services.wireguard_config_manager import WireGuardConfigManager

from conftest import generate_keypair, peer_block


def _record(name, host):
    _, public_key = generate_keypair()
    return PeerRecord(name=name, public_key=public_key, address=f"10.0.0.{host}")


class TestLoad:
    """Loading and parsing the store"""

    def test_load_reads_header(self, config_store):
        """
        Given a server config with Address and DNS
        When loading
        Then should derive pool and DNS from the header
        """
        config_store.load()

        assert str(config_store.pool.network) == "10.0.0.0/24"
        assert config_store.pool.gateway == IPv4Address("10.0.0.1")
        assert config_store.dns_servers == ["1.1.1.1"]
        assert config_store.peers == []

    def test_missing_file(self, tmp_path):
        manager = WireGuardConfigManager(config_path=str(tmp_path / "wg0.conf"))

        with pytest.raises(StoreUnavailableError, match="not found"):
            manager.load()

    def test_missing_address(self, tmp_path):
        """
        Given a config without an interface Address
        When loading
        Then should fail as unavailable
        """
        config_path = tmp_path / "wg0.conf"
        config_path.write_text("[Interface]\nListenPort = 51820\n")
        manager = WireGuardConfigManager(config_path=str(config_path))

        with pytest.raises(StoreUnavailableError, match="server IP"):
            manager.load()

    def test_incomplete_peer_block(self, wg_dir, config_store):
        with (wg_dir / "wg0.conf").open("a") as f:
            f.write("\n[Peer]\nAllowedIPs = 10.0.0.2/32\n")

        with pytest.raises(StoreUnavailableError, match="missing"):
            config_store.load()

    def test_queries_before_load(self, config_store):
        with pytest.raises(StoreUnavailableError):
            config_store.load_peer_addresses()


class TestQueries:
    """Address and duplicate queries"""

    def test_load_peer_addresses(self, wg_dir, config_store):
        """
        Given peers inside and outside the VPN network
        When listing used addresses
        Then should only return addresses inside the pool
        """
        _, key_a = generate_keypair()
        _, key_b = generate_keypair()
        _, key_c = generate_keypair()
        with (wg_dir / "wg0.conf").open("a") as f:
            f.write(peer_block("alice-x.com", key_a, "10.0.0.2"))
            f.write(peer_block("bob-x.com", key_b, "10.0.0.7"))
            f.write(f"\n[Peer]\nPublicKey = {key_c}\nAllowedIPs = 192.168.1.0/24, 10.0.0.9/32\n")
        config_store.load()

        assert config_store.load_peer_addresses() == {
            IPv4Address("10.0.0.2"),
            IPv4Address("10.0.0.7"),
            IPv4Address("10.0.0.9"),
        }

    def test_has_peer_and_name(self, wg_dir, config_store):
        _, key = generate_keypair()
        with (wg_dir / "wg0.conf").open("a") as f:
            f.write(peer_block("alice-x.com", key, "10.0.0.2"))
        config_store.load()

        assert config_store.has_peer(key) is True
        assert config_store.has_peer_named("alice-x.com") is True
        assert config_store.has_peer_named("bob-x.com") is False

        _, other = generate_keypair()
        assert config_store.has_peer(other) is False


class TestAppendPeer:
    """Appending peer blocks"""

    def test_append_writes_block(self, wg_dir, config_store):
        """
        Given a loaded store
        When appending a peer
        Then should write the comment, key and allowed address
        """
        config_store.load()
        record = _record("alice-x.com", 2)

        config_store.append_peer(record)

        text = (wg_dir / "wg0.conf").read_text()
        assert "# alice-x.com\n[Peer]\n" in text
        assert f"PublicKey = {record.public_key}" in text
        assert "AllowedIPs = 10.0.0.2/32" in text
        # header untouched
        assert text.startswith("[Interface]\nAddress = 10.0.0.1/24\n")

    def test_append_updates_working_set(self, config_store):
        config_store.load()
        record = _record("alice-x.com", 2)

        config_store.append_peer(record)

        assert config_store.has_peer(record.public_key)
        assert config_store.has_peer_named("alice-x.com")
        assert IPv4Address("10.0.0.2") in config_store.load_peer_addresses()

    def test_append_is_reparseable(self, settings, config_store):
        """
        Given two appended peers
        When a fresh manager loads the file
        Then should see both peers in order
        """
        config_store.load()
        config_store.append_peer(_record("alice-x.com", 2))
        config_store.append_peer(_record("bob-y.org", 3))

        fresh = WireGuardConfigManager(config_path=str(settings.config_path))
        fresh.load()

        assert [p.name for p in fresh.peers] == ["alice-x.com", "bob-y.org"]

    def test_duplicate_key_rejected(self, wg_dir, config_store):
        config_store.load()
        record = _record("alice-x.com", 2)
        config_store.append_peer(record)
        before = (wg_dir / "wg0.conf").read_text()

        duplicate = PeerRecord(name="other", public_key=record.public_key, address="10.0.0.3")
        with pytest.raises(DuplicatePeerError):
            config_store.append_peer(duplicate)

        assert (wg_dir / "wg0.conf").read_text() == before

    def test_duplicate_address_rejected(self, config_store):
        config_store.load()
        config_store.append_peer(_record("alice-x.com", 2))

        with pytest.raises(DuplicatePeerError, match="already assigned"):
            config_store.append_peer(_record("bob-y.org", 2))

    def test_failed_write_leaves_store_intact(self, wg_dir, config_store):
        """
        Given a replace that fails
        When appending
        Then should raise StoreAppendError and leave file and temp dir clean
        """
        config_store.load()
        before = (wg_dir / "wg0.conf").read_text()

        with patch("wgbulk.services.wireguard_config_manager.os.replace",
                   side_effect=OSError("disk full")):
            with pytest.raises(StoreAppendError):
                config_store.append_peer(_record("alice-x.com", 2))

        assert (wg_dir / "wg0.conf").read_text() == before
        assert not list(wg_dir.glob(".wg_*.tmp"))
        assert not config_store.has_peer_named("alice-x.com")

    def test_config_file_permissions(self, wg_dir, config_store):
        """
        Given an appended peer
        When inspecting the config file
        Then should have secure permissions (0600)
        """
        config_store.load()
        config_store.append_peer(_record("alice-x.com", 2))

        perms = stat.S_IMODE((wg_dir / "wg0.conf").stat().st_mode)
        assert perms == stat.S_IRUSR | stat.S_IWUSR


class TestLock:

    def test_second_lock_fails_fast(self, settings):
        """
        Given one manager holding the store lock
        When another manager tries to lock
        Then should raise StoreUnavailableError
        """
        first = WireGuardConfigManager(config_path=str(settings.config_path))
        second = WireGuardConfigManager(config_path=str(settings.config_path))

        with first.lock():
            with pytest.raises(StoreUnavailableError, match="locked"):
                with second.lock():
                    pass

        with second.lock():
            pass


class TestReload:

    def test_reload_success(self, config_store):
        with patch("wgbulk.services.wireguard_config_manager.subprocess.run") as run:
            run.return_value = MagicMock(returncode=0, stderr="")

            assert config_store.reload_service() is True

        run.assert_called_once()
        assert run.call_args[0][0] == ["true"]

    def test_reload_failure(self, config_store):
        with patch("wgbulk.services.wireguard_config_manager.subprocess.run") as run:
            run.return_value = MagicMock(returncode=1, stderr="unit not found")

            assert config_store.reload_service() is False

    def test_reload_missing_command(self, config_store):
        with patch("wgbulk.services.wireguard_config_manager.subprocess.run",
                   side_effect=FileNotFoundError):
            assert config_store.reload_service() is False

    def test_reload_timeout(self, config_store):
        with patch("wgbulk.services.wireguard_config_manager.subprocess.run",
                   side_effect=subprocess.TimeoutExpired(cmd="systemctl", timeout=30)):
            assert config_store.reload_service() is False

    def test_default_reload_command(self, tmp_path):
        manager = WireGuardConfigManager(config_path=str(tmp_path / "wg1.conf"))

        assert manager.reload_command == ["systemctl", "restart", "wg-quick@wg1"]
