"""
Pytest configuration and shared fixtures
"""

import sys
from pathlib import Path

import pytest

# Add project root to Python path
sys.path.insert(0, str(Path(__file__).parent.parent))

from wgbulk.config import ProvisioningSettings
from wgbulk.networking.wireguard_keys import generate_private_key, get_public_key_from_private
from wgbulk.services.bulk_provisioning_service import BulkProvisioningService
from wgbulk.services.wireguard_config_manager import WireGuardConfigManager


def generate_keypair():
    """Fresh (private_key, public_key) pair"""
    private_key = generate_private_key()
    return private_key, get_public_key_from_private(private_key)


SERVER_HEADER = """\
[Interface]
Address = 10.0.0.1/24
PrivateKey = {private_key}
ListenPort = 51820
DNS = 1.1.1.1
PostUp = sysctl -w net.ipv4.ip_forward=1
PostUp = iptables -A FORWARD -i wg0 -j ACCEPT
"""


@pytest.fixture(scope="session")
def test_network():
    """Test IP network for WireGuard"""
    return "10.0.0.0/24"


@pytest.fixture(scope="session")
def test_hub_ip():
    """Test hub IP address"""
    return "10.0.0.1"


@pytest.fixture(scope="session")
def server_keys():
    """Server (private_key, public_key)"""
    return generate_keypair()


@pytest.fixture
def wg_dir(tmp_path, server_keys):
    """
    WireGuard directory laid out the way the server installer leaves it
    """
    private_key, public_key = server_keys
    directory = tmp_path / "wireguard"
    directory.mkdir()
    (directory / "wg0.conf").write_text(SERVER_HEADER.format(private_key=private_key))
    (directory / "server_public.key").write_text(public_key + "\n")
    (directory / "server_endpoint").write_text("vpn.example.com:51820\n")
    return directory


@pytest.fixture
def settings(wg_dir):
    return ProvisioningSettings(wg_dir=wg_dir, reload_command=["true"])


@pytest.fixture
def config_store(settings):
    return WireGuardConfigManager(
        config_path=str(settings.config_path),
        reload_command=settings.effective_reload_command(),
    )


@pytest.fixture
def service(settings, config_store):
    """Provisioning service whose reload is recorded instead of executed"""
    svc = BulkProvisioningService(settings, config_store=config_store)
    svc.reload_calls = []

    def fake_reload():
        svc.reload_calls.append(True)
        return True

    config_store.reload_service = fake_reload
    return svc


def peer_block(name, public_key, address):
    return f"\n# {name}\n[Peer]\nPublicKey = {public_key}\nAllowedIPs = {address}/32\n"


@pytest.fixture
def fill_pool(wg_dir):
    """Append peer blocks for the given host numbers of 10.0.0.0/24"""
    def _fill(hosts):
        config_path = wg_dir / "wg0.conf"
        blocks = []
        for host in hosts:
            _, public_key = generate_keypair()
            blocks.append(peer_block(f"existing-{host}", public_key, f"10.0.0.{host}"))
        with config_path.open("a") as f:
            f.write("".join(blocks))
    return _fill
