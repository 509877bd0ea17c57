"""
wgbulk: bulk WireGuard peer provisioning.

Allocates tunnel addresses, registers peers in the server configuration,
writes client profiles and optionally e-mails them to their owners.
"""

__version__ = "1.0.0"
