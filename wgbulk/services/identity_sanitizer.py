"""
Identity Sanitizer

Turns a user identity (an e-mail address) into the peer name used for the
config-store comment and the client profile filename.

The substitution rule replaces '@' with '-'. Distinct identities can map to
the same name (a-b@c.com and a@b-c.com); the orchestrator skips the later
one as already existing.
"""

import re

from wgbulk.services.exceptions import InvalidIdentityError

SEPARATOR = "@"
SUBSTITUTE = "-"

# Path separators, whitespace and address-list punctuation are never allowed,
# so the name is a safe filename and the identity a single mail recipient
_IDENTITY_RE = re.compile(r'^[^@\s/\\,<>"]+@[^@\s/\\,<>"]+\.[^@\s/\\,<>"]+$')
_SANITIZED_RE = re.compile(r'^[^@\s/\\,<>"]+-[^@\s/\\,<>"]*\.[^@\s/\\,<>"]+$')


def is_valid_identity(identity: str) -> bool:
    return bool(_IDENTITY_RE.match(identity.strip()))


def sanitize(identity: str) -> str:
    """
    Normalize an identity into a peer name

    Already-sanitized names are returned unchanged.

    Args:
        identity: Raw identity, e.g. "alice@example.com"

    Returns:
        Peer name, e.g. "alice-example.com"

    Raises:
        InvalidIdentityError: If the identity is not shaped like user@domain.tld
    """
    candidate = identity.strip()

    if SEPARATOR not in candidate and _SANITIZED_RE.match(candidate):
        return candidate

    if not _IDENTITY_RE.match(candidate):
        raise InvalidIdentityError(identity)

    return candidate.replace(SEPARATOR, SUBSTITUTE)
