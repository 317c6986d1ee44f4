"""
Bearer credential codec.

API keys are self-describing: ``<kind>.<KEYID>.<SECRET>`` where kind is one
of user, application, gateway or organization, and both KEYID and SECRET
are upper-case base32. Anything else that looks like a URL-safe token is
treated as an opaque OAuth access token. Decoding never touches storage.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import re
import secrets
from dataclasses import dataclass

from identity_core.domain.identifiers import EntityKind
from identity_core.runtime.errors import MalformedCredentialError

API_KEY_KINDS = frozenset(
    {EntityKind.USER, EntityKind.APPLICATION, EntityKind.GATEWAY, EntityKind.ORGANIZATION}
)

KEY_ID_LENGTH = 39
SECRET_LENGTH = 64

_BASE32 = re.compile(r"^[A-Z2-7]+$")
_OPAQUE_TOKEN = re.compile(r"^[A-Za-z0-9_\-~+/=]{16,}$")


@dataclass(frozen=True)
class APIKeyCredential:
    kind: EntityKind
    key_id: str
    secret: str

    def encode(self) -> str:
        return f"{self.kind.value}.{self.key_id}.{self.secret}"


@dataclass(frozen=True)
class AccessTokenCredential:
    token: str


Credential = APIKeyCredential | AccessTokenCredential


def _random_base32(length: int) -> str:
    raw = secrets.token_bytes((length * 5 + 7) // 8)
    return base64.b32encode(raw).decode("ascii").rstrip("=")[:length]


def generate_api_key(kind: EntityKind) -> APIKeyCredential:
    """Mint a fresh key for an entity of ``kind``."""
    if kind not in API_KEY_KINDS:
        raise ValueError(f"{kind.value} entities do not hold API keys")
    return APIKeyCredential(kind, _random_base32(KEY_ID_LENGTH), _random_base32(SECRET_LENGTH))


def hash_secret(secret: str) -> str:
    """SHA-256 hex digest of a key secret; only the digest is stored."""
    return hashlib.sha256(secret.encode()).hexdigest()


def verify_secret(secret: str, secret_hash: str) -> bool:
    """Constant-time comparison of a presented secret against its stored hash."""
    return hmac.compare_digest(hash_secret(secret), secret_hash)


def decode(bearer: str) -> Credential:
    """Classify a bearer string.

    Raises:
        MalformedCredentialError: Neither a well-formed API key nor an
            opaque token, or an API key of an unknown kind.
    """
    if not bearer:
        raise MalformedCredentialError("Empty credential")

    if "." in bearer:
        parts = bearer.split(".")
        if len(parts) != 3:
            raise MalformedCredentialError("Malformed API key")
        kind_str, key_id, secret = parts
        try:
            kind = EntityKind(kind_str)
        except ValueError:
            raise MalformedCredentialError("Unknown API key kind") from None
        if kind not in API_KEY_KINDS:
            raise MalformedCredentialError("Unknown API key kind")
        if len(key_id) != KEY_ID_LENGTH or not _BASE32.match(key_id):
            raise MalformedCredentialError("Malformed API key identifier")
        if len(secret) != SECRET_LENGTH or not _BASE32.match(secret):
            raise MalformedCredentialError("Malformed API key secret")
        return APIKeyCredential(kind, key_id, secret)

    if not _OPAQUE_TOKEN.match(bearer):
        raise MalformedCredentialError("Malformed access token")
    return AccessTokenCredential(bearer)
