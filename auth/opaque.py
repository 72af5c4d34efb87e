"""
auth/opaque.py -- Random single-use tokens for email verification and reset.

These are not JWTs. The plaintext goes out by email; only its SHA-256 digest
and an expiry are stored. Verification digests the presented token and looks
the digest up together with an unexpired check.

SHA-256 (not bcrypt) is fine here: the tokens carry 256 bits of entropy, so
there is nothing for a slow hash to protect against, and a deterministic
digest allows an indexed lookup.
"""

from __future__ import annotations

import hashlib
import secrets


def generate_opaque_token(byte_length: int = 32) -> str:
    """Return byte_length cryptographically random bytes as a hex string."""
    return secrets.token_hex(byte_length)


def digest_token(token: str) -> str:
    """Return the hex SHA-256 digest of a token for storage and comparison."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()
