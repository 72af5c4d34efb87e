"""
auth/passwords.py -- Password hashing collaborator (bcrypt).

Using bcrypt directly rather than passlib[bcrypt] because passlib's internal
wrap-bug detection creates a password longer than 72 bytes, which bcrypt 4.x
rejects with an explicit error.

bcrypt only reads the first 72 bytes of a password (and recent releases raise
on longer input). The request models in api/models.py reject passwords over
72 UTF-8 bytes before they reach this module.

Layer rule: no imports from api/ or notify/.
"""

from __future__ import annotations

import bcrypt


class PasswordHasher:
    """hash(plain) -> digest, verify(plain, digest) -> bool.

    The dummy digest is computed once per hasher so login can always run one
    bcrypt comparison, whether or not the account exists. Response time then
    does not reveal which emails are registered.
    """

    def __init__(self, rounds: int = 12) -> None:
        self.rounds = rounds
        self._dummy_digest = self.hash("credkeep_timing_dummy")

    def hash(self, plain: str) -> str:
        return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def verify(self, plain: str, digest: str) -> bool:
        """Return True if the plaintext matches the digest. Malformed digests are a mismatch."""
        try:
            return bcrypt.checkpw(plain.encode("utf-8"), digest.encode("utf-8"))
        except ValueError:
            return False

    def burn(self, plain: str) -> None:
        """Run one comparison against the dummy digest and discard the result."""
        self.verify(plain, self._dummy_digest)
