"""
auth/tokens.py -- JWT access/refresh token signing and verification.

Security design decisions:
  JWT: python-jose with HS256. Access and refresh tokens are signed with
       DIFFERENT secrets and carry a "typ" claim, so a refresh token can never
       be replayed as an access token (or the reverse). Each token carries a
       random "jti", so two tokens issued for the same account in the same
       second are still distinct strings -- the session table keys on the
       token string.

  Expiry: checked against the injected clock rather than the wall clock so
       tests can move time. The "exp" claim itself is still required.

  Revocation: a refresh token that verifies here is NOT automatically valid.
       The session table is authoritative; see auth/service.py.

Layer rule: no imports from api/ or notify/.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime

from jose import ExpiredSignatureError, JWTError, jwt

from auth.models import TokenPair, TokenPayload
from core.clock import Clock, utc_now
from core.config import Settings
from core.durations import parse_duration
from core.errors import ConfigurationError, TokenExpired, TokenInvalid

logger = logging.getLogger("credkeep.auth.tokens")

_ALGORITHM = "HS256"

_ACCESS = "access"
_REFRESH = "refresh"

_DECODE_OPTIONS = {
    "verify_exp": False,  # compared against the injected clock below
    "require_exp": True,
    "require_sub": True,
}


class TokenCodec:
    """Signs and verifies access and refresh JWTs.

    Usage:
        codec = TokenCodec.from_settings(get_settings())
        pair = codec.issue_pair(TokenPayload(account_id=1, email="a@x.com", role="user"))
        payload = codec.verify_access_token(pair.access_token)
    """

    def __init__(
        self,
        access_secret: str,
        refresh_secret: str,
        access_ttl: str = "15m",
        refresh_ttl: str = "30d",
        clock: Clock = utc_now,
    ) -> None:
        self._access_secret = access_secret
        self._refresh_secret = refresh_secret
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Settings, clock: Clock = utc_now) -> "TokenCodec":
        return cls(
            access_secret=settings.jwt_secret,
            refresh_secret=settings.jwt_refresh_secret,
            access_ttl=settings.access_token_ttl,
            refresh_ttl=settings.refresh_token_ttl,
            clock=clock,
        )

    # ------------------------------------------------------------------
    # Expiry
    # ------------------------------------------------------------------

    def compute_expiry(self, duration_spec: str) -> datetime:
        """Return now + duration_spec. Unknown units raise ConfigurationError."""
        try:
            delta = parse_duration(duration_spec)
        except ValueError as exc:
            raise ConfigurationError(str(exc)) from exc
        return self._clock() + delta

    def refresh_expiry(self) -> datetime:
        """Expiry timestamp for a refresh token issued now."""
        return self.compute_expiry(self.refresh_ttl)

    # ------------------------------------------------------------------
    # Issue
    # ------------------------------------------------------------------

    def issue_access_token(self, payload: TokenPayload) -> str:
        return self._encode(payload, _ACCESS, self._require(self._access_secret, "JWT_SECRET"), self.access_ttl)

    def issue_refresh_token(self, payload: TokenPayload) -> str:
        return self._encode(
            payload, _REFRESH, self._require(self._refresh_secret, "JWT_REFRESH_SECRET"), self.refresh_ttl
        )

    def issue_pair(self, payload: TokenPayload) -> TokenPair:
        return TokenPair(
            access_token=self.issue_access_token(payload),
            refresh_token=self.issue_refresh_token(payload),
        )

    # ------------------------------------------------------------------
    # Verify
    # ------------------------------------------------------------------

    def verify_access_token(self, token: str) -> TokenPayload:
        """Return the payload of a valid access token.

        Raises TokenExpired or TokenInvalid (both 401).
        """
        return self._decode(token, _ACCESS, self._require(self._access_secret, "JWT_SECRET"), "Access token")

    def verify_refresh_token(self, token: str) -> TokenPayload:
        """Return the payload of a valid refresh token.

        Raises TokenExpired or TokenInvalid (both 401).
        """
        return self._decode(
            token,
            _REFRESH,
            self._require(self._refresh_secret, "JWT_REFRESH_SECRET"),
            "Refresh token",
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _require(secret: str, name: str) -> str:
        if not secret:
            raise ConfigurationError(f"{name} is not defined")
        return secret

    def _encode(self, payload: TokenPayload, token_type: str, secret: str, ttl: str) -> str:
        now = self._clock()
        claims = {
            "sub": str(payload.account_id),
            "email": payload.email,
            "role": payload.role,
            "typ": token_type,
            "iat": int(now.timestamp()),
            "exp": int(self.compute_expiry(ttl).timestamp()),
            "jti": uuid.uuid4().hex,
        }
        return jwt.encode(claims, secret, algorithm=_ALGORITHM)

    def _decode(self, token: str, token_type: str, secret: str, label: str) -> TokenPayload:
        try:
            claims = jwt.decode(token, secret, algorithms=[_ALGORITHM], options=_DECODE_OPTIONS)
        except ExpiredSignatureError as exc:
            raise TokenExpired(f"{label} has expired") from exc
        except JWTError as exc:
            raise TokenInvalid(f"Invalid {label.lower()}") from exc

        if claims.get("typ") != token_type:
            raise TokenInvalid(f"Invalid {label.lower()}")
        try:
            exp = int(claims["exp"])
            account_id = int(claims["sub"])
            email = str(claims["email"])
            role = str(claims["role"])
        except (KeyError, TypeError, ValueError) as exc:
            raise TokenInvalid(f"Invalid {label.lower()}") from exc
        if exp <= int(self._clock().timestamp()):
            raise TokenExpired(f"{label} has expired")
        return TokenPayload(account_id=account_id, email=email, role=role)
