from __future__ import annotations

import hmac
import secrets
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

import jwt
from passlib.context import CryptContext

from boxmgr.util.time import epoch_seconds, utcnow

from .identity import Identity


def _debug(msg: str) -> None:
    print(f"[auth] {msg}")


_pwd = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
_JWT_ALG = "HS256"

DEFAULT_TOKEN_EXPIRE_MINUTES = 7 * 24 * 60


class ConfigurationError(RuntimeError):
    """Server is misconfigured (e.g. no signing secret). Never an auth failure."""


# -----------------
# Passwords
# -----------------


def hash_password(password: str) -> str:
    if not password:
        raise ValueError("password_blank")
    return _pwd.hash(password)


def is_password_hash(stored: str) -> bool:
    """True when `stored` is a hash passlib recognizes (anything else is legacy plaintext)."""
    if not stored:
        return False
    return _pwd.identify(stored) is not None


def verify_password(password: str, password_hash: str) -> bool:
    if not password or not password_hash:
        return False
    try:
        return _pwd.verify(password, password_hash)
    except (ValueError, TypeError):
        return False


def verify_legacy_plaintext(password: str, stored: str) -> bool:
    """Constant-time comparison against a plaintext password from the pre-hashing schema."""
    if not password or not stored:
        return False
    return hmac.compare_digest(password.encode("utf-8"), stored.encode("utf-8"))


def password_needs_rehash(password_hash: str) -> bool:
    return _pwd.needs_update(password_hash)


def generate_secret() -> str:
    return secrets.token_urlsafe(48)


# -----------------
# Session tokens
# -----------------


class TokenCodec:
    """Issues and verifies signed session tokens (HS256 JWS).

    The token is the whole session: `{sub, username, is_admin, iat, exp}` signed with a
    server-held secret. Privileges are a snapshot taken at issuance.

    `verify` never raises for a bad token; it returns None and logs the reason. Both
    methods raise ConfigurationError when there is no secret.
    """

    def __init__(self, secret: str, *, expires_minutes: int = DEFAULT_TOKEN_EXPIRE_MINUTES):
        self._secret = secret or ""
        self.expires_minutes = max(1, int(expires_minutes))

    @property
    def max_age_seconds(self) -> int:
        return self.expires_minutes * 60

    def _require_secret(self) -> str:
        if not self._secret:
            _debug("ERROR: token signing secret is not configured")
            raise ConfigurationError("auth_secret_missing")
        return self._secret

    def issue(self, identity: Identity, *, now: Optional[datetime] = None) -> str:
        secret = self._require_secret()

        issued = now or utcnow()
        exp = issued + timedelta(minutes=self.expires_minutes)
        payload: Dict[str, Any] = {
            "sub": str(int(identity.id)),
            "username": identity.username,
            "is_admin": bool(identity.is_admin),
            "iat": epoch_seconds(issued),
            "exp": epoch_seconds(exp),
        }
        return jwt.encode(payload, secret, algorithm=_JWT_ALG)

    def verify(self, token: str) -> Optional[Identity]:
        secret = self._require_secret()
        if not token or token.count(".") != 2:
            _debug("token rejected: malformed")
            return None

        try:
            # PyJWT compares signatures with hmac.compare_digest.
            payload = jwt.decode(
                token,
                secret,
                algorithms=[_JWT_ALG],
                options={"require": ["exp", "sub"]},
            )
        except jwt.ExpiredSignatureError:
            _debug("token rejected: expired")
            return None
        except jwt.InvalidSignatureError:
            _debug("token rejected: bad signature")
            return None
        except jwt.InvalidTokenError as e:
            _debug(f"token rejected: malformed ({type(e).__name__})")
            return None

        return _identity_from_payload(payload)


def _identity_from_payload(payload: Dict[str, Any]) -> Optional[Identity]:
    try:
        user_id = int(payload["sub"])
    except (KeyError, TypeError, ValueError):
        _debug("token rejected: sub is not an integer")
        return None

    username = payload.get("username")
    is_admin = payload.get("is_admin")
    if not isinstance(username, str) or not username or not isinstance(is_admin, bool):
        _debug("token rejected: payload missing username/is_admin")
        return None

    return Identity(id=user_id, username=username, is_admin=is_admin)
