"""Turn inbound request credentials into an Identity or an anonymous session.

Resolution order (first usable credential wins):

1. Signed token: `Authorization: Bearer <token>` or the token cookie. If present but
   invalid the request is anonymous; legacy cookies are NOT consulted, otherwise a
   forged legacy cookie could ride along with an expired token.
2. Legacy cookie, only while AUTH_ACCEPT_LEGACY_COOKIES is on: unsigned JSON
   (generation 2), else a raw username (generation 1).
3. Anonymous.

The resolver does no I/O besides token verification.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Optional

from boxmgr.config import Config

from .identity import (
    LEGACY_PLACEHOLDER_ID,
    Credential,
    Identity,
    LegacyJsonCredential,
    LegacyUsernameCredential,
    TokenCredential,
    parse_legacy_json_cookie,
    parse_legacy_username_cookie,
    parse_token_cookie,
)
from .security import TokenCodec


def _debug(msg: str) -> None:
    print(f"[auth] {msg}")


@dataclass(frozen=True)
class Session:
    identity: Optional[Identity] = None
    generation: Optional[int] = None

    @property
    def authenticated(self) -> bool:
        return self.identity is not None

    @property
    def legacy(self) -> bool:
        return self.generation in (1, 2)


ANONYMOUS = Session()


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    value = (authorization or "").strip()
    scheme, _, token = value.partition(" ")
    if scheme.lower() != "bearer":
        return None
    return token.strip() or None


class SessionResolver:
    def __init__(
        self,
        codec: TokenCodec,
        *,
        token_cookie: str = "auth_token",
        legacy_cookie: str = "auth",
        accept_legacy: bool = True,
        legacy_admin_username: str = "user",
    ):
        self.codec = codec
        self.token_cookie = token_cookie
        self.legacy_cookie = legacy_cookie
        self.accept_legacy = accept_legacy
        self.legacy_admin_username = (legacy_admin_username or "").strip().lower()

    @classmethod
    def from_config(cls, cfg: Config, codec: TokenCodec) -> "SessionResolver":
        return cls(
            codec,
            token_cookie=cfg.AUTH_COOKIE_NAME,
            legacy_cookie=cfg.AUTH_LEGACY_COOKIE_NAME,
            accept_legacy=cfg.AUTH_ACCEPT_LEGACY_COOKIES,
            legacy_admin_username=cfg.AUTH_LEGACY_ADMIN_USERNAME,
        )

    def extract(self, cookies: Mapping[str, str], authorization: Optional[str] = None) -> Optional[Credential]:
        """Pick the single credential this request will be judged on."""
        bearer = _bearer_token(authorization)
        if bearer:
            return TokenCredential(token=bearer)

        token = parse_token_cookie(cookies.get(self.token_cookie))
        if token is not None:
            return token

        raw = cookies.get(self.legacy_cookie)
        if not raw:
            return None
        return parse_legacy_json_cookie(raw) or parse_legacy_username_cookie(raw)

    def resolve(self, cookies: Mapping[str, str], authorization: Optional[str] = None) -> Session:
        cred = self.extract(cookies, authorization)
        if cred is None:
            if cookies.get(self.legacy_cookie):
                _debug("legacy auth cookie present but unparseable")
            return ANONYMOUS

        if isinstance(cred, TokenCredential):
            identity = self.codec.verify(cred.token)
            if identity is None:
                return ANONYMOUS
            return Session(identity=identity, generation=cred.generation)

        if not self.accept_legacy:
            _debug(f"legacy auth rejected (generation={cred.generation}); legacy cookies are disabled")
            return ANONYMOUS

        if isinstance(cred, LegacyJsonCredential):
            identity = Identity(id=cred.id, username=cred.username, is_admin=cred.is_admin)
        elif isinstance(cred, LegacyUsernameCredential):
            identity = Identity(
                id=LEGACY_PLACEHOLDER_ID,
                username=cred.username,
                is_admin=cred.username.lower() == self.legacy_admin_username,
            )
        else:
            return ANONYMOUS

        _debug(f"legacy auth in use: generation={cred.generation} username={identity.username}")
        return Session(identity=identity, generation=cred.generation)
