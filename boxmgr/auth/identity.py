"""Identity and the credential formats that can carry one.

Three generations of session cookie have shipped:

1. raw username as the whole cookie value
2. unsigned JSON ``{"username", "isAdmin", "id"}``
3. a signed token (see ``security.TokenCodec``) in an httpOnly cookie

Each generation has a total parse function here: it returns a credential or None and
never raises. The session resolver tries them in a fixed order.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union
from urllib.parse import unquote

# Legacy cookies carry no user id.
LEGACY_PLACEHOLDER_ID = -1


@dataclass(frozen=True)
class Identity:
    """Resolved `{id, username, isAdmin}` attached to an authenticated request."""

    id: int
    username: str
    is_admin: bool

    def to_public(self) -> Dict[str, Any]:
        return {"id": self.id, "username": self.username, "isAdmin": self.is_admin}


@dataclass(frozen=True)
class TokenCredential:
    token: str
    generation: int = 3


@dataclass(frozen=True)
class LegacyJsonCredential:
    username: str
    is_admin: bool
    id: int
    generation: int = 2


@dataclass(frozen=True)
class LegacyUsernameCredential:
    username: str
    generation: int = 1


Credential = Union[TokenCredential, LegacyJsonCredential, LegacyUsernameCredential]


def parse_token_cookie(raw: Optional[str]) -> Optional[TokenCredential]:
    token = (raw or "").strip()
    if not token:
        return None
    return TokenCredential(token=token)


def _legacy_value(raw: Optional[str]) -> str:
    # The old frontend wrote cookies URI-encoded.
    return unquote(raw or "").strip()


def parse_legacy_json_cookie(raw: Optional[str]) -> Optional[LegacyJsonCredential]:
    """Generation 2. None unless the value decodes to a JSON object with a username."""
    value = _legacy_value(raw)
    if not value.startswith("{"):
        return None
    try:
        data = json.loads(value)
    except ValueError:
        # Broken JSON stays anonymous; it is never retried as a generation-1 username.
        return None
    if not isinstance(data, dict):
        return None

    username = data.get("username")
    if not isinstance(username, str) or not username.strip():
        return None

    raw_id = data.get("id", LEGACY_PLACEHOLDER_ID)
    try:
        user_id = int(raw_id)
    except (TypeError, ValueError):
        user_id = LEGACY_PLACEHOLDER_ID

    return LegacyJsonCredential(
        username=username.strip(),
        is_admin=data.get("isAdmin") is True,
        id=user_id,
    )


def parse_legacy_username_cookie(raw: Optional[str]) -> Optional[LegacyUsernameCredential]:
    """Generation 1. Anything that is not JSON-object shaped is a bare username."""
    value = _legacy_value(raw)
    if not value or value.startswith("{"):
        return None
    return LegacyUsernameCredential(username=value)
