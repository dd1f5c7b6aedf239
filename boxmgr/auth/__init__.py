"""Authentication / authorization.

- Users table (username, password hash, admin flag)
- Stateless sessions: a signed, expiring token carries `{id, username, is_admin}`

The token travels in an httpOnly cookie (set by `/login`); `Authorization: Bearer <token>`
is accepted too for scripts. A second, readable cookie only tells the browser UI that a
session exists. Cookies from the pre-token releases are still understood during the
migration window (see `session.py`).
"""

from .crud import LastAdminError, UsernameExistsError, bootstrap_admin_if_needed, create_user
from .deps import get_current_user, get_session, require_admin
from .identity import Identity
from .security import ConfigurationError, TokenCodec
from .session import ANONYMOUS, Session, SessionResolver

__all__ = [
    "ANONYMOUS",
    "ConfigurationError",
    "Identity",
    "LastAdminError",
    "Session",
    "SessionResolver",
    "TokenCodec",
    "UsernameExistsError",
    "bootstrap_admin_if_needed",
    "create_user",
    "get_current_user",
    "get_session",
    "require_admin",
]
