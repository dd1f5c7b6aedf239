import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

# Load a local .env file if present; real environment variables win.
load_dotenv()


def _env_bool(name: str, default: Optional[bool] = None) -> Optional[bool]:
    """Parse a boolean environment variable.

    Returns:
      - True/False if the env var is set to a recognizable value
      - default if unset or unrecognized

    Accepted truthy: 1, true, yes, y, on
    Accepted falsy:  0, false, no, n, off
    """

    raw = os.environ.get(name)
    if raw is None:
        return default
    v = raw.strip().lower()
    if v in ("1", "true", "yes", "y", "on"):
        return True
    if v in ("0", "false", "no", "n", "off"):
        return False
    return default


_ENVIRONMENT = os.environ.get("ENVIRONMENT", "development").strip().lower()


@dataclass(frozen=True)
class Config:
    """Runtime configuration.

    Secrets come from environment variables or a .env file. Tests build a
    Config directly with keyword overrides instead of touching the environment.
    """

    # -----------------
    # Core
    # -----------------
    ENVIRONMENT: str = _ENVIRONMENT

    # SQLite file path (sqlite:///path also accepted).
    DB_DSN: str = (
        os.environ.get("BOXMGR_DB_PATH")
        or os.environ.get("DATABASE_URL")
        or "./data/boxmgr.sqlite"
    )

    # Where the frontend should go after a successful login.
    LOGIN_REDIRECT: str = os.environ.get("LOGIN_REDIRECT", "/")

    # -----------------
    # Auth (signed session tokens)
    # -----------------
    # When unset, a random secret is generated on first start and stored in app_config.
    AUTH_SECRET: str = os.environ.get("AUTH_SECRET", "")
    AUTH_TOKEN_EXPIRE_MINUTES: int = int(os.environ.get("AUTH_TOKEN_EXPIRE_MINUTES", "10080"))  # 7 days

    # Optional: create the first admin at startup instead of through /setup.
    # Both must be set; nothing happens if users already exist.
    AUTH_BOOTSTRAP_ADMIN_USERNAME: str = os.environ.get("AUTH_BOOTSTRAP_ADMIN_USERNAME", "")
    AUTH_BOOTSTRAP_ADMIN_PASSWORD: str = os.environ.get("AUTH_BOOTSTRAP_ADMIN_PASSWORD", "")

    # Cookies
    # - AUTH_COOKIE_NAME carries the signed token (httpOnly)
    # - AUTH_FLAG_COOKIE_NAME is a readable "logged in" marker for the UI, no secrets
    # - AUTH_LEGACY_COOKIE_NAME is the pre-token cookie (raw username or unsigned JSON)
    AUTH_COOKIE_NAME: str = os.environ.get("AUTH_COOKIE_NAME", "auth_token")
    AUTH_FLAG_COOKIE_NAME: str = os.environ.get("AUTH_FLAG_COOKIE_NAME", "authenticated")
    AUTH_LEGACY_COOKIE_NAME: str = os.environ.get("AUTH_LEGACY_COOKIE_NAME", "auth")
    AUTH_COOKIE_DOMAIN: str | None = (os.environ.get("AUTH_COOKIE_DOMAIN") or "").strip() or None
    AUTH_COOKIE_PATH: str = os.environ.get("AUTH_COOKIE_PATH", "/")
    AUTH_COOKIE_SAMESITE: str = os.environ.get("AUTH_COOKIE_SAMESITE", "strict")  # lax|strict|none

    # Secure cookies follow ENVIRONMENT unless AUTH_COOKIE_SECURE=0/1 is set explicitly.
    AUTH_COOKIE_SECURE: Optional[bool] = _env_bool("AUTH_COOKIE_SECURE", None)

    # Legacy cookie migration window. Set to 0 once every client holds a token.
    AUTH_ACCEPT_LEGACY_COOKIES: bool = _env_bool("AUTH_ACCEPT_LEGACY_COOKIES", True) is True
    # In the username-only cookie era this account was the admin.
    AUTH_LEGACY_ADMIN_USERNAME: str = os.environ.get("AUTH_LEGACY_ADMIN_USERNAME", "user")

    # -----------------
    # CORS (development)
    # -----------------
    # Same-origin deployments leave this empty.
    CORS_ALLOW_ORIGINS: str = os.environ.get("CORS_ALLOW_ORIGINS", "")

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.strip().lower() == "production"


def load_config() -> Config:
    return Config()
