"""
Tests for credential parsing (auth/identity.py) and session resolution (auth/session.py).
"""

import json
from datetime import timedelta
from urllib.parse import quote

import pytest

from boxmgr.auth.identity import (
    LEGACY_PLACEHOLDER_ID,
    Identity,
    LegacyJsonCredential,
    LegacyUsernameCredential,
    TokenCredential,
    parse_legacy_json_cookie,
    parse_legacy_username_cookie,
    parse_token_cookie,
)
from boxmgr.auth.session import ANONYMOUS, SessionResolver
from boxmgr.util.time import utcnow


ROOT = Identity(id=1, username="root", is_admin=True)
BOB = Identity(id=2, username="bob", is_admin=False)


def _legacy_json(username: str, is_admin: bool, user_id: int = 5) -> str:
    return quote(json.dumps({"username": username, "isAdmin": is_admin, "id": user_id}))


@pytest.fixture
def resolver(codec) -> SessionResolver:
    return SessionResolver(codec, token_cookie="auth_token", legacy_cookie="auth", legacy_admin_username="user")


# -----------------
# Parsers
# -----------------


def test_parse_token_cookie():
    assert parse_token_cookie(None) is None
    assert parse_token_cookie("  ") is None
    assert parse_token_cookie("a.b.c") == TokenCredential(token="a.b.c")


def test_parse_legacy_json_cookie_plain_and_uri_encoded():
    raw = json.dumps({"username": "alice", "isAdmin": True, "id": 3})
    expected = LegacyJsonCredential(username="alice", is_admin=True, id=3)
    assert parse_legacy_json_cookie(raw) == expected
    assert parse_legacy_json_cookie(quote(raw)) == expected


def test_parse_legacy_json_cookie_defaults():
    cred = parse_legacy_json_cookie('{"username": "alice"}')
    assert cred == LegacyJsonCredential(username="alice", is_admin=False, id=LEGACY_PLACEHOLDER_ID)

    # isAdmin must be a real boolean
    assert parse_legacy_json_cookie('{"username": "a", "isAdmin": "yes"}').is_admin is False


@pytest.mark.parametrize("raw", [None, "", "alice", "{broken", "{}", '{"username": ""}', '{"username": 5}', "[1,2]"])
def test_parse_legacy_json_cookie_rejects(raw):
    assert parse_legacy_json_cookie(raw) is None


def test_parse_legacy_username_cookie():
    assert parse_legacy_username_cookie("alice") == LegacyUsernameCredential(username="alice")
    assert parse_legacy_username_cookie(quote("bob smith")) == LegacyUsernameCredential(username="bob smith")
    assert parse_legacy_username_cookie("") is None
    # JSON-object shaped values belong to generation 2, even when broken.
    assert parse_legacy_username_cookie("{broken") is None


# -----------------
# Resolver
# -----------------


def test_no_credentials_is_anonymous(resolver):
    session = resolver.resolve({})
    assert session is ANONYMOUS
    assert not session.authenticated


def test_valid_token_cookie(resolver, codec):
    session = resolver.resolve({"auth_token": codec.issue(ROOT)})
    assert session.identity == ROOT
    assert session.generation == 3
    assert not session.legacy


def test_bearer_header_is_accepted(resolver, codec):
    session = resolver.resolve({}, authorization=f"Bearer {codec.issue(BOB)}")
    assert session.identity == BOB


def test_bearer_header_wins_over_cookie(resolver, codec):
    session = resolver.resolve({"auth_token": codec.issue(ROOT)}, authorization=f"Bearer {codec.issue(BOB)}")
    assert session.identity == BOB


def test_non_bearer_authorization_is_ignored(resolver, codec):
    session = resolver.resolve({"auth_token": codec.issue(ROOT)}, authorization="Basic cm9vdDpwdw==")
    assert session.identity == ROOT


def test_token_wins_over_legacy_cookie(resolver, codec):
    cookies = {
        "auth_token": codec.issue(BOB),
        "auth": _legacy_json("mallory", True, 99),
    }
    session = resolver.resolve(cookies)
    assert session.identity == BOB
    assert session.generation == 3


@pytest.mark.parametrize("bad_token", ["garbage", "a.b.c"])
def test_invalid_token_does_not_fall_through_to_legacy(resolver, bad_token):
    cookies = {"auth_token": bad_token, "auth": _legacy_json("mallory", True)}
    assert resolver.resolve(cookies) is ANONYMOUS


def test_expired_token_does_not_fall_through_to_legacy(resolver, codec):
    expired = codec.issue(ROOT, now=utcnow() - timedelta(days=8))
    cookies = {"auth_token": expired, "auth": "user"}
    assert resolver.resolve(cookies) is ANONYMOUS


def test_legacy_json_cookie(resolver, capsys):
    session = resolver.resolve({"auth": _legacy_json("alice", True, 3)})
    assert session.identity == Identity(id=3, username="alice", is_admin=True)
    assert session.generation == 2
    assert session.legacy
    assert "legacy auth in use" in capsys.readouterr().out


def test_legacy_username_cookie_reserved_admin(resolver, capsys):
    session = resolver.resolve({"auth": "user"})
    assert session.identity == Identity(id=LEGACY_PLACEHOLDER_ID, username="user", is_admin=True)
    assert session.generation == 1
    assert "legacy auth in use" in capsys.readouterr().out


def test_legacy_username_cookie_regular_user(resolver):
    session = resolver.resolve({"auth": "spouse"})
    assert session.identity == Identity(id=LEGACY_PLACEHOLDER_ID, username="spouse", is_admin=False)


def test_unparseable_legacy_cookie_is_anonymous(resolver):
    assert resolver.resolve({"auth": "{not json"}) is ANONYMOUS


def test_legacy_cookies_can_be_switched_off(codec, capsys):
    resolver = SessionResolver(codec, accept_legacy=False)
    assert resolver.resolve({"auth": "user"}) is ANONYMOUS
    assert resolver.resolve({"auth": _legacy_json("alice", True)}) is ANONYMOUS
    assert "legacy auth rejected" in capsys.readouterr().out
    # Tokens still work.
    assert resolver.resolve({"auth_token": codec.issue(BOB)}).identity == BOB


def test_from_config_uses_cookie_names(cfg, codec):
    resolver = SessionResolver.from_config(cfg, codec)
    assert resolver.token_cookie == cfg.AUTH_COOKIE_NAME
    assert resolver.legacy_cookie == cfg.AUTH_LEGACY_COOKIE_NAME
    assert resolver.resolve({cfg.AUTH_COOKIE_NAME: codec.issue(ROOT)}).identity == ROOT
