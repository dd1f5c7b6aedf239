from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request, Response
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from starlette.exceptions import HTTPException as StarletteHTTPException

from boxmgr import __version__, inventory
from boxmgr.auth import get_current_user, get_session, require_admin
from boxmgr.auth.crud import (
    LastAdminError,
    UsernameExistsError,
    bootstrap_admin_if_needed,
    create_first_admin,
    create_user,
    delete_user,
    ensure_auth_secret,
    get_user_by_id,
    has_users,
    identity_from_row,
    list_users,
    public_user,
    touch_last_login,
    update_user,
    verify_user_credentials,
)
from boxmgr.auth.identity import Identity
from boxmgr.auth.security import ConfigurationError, TokenCodec
from boxmgr.auth.session import Session, SessionResolver
from boxmgr.config import Config, load_config
from boxmgr.db import connect, init_db, list_app_config, upsert_app_config


def _debug(msg: str) -> None:
    print(f"[api] {msg}")


INVALID_CREDENTIALS = "Invalid credentials"
MISSING_CREDENTIALS = "Username and password are required"
USERNAME_EXISTS = "Username already exists"
LAST_ADMIN_DELETE = "Cannot delete the last admin user"
LAST_ADMIN_DEMOTE = "Cannot remove admin rights from the last admin user"
SETUP_DONE = "Setup already completed. Users already exist."

# app_config keys the settings API must never expose or accept.
_RESERVED_SETTINGS = ("auth_secret", "admin_repair_done")


def get_cfg(request: Request) -> Config:
    cfg = getattr(request.app.state, "cfg", None)
    if cfg is None:
        raise HTTPException(status_code=500, detail="server_config_missing")
    return cfg


def get_codec(request: Request) -> TokenCodec:
    codec = getattr(request.app.state, "codec", None)
    if codec is None:
        raise HTTPException(status_code=500, detail="server_config_missing")
    return codec


router = APIRouter()


# -----------------------------
# Health
# -----------------------------


@router.get("/health")
def health() -> Dict[str, Any]:
    return {"status": "ok"}


# -----------------------------
# Auth cookies
# -----------------------------


def _cookie_secure(cfg: Config) -> bool:
    """Return whether auth cookies should be marked Secure."""
    # Browsers require Secure when SameSite=None
    if cfg.AUTH_COOKIE_SAMESITE.lower() == "none":
        return True
    if cfg.AUTH_COOKIE_SECURE is None:
        return cfg.is_production
    return bool(cfg.AUTH_COOKIE_SECURE)


def _set_auth_cookies(response: Response, *, token: str, cfg: Config, max_age: int) -> None:
    """Set the session cookie pair and retire the legacy cookie."""
    samesite = cfg.AUTH_COOKIE_SAMESITE.lower()
    secure = _cookie_secure(cfg)

    # Signed token, never readable by page scripts.
    response.set_cookie(
        key=cfg.AUTH_COOKIE_NAME,
        value=token,
        httponly=True,
        samesite=samesite,
        secure=secure,
        max_age=max_age,
        path=cfg.AUTH_COOKIE_PATH,
        domain=cfg.AUTH_COOKIE_DOMAIN,
    )

    # UI hint only; carries no identity.
    response.set_cookie(
        key=cfg.AUTH_FLAG_COOKIE_NAME,
        value="true",
        httponly=False,
        samesite=samesite,
        secure=secure,
        max_age=max_age,
        path=cfg.AUTH_COOKIE_PATH,
        domain=cfg.AUTH_COOKIE_DOMAIN,
    )

    response.delete_cookie(key=cfg.AUTH_LEGACY_COOKIE_NAME, path=cfg.AUTH_COOKIE_PATH, domain=cfg.AUTH_COOKIE_DOMAIN)


def _clear_auth_cookies(response: Response, cfg: Config) -> None:
    for key in (cfg.AUTH_COOKIE_NAME, cfg.AUTH_FLAG_COOKIE_NAME, cfg.AUTH_LEGACY_COOKIE_NAME):
        response.delete_cookie(key=key, path=cfg.AUTH_COOKIE_PATH, domain=cfg.AUTH_COOKIE_DOMAIN)


# -----------------------------
# Auth
# -----------------------------


class Credentials(BaseModel):
    # Optional so a missing field is our 400, not a validation error.
    username: Optional[str] = None
    password: Optional[str] = None


def _require_credentials(payload: Credentials) -> tuple[str, str]:
    username = (payload.username or "").strip()
    password = payload.password or ""
    if not username or not password:
        raise HTTPException(status_code=400, detail=MISSING_CREDENTIALS)
    return username, password


@router.post("/login")
def login(
    payload: Credentials,
    response: Response,
    cfg: Config = Depends(get_cfg),
    codec: TokenCodec = Depends(get_codec),
) -> Dict[str, Any]:
    username, password = _require_credentials(payload)

    with connect(cfg.DB_DSN) as conn:
        row = verify_user_credentials(conn, username, password)
        if row is None:
            _debug(f"login failed for username={username.lower()}")
            raise HTTPException(status_code=401, detail=INVALID_CREDENTIALS)
        touch_last_login(conn, int(row["id"]))
        identity = identity_from_row(row)
        user = public_user(row)

    token = codec.issue(identity)
    _set_auth_cookies(response, token=token, cfg=cfg, max_age=codec.max_age_seconds)

    return {"success": True, "isAdmin": identity.is_admin, "redirect": cfg.LOGIN_REDIRECT, "user": user}


@router.post("/logout")
def logout(response: Response, cfg: Config = Depends(get_cfg)) -> Dict[str, Any]:
    """Clear browser session cookies."""
    _clear_auth_cookies(response, cfg)
    return {"success": True}


@router.post("/setup")
def setup(payload: Credentials, cfg: Config = Depends(get_cfg)) -> Dict[str, Any]:
    """Create the first admin. Only allowed while there are no users at all."""
    username, password = _require_credentials(payload)

    with connect(cfg.DB_DSN) as conn:
        if has_users(conn):
            raise HTTPException(status_code=403, detail=SETUP_DONE)
        user = create_first_admin(conn, username=username, password=password)

    if user is None:
        raise HTTPException(status_code=403, detail=SETUP_DONE)

    _debug(f"Setup created initial admin user: username={user['username']}")
    return {"success": True, "user": user}


@router.get("/auth/check-users")
def check_users(cfg: Config = Depends(get_cfg)) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        return {"hasUsers": has_users(conn)}


@router.api_route("/auth/verify", methods=["GET", "POST"])
def verify(session: Session = Depends(get_session)) -> Dict[str, Any]:
    if session.identity is None:
        return {"authenticated": False}
    out: Dict[str, Any] = {"authenticated": True, "user": session.identity.to_public()}
    if session.legacy:
        out["legacy"] = True
    return out


# -----------------------------
# Users (admin)
# -----------------------------


class CreateUserRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    username: Optional[str] = None
    password: Optional[str] = None
    is_admin: bool = Field(default=False, alias="isAdmin")


class UpdateUserRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    username: Optional[str] = None
    password: Optional[str] = None
    is_admin: Optional[bool] = Field(default=None, alias="isAdmin")


@router.get("/users")
def users_list(
    cfg: Config = Depends(get_cfg),
    _admin: Identity = Depends(require_admin),
) -> List[Dict[str, Any]]:
    with connect(cfg.DB_DSN) as conn:
        return list_users(conn)


@router.post("/users", status_code=201)
def users_create(
    payload: CreateUserRequest,
    cfg: Config = Depends(get_cfg),
    admin: Identity = Depends(require_admin),
) -> Dict[str, Any]:
    username, password = _require_credentials(Credentials(username=payload.username, password=payload.password))
    with connect(cfg.DB_DSN) as conn:
        try:
            u = create_user(conn, username=username, password=password, is_admin=payload.is_admin)
        except UsernameExistsError:
            raise HTTPException(status_code=409, detail=USERNAME_EXISTS)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
    _debug(f"user created: id={u['id']} username={u['username']} admin={u['isAdmin']} by={admin.username}")
    return u


@router.get("/users/{user_id}")
def users_get(
    user_id: int,
    cfg: Config = Depends(get_cfg),
    _admin: Identity = Depends(require_admin),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        row = get_user_by_id(conn, user_id)
        if row is None:
            raise HTTPException(status_code=404, detail="User not found")
        return public_user(row)


@router.put("/users/{user_id}")
def users_update(
    user_id: int,
    payload: UpdateUserRequest,
    cfg: Config = Depends(get_cfg),
    admin: Identity = Depends(require_admin),
) -> Dict[str, Any]:
    # A blank password field means "leave unchanged".
    password = payload.password if payload.password and payload.password.strip() else None

    with connect(cfg.DB_DSN) as conn:
        if get_user_by_id(conn, user_id) is None:
            raise HTTPException(status_code=404, detail="User not found")
        try:
            updated = update_user(
                conn,
                user_id,
                username=payload.username,
                password=password,
                is_admin=payload.is_admin,
            )
        except UsernameExistsError:
            raise HTTPException(status_code=409, detail=USERNAME_EXISTS)
        except LastAdminError:
            raise HTTPException(status_code=400, detail=LAST_ADMIN_DEMOTE)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))

        if not updated:
            raise HTTPException(status_code=400, detail="No update data provided")
        row = get_user_by_id(conn, user_id)

    _debug(f"user updated: id={user_id} by={admin.username}")
    return public_user(row)


@router.delete("/users/{user_id}")
def users_delete(
    user_id: int,
    cfg: Config = Depends(get_cfg),
    admin: Identity = Depends(require_admin),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        if get_user_by_id(conn, user_id) is None:
            raise HTTPException(status_code=404, detail="User not found")
        if not delete_user(conn, user_id):
            raise HTTPException(status_code=400, detail=LAST_ADMIN_DELETE)

    _debug(f"user deleted: id={user_id} by={admin.username}")
    return {"success": True}


# -----------------------------
# Inventory
# -----------------------------


class CategoryRequest(BaseModel):
    name: Optional[str] = None
    color: Optional[str] = None


class BoxRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    number: Optional[int] = None
    name: Optional[str] = None
    category_id: Optional[int] = Field(default=None, alias="categoryId")
    notes: Optional[str] = None


class ItemRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = None
    box_id: Optional[int] = Field(default=None, alias="boxId")


class SettingRequest(BaseModel):
    key: Optional[str] = None
    value: Optional[str] = None
    description: Optional[str] = None


def _inventory_error(e: Exception) -> HTTPException:
    if isinstance(e, inventory.NotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    return HTTPException(status_code=400, detail=str(e))


@router.get("/categories")
def categories_list(cfg: Config = Depends(get_cfg), _user: Identity = Depends(get_current_user)) -> List[Dict[str, Any]]:
    with connect(cfg.DB_DSN) as conn:
        return inventory.list_categories(conn)


@router.post("/categories", status_code=201)
def categories_create(
    payload: CategoryRequest,
    cfg: Config = Depends(get_cfg),
    _user: Identity = Depends(get_current_user),
) -> Dict[str, Any]:
    if not payload.name or not payload.color:
        raise HTTPException(status_code=400, detail="Name and color are required")
    with connect(cfg.DB_DSN) as conn:
        try:
            return inventory.create_category(conn, name=payload.name, color=payload.color)
        except ValueError as e:
            raise _inventory_error(e)


@router.get("/categories/{category_id}")
def categories_get(
    category_id: int,
    cfg: Config = Depends(get_cfg),
    _user: Identity = Depends(get_current_user),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        cat = inventory.get_category(conn, category_id)
        if cat is None:
            raise HTTPException(status_code=404, detail="Category not found")
        cat["boxes"] = inventory.list_boxes(conn, category_id=category_id)
        return cat


@router.put("/categories/{category_id}")
def categories_update(
    category_id: int,
    payload: CategoryRequest,
    cfg: Config = Depends(get_cfg),
    _user: Identity = Depends(get_current_user),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        if inventory.get_category(conn, category_id) is None:
            raise HTTPException(status_code=404, detail="Category not found")
        try:
            return inventory.update_category(conn, category_id, name=payload.name, color=payload.color)
        except ValueError as e:
            raise _inventory_error(e)


@router.delete("/categories/{category_id}")
def categories_delete(
    category_id: int,
    cfg: Config = Depends(get_cfg),
    _user: Identity = Depends(get_current_user),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        if not inventory.delete_category(conn, category_id):
            raise HTTPException(status_code=404, detail="Category not found")
    return {"success": True}


@router.get("/boxes")
def boxes_list(
    category_id: Optional[int] = Query(None, alias="categoryId"),
    cfg: Config = Depends(get_cfg),
    _user: Identity = Depends(get_current_user),
) -> List[Dict[str, Any]]:
    with connect(cfg.DB_DSN) as conn:
        return inventory.list_boxes(conn, category_id=category_id)


@router.post("/boxes", status_code=201)
def boxes_create(
    payload: BoxRequest,
    cfg: Config = Depends(get_cfg),
    _user: Identity = Depends(get_current_user),
) -> Dict[str, Any]:
    if payload.number is None or not payload.name or payload.category_id is None:
        raise HTTPException(status_code=400, detail="Number, name, and category ID are required")
    with connect(cfg.DB_DSN) as conn:
        try:
            return inventory.create_box(
                conn,
                number=payload.number,
                name=payload.name,
                category_id=payload.category_id,
                notes=payload.notes,
            )
        except (ValueError, LookupError) as e:
            raise _inventory_error(e)


@router.get("/boxes/{box_id}")
def boxes_get(
    box_id: int,
    cfg: Config = Depends(get_cfg),
    _user: Identity = Depends(get_current_user),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        box = inventory.get_box(conn, box_id, with_items=True)
        if box is None:
            raise HTTPException(status_code=404, detail="Box not found")
        return box


@router.put("/boxes/{box_id}")
def boxes_update(
    box_id: int,
    payload: BoxRequest,
    cfg: Config = Depends(get_cfg),
    _user: Identity = Depends(get_current_user),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        if inventory.get_box(conn, box_id) is None:
            raise HTTPException(status_code=404, detail="Box not found")
        try:
            return inventory.update_box(
                conn,
                box_id,
                number=payload.number,
                name=payload.name,
                category_id=payload.category_id,
                notes=payload.notes,
            )
        except (ValueError, LookupError) as e:
            raise _inventory_error(e)


@router.delete("/boxes/{box_id}")
def boxes_delete(
    box_id: int,
    cfg: Config = Depends(get_cfg),
    _user: Identity = Depends(get_current_user),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        if not inventory.delete_box(conn, box_id):
            raise HTTPException(status_code=404, detail="Box not found")
    return {"success": True}


@router.get("/boxes/{box_id}/items")
def box_items_list(
    box_id: int,
    cfg: Config = Depends(get_cfg),
    _user: Identity = Depends(get_current_user),
) -> List[Dict[str, Any]]:
    with connect(cfg.DB_DSN) as conn:
        if inventory.get_box(conn, box_id) is None:
            raise HTTPException(status_code=404, detail="Box not found")
        return inventory.list_box_items(conn, box_id)


@router.post("/boxes/{box_id}/items", status_code=201)
def box_items_create(
    box_id: int,
    payload: ItemRequest,
    cfg: Config = Depends(get_cfg),
    _user: Identity = Depends(get_current_user),
) -> Dict[str, Any]:
    if not payload.name:
        raise HTTPException(status_code=400, detail="Item name is required")
    with connect(cfg.DB_DSN) as conn:
        try:
            return inventory.create_item(conn, box_id=box_id, name=payload.name)
        except (ValueError, LookupError) as e:
            raise _inventory_error(e)


@router.get("/items/{item_id}")
def items_get(
    item_id: int,
    cfg: Config = Depends(get_cfg),
    _user: Identity = Depends(get_current_user),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        item = inventory.get_item(conn, item_id)
        if item is None:
            raise HTTPException(status_code=404, detail="Item not found")
        return item


@router.put("/items/{item_id}")
def items_update(
    item_id: int,
    payload: ItemRequest,
    cfg: Config = Depends(get_cfg),
    _user: Identity = Depends(get_current_user),
) -> Dict[str, Any]:
    if not payload.name:
        raise HTTPException(status_code=400, detail="Item name is required")
    with connect(cfg.DB_DSN) as conn:
        if inventory.get_item(conn, item_id) is None:
            raise HTTPException(status_code=404, detail="Item not found")
        try:
            return inventory.update_item(conn, item_id, name=payload.name, box_id=payload.box_id)
        except (ValueError, LookupError) as e:
            raise _inventory_error(e)


@router.delete("/items/{item_id}")
def items_delete(
    item_id: int,
    cfg: Config = Depends(get_cfg),
    _user: Identity = Depends(get_current_user),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        if not inventory.delete_item(conn, item_id):
            raise HTTPException(status_code=404, detail="Item not found")
    return {"success": True}


@router.get("/search")
def search(
    q: Optional[str] = None,
    cfg: Config = Depends(get_cfg),
    _user: Identity = Depends(get_current_user),
) -> List[Dict[str, Any]]:
    if not q or not q.strip():
        raise HTTPException(status_code=400, detail="Search query is required")
    with connect(cfg.DB_DSN) as conn:
        return inventory.search_items(conn, q)


# -----------------------------
# Settings
# -----------------------------


@router.get("/settings")
def settings_list(cfg: Config = Depends(get_cfg), _user: Identity = Depends(get_current_user)) -> List[Dict[str, Any]]:
    with connect(cfg.DB_DSN) as conn:
        rows = list_app_config(conn)
    return [r for r in rows if r["key"] not in _RESERVED_SETTINGS]


@router.post("/settings")
def settings_save(
    payload: SettingRequest,
    cfg: Config = Depends(get_cfg),
    _user: Identity = Depends(get_current_user),
) -> Dict[str, Any]:
    key = (payload.key or "").strip()
    if not key or payload.value is None:
        raise HTTPException(status_code=400, detail="Key and value are required")
    if key in _RESERVED_SETTINGS:
        raise HTTPException(status_code=400, detail="reserved_key")
    with connect(cfg.DB_DSN) as conn:
        upsert_app_config(conn, key, payload.value, description=payload.description)
    return {"success": True, "message": "Setting saved successfully"}


# -----------------------------
# App
# -----------------------------


def _error_response(status_code: int, message: Any, headers: Optional[Dict[str, str]] = None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message}, headers=headers)


def create_app(cfg: Optional[Config] = None) -> FastAPI:
    cfg = cfg or load_config()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        init_db(cfg.DB_DSN)

        boot = bootstrap_admin_if_needed(cfg)
        if boot:
            _debug(f"Bootstrapped initial admin user: username={boot.get('username')}")

        codec = TokenCodec(ensure_auth_secret(cfg), expires_minutes=cfg.AUTH_TOKEN_EXPIRE_MINUTES)
        app.state.cfg = cfg
        app.state.codec = codec
        app.state.resolver = SessionResolver.from_config(cfg, codec)
        if cfg.AUTH_ACCEPT_LEGACY_COOKIES:
            _debug("Legacy auth cookies are accepted (AUTH_ACCEPT_LEGACY_COOKIES=1)")
        yield

    app = FastAPI(title="Box Manager", version=__version__, lifespan=lifespan)

    # CORS is only needed when the frontend is served from another origin in development.
    cors_origins = [o.strip() for o in (cfg.CORS_ALLOW_ORIGINS or "").split(",") if o.strip()]
    if cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=cors_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return _error_response(exc.status_code, exc.detail, headers=getattr(exc, "headers", None))

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content={"error": "invalid_request", "details": jsonable_encoder(exc.errors())},
        )

    @app.exception_handler(ConfigurationError)
    async def configuration_error_handler(request: Request, exc: ConfigurationError):
        _debug(f"ERROR: configuration error on {request.url.path}: {exc}")
        return _error_response(500, "server_config_error")

    app.include_router(router)
    return app


app = create_app()
