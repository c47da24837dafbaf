from __future__ import annotations

from typing import Optional

from fastapi import Depends, Request

from .config import AuthConfig
from .errors import ApiError
from .services.sessions import AuthContext, get_authenticated_user
from .services.signing import Signer
from .storage import ProfileStore


def get_config(request: Request) -> AuthConfig:
    return request.app.state.auth_config


def get_signer(request: Request) -> Signer:
    return request.app.state.signer


def get_store(request: Request) -> ProfileStore:
    return request.app.state.store


def optional_auth(
    request: Request,
    signer: Signer = Depends(get_signer),
    store: ProfileStore = Depends(get_store),
) -> Optional[AuthContext]:
    return get_authenticated_user(request, signer, store)


def require_auth(auth: Optional[AuthContext] = Depends(optional_auth)) -> AuthContext:
    if auth is None:
        raise ApiError(401, "Unauthorized")
    return auth
