from __future__ import annotations

import logging
import re
from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from ..dependencies import get_store, require_auth
from ..errors import ApiError
from ..services.sessions import AuthContext, session_view
from ..services.wallet import is_address
from ..storage import ConflictError, ProfileStore, StoreError
from ..storage.records import norm_interaction_value


logger = logging.getLogger(__name__)

router = APIRouter()

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
DISCORD_RE = re.compile(r"^[a-zA-Z0-9._-]{2,32}$")
TWITTER_RE = re.compile(r"^[a-zA-Z0-9_]{1,15}$")
INTERACTION_TYPE_RE = re.compile(r"^[a-z][a-z0-9_]{1,63}$")
RECENT_LIMIT = 20


def _text(value: Any) -> str:
    return "" if value is None else str(value)


def _valid_handle(handle: str, pattern: re.Pattern) -> bool:
    normalized = handle.lstrip("@")
    return not normalized or bool(pattern.match(normalized))


class ProfilePatchRequest(BaseModel):
    email: Any = None
    discord: Any = None
    twitter: Any = None
    wallet: Any = None


class InteractionRequest(BaseModel):
    type: Any = None
    value: Any = None
    metadata: Any = None


def _snapshot(store: ProfileStore, user_id: int):
    return {
        "stats": {"totals": store.get_interaction_totals(user_id)},
        "recent": [event.to_public() for event in store.list_recent_interactions(user_id, RECENT_LIMIT)],
    }


@router.get("/me")
def get_profile(auth: AuthContext = Depends(require_auth), store: ProfileStore = Depends(get_store)):
    user = store.get_user(auth.user.id)
    if user is None:
        raise ApiError(401, "Unauthorized")
    return {
        "ok": True,
        "user": user.to_public(),
        **_snapshot(store, user.id),
        "session": session_view(auth.session),
    }


@router.patch("/me")
def update_profile(
    payload: ProfilePatchRequest,
    auth: AuthContext = Depends(require_auth),
    store: ProfileStore = Depends(get_store),
):
    email = _text(payload.email).strip().lower()
    discord = _text(payload.discord).strip()
    twitter = _text(payload.twitter).strip()
    wallet = _text(payload.wallet).strip()

    if email and not EMAIL_RE.match(email):
        raise ApiError(400, "Invalid email format.")
    if not _valid_handle(discord, DISCORD_RE):
        raise ApiError(400, "Invalid Discord handle.")
    if not _valid_handle(twitter, TWITTER_RE):
        raise ApiError(400, "Invalid Twitter handle.")
    if wallet and not is_address(wallet):
        raise ApiError(400, "Invalid wallet address.")

    try:
        user = store.update_user_profile(auth.user.id, email=email, discord=discord, twitter=twitter, wallet=wallet)
        store.add_interaction(auth.user.id, "profile_update", 1)
    except ConflictError:
        raise ApiError(409, "This contact is already linked to another profile.")
    except StoreError as e:
        logger.error("[PROFILE] update failed for user=%s: %s", auth.user.id, e)
        raise ApiError(500, str(e) or "Profile update failed.")
    return {"ok": True, "user": user.to_public(), **_snapshot(store, user.id)}


@router.post("/interactions")
def track_interaction(
    payload: InteractionRequest,
    auth: AuthContext = Depends(require_auth),
    store: ProfileStore = Depends(get_store),
):
    kind = _text(payload.type).strip()
    if not INTERACTION_TYPE_RE.match(kind):
        raise ApiError(400, "Invalid interaction type.")
    metadata = payload.metadata if isinstance(payload.metadata, dict) else None
    store.add_interaction(auth.user.id, kind, norm_interaction_value(payload.value), metadata)
    return {"ok": True}
