from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Response

from ..dependencies import optional_auth
from ..services.sessions import AuthContext, logout, session_view


router = APIRouter()


@router.get("/session")
def read_session(auth: Optional[AuthContext] = Depends(optional_auth)):
    if auth is None:
        return {"ok": True, "authenticated": False, "session": None}
    return {
        "ok": True,
        "authenticated": True,
        "session": session_view(auth.session),
        "user": auth.user.to_public(),
    }


@router.post("/logout")
def sign_out(response: Response):
    logout(response)
    return {"ok": True}
