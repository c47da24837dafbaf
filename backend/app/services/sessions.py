from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from fastapi import Request, Response

from ..storage import ProfileStore, UserRecord
from .cookies import CHALLENGE_COOKIE, SESSION_COOKIE, SessionPayload
from .signing import Signer


@dataclass
class AuthContext:
    session: SessionPayload
    user: UserRecord


def session_view(session: SessionPayload) -> Dict[str, Any]:
    return {
        "provider": session.provider,
        "uid": session.uid,
        "identifier": session.identifier,
        "at": session.at,
    }


def issue_session(
    response: Response,
    signer: Signer,
    uid: str,
    identifier: str,
    secure: bool,
    at: Optional[int] = None,
) -> SessionPayload:
    session = SessionPayload(
        provider="wallet",
        uid=uid,
        identifier=identifier,
        at=at if at is not None else signer.now() * 1000,
    )
    SESSION_COOKIE.write(response, signer, session, secure)
    return session


def get_authenticated_user(request: Request, signer: Signer, store: ProfileStore) -> Optional[AuthContext]:
    """Resolve the session cookie to ``AuthContext``; ``None`` means signed out."""
    session = SESSION_COOKIE.read(request, signer)
    if session is None or not session.uid.strip():
        return None
    user = store.get_user_by_identity(session.uid, provider=session.provider)
    if user is None:
        return None
    return AuthContext(session=session, user=user)


def logout(response: Response) -> None:
    SESSION_COOKIE.clear(response)
    CHALLENGE_COOKIE.clear(response)
