from __future__ import annotations

from typing import Generic, Literal, Optional, Type, TypeVar

from fastapi import Request, Response
from pydantic import BaseModel, Field, ValidationError

from .signing import Signer


CHALLENGE_TTL_SECONDS = 60 * 15
SESSION_TTL_SECONDS = 60 * 60 * 24 * 30


class ChallengePayload(BaseModel):
    address: str
    nonce: str
    iat: Optional[int] = None
    exp: Optional[int] = None


class SessionPayload(BaseModel):
    provider: Literal["wallet"] = "wallet"
    uid: str
    identifier: str
    at: int = Field(..., description="Issue time in epoch milliseconds")
    iat: Optional[int] = None
    exp: Optional[int] = None


P = TypeVar("P", ChallengePayload, SessionPayload)


class SignedCookie(Generic[P]):
    """One httpOnly cookie carrying a signed payload of a single model type."""

    def __init__(self, name: str, model: Type[P], ttl_seconds: int) -> None:
        self.name = name
        self.model = model
        self.ttl_seconds = ttl_seconds

    def write(self, response: Response, signer: Signer, payload: P, secure: bool) -> None:
        body = payload.model_dump(exclude={"iat", "exp"})
        token = signer.sign(body, self.ttl_seconds)
        response.set_cookie(
            self.name,
            token,
            max_age=self.ttl_seconds,
            path="/",
            secure=secure,
            httponly=True,
            samesite="lax",
        )

    def read(self, request: Request, signer: Signer) -> Optional[P]:
        token = request.cookies.get(self.name)
        if not token:
            return None
        envelope = signer.verify(token)
        if envelope is None:
            return None
        try:
            return self.model.model_validate(envelope)
        except ValidationError:
            return None

    def clear(self, response: Response) -> None:
        response.delete_cookie(self.name, path="/")


CHALLENGE_COOKIE: SignedCookie[ChallengePayload] = SignedCookie(
    "siggy_wallet_login", ChallengePayload, CHALLENGE_TTL_SECONDS
)
SESSION_COOKIE: SignedCookie[SessionPayload] = SignedCookie(
    "siggy_profile_session", SessionPayload, SESSION_TTL_SECONDS
)
