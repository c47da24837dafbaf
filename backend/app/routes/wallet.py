from __future__ import annotations

import logging
import secrets
from typing import Any

from fastapi import APIRouter, Depends, Request, Response
from pydantic import BaseModel, Field

from ..config import AuthConfig
from ..dependencies import get_config, get_signer, get_store
from ..errors import NOT_CONFIGURED, ApiError
from ..services.cookies import CHALLENGE_COOKIE, CHALLENGE_TTL_SECONDS
from ..services.sessions import issue_session, session_view
from ..services.signing import Signer
from ..services.wallet import build_challenge_message, is_address, new_nonce, nonce_line, recover_signer
from ..storage import ProfileStore, StoreError


logger = logging.getLogger(__name__)

router = APIRouter()


def _text(value: Any) -> str:
    return "" if value is None else str(value)


class WalletChallengeRequest(BaseModel):
    address: Any = Field(None, description="Wallet address (0x + 40 hex)")


class WalletChallengeResponse(BaseModel):
    ok: bool = True
    message: str
    nonce: str
    address: str


class WalletVerifyRequest(BaseModel):
    address: Any = Field(None, description="Wallet address that signed the challenge")
    message: Any = Field(None, description="Challenge message exactly as signed")
    signature: Any = Field(None, description="0x... signature from personal_sign")


@router.post("/challenge", response_model=WalletChallengeResponse)
def wallet_challenge(
    payload: WalletChallengeRequest,
    response: Response,
    config: AuthConfig = Depends(get_config),
    signer: Signer = Depends(get_signer),
    store: ProfileStore = Depends(get_store),
) -> WalletChallengeResponse:
    address = _text(payload.address).strip()
    if not is_address(address):
        raise ApiError(400, "Invalid wallet address.")

    nonce = new_nonce()
    message = build_challenge_message(address, nonce)
    try:
        CHALLENGE_COOKIE.write(
            response,
            signer,
            CHALLENGE_COOKIE.model(address=address.lower(), nonce=nonce),
            config.secure_cookies,
        )
    except Exception:
        logger.exception("[WALLET-CHALLENGE] could not sign challenge cookie")
        raise ApiError(500, NOT_CONFIGURED)
    if config.nonce_ledger:
        now = signer.now()
        store.remember_nonce(address, nonce, expires_at=now + CHALLENGE_TTL_SECONDS, now=now)
    return WalletChallengeResponse(message=message, nonce=nonce, address=address)


@router.post("/verify")
def wallet_verify(
    payload: WalletVerifyRequest,
    request: Request,
    response: Response,
    config: AuthConfig = Depends(get_config),
    signer: Signer = Depends(get_signer),
    store: ProfileStore = Depends(get_store),
):
    rid = secrets.token_hex(4)
    address = _text(payload.address).strip()
    message = _text(payload.message)
    signature = _text(payload.signature)

    if not is_address(address):
        raise ApiError(400, "Invalid wallet address.")
    if not message or not signature:
        raise ApiError(400, "Missing signature payload.")

    try:
        challenge = CHALLENGE_COOKIE.read(request, signer)
    except Exception:
        logger.exception("[WALLET-VERIFY:%s] could not read challenge cookie", rid)
        raise ApiError(500, NOT_CONFIGURED)
    if challenge is None:
        logger.info("[WALLET-VERIFY:%s] no valid challenge cookie", rid)
        raise ApiError(401, "Challenge expired. Try again.")

    if challenge.address != address.lower():
        raise ApiError(401, "Wallet mismatch.")

    if nonce_line(challenge.nonce) not in message:
        raise ApiError(401, "Invalid challenge nonce.")

    recovery = recover_signer(message, signature)
    if not recovery.ok:
        logger.info("[WALLET-VERIFY:%s] signature recovery failed: %s", rid, recovery.error)
        raise ApiError(401, "Invalid signature.")
    recovered = recovery.address
    if recovered != challenge.address:
        raise ApiError(401, "Signature does not match address.")

    if config.nonce_ledger and not store.consume_nonce(challenge.address, challenge.nonce, now=signer.now()):
        logger.info("[WALLET-VERIFY:%s] nonce already used for %s", rid, recovered)
        raise ApiError(401, "Challenge expired. Try again.")

    try:
        user = store.ensure_user_from_identity(provider="wallet", provider_uid=recovered, identifier=recovered)
        store.add_interaction(user.id, "auth_login", 1, {"provider": "wallet"})
    except StoreError as e:
        logger.error("[WALLET-VERIFY:%s] failed to attach wallet %s: %s", rid, recovered, e)
        raise ApiError(500, str(e) or "Failed to attach wallet account.")
    except Exception:
        logger.exception("[WALLET-VERIFY:%s] failed to attach wallet %s", rid, recovered)
        raise ApiError(500, "Failed to attach wallet account.")

    try:
        CHALLENGE_COOKIE.clear(response)
        session = issue_session(response, signer, recovered, recovered, config.secure_cookies)
    except Exception:
        logger.exception("[WALLET-VERIFY:%s] could not sign session cookie", rid)
        raise ApiError(500, NOT_CONFIGURED)

    logger.info("[WALLET-VERIFY:%s] signed in user=%s wallet=%s", rid, user.id, recovered)
    return {
        "ok": True,
        "authenticated": True,
        "session": session_view(session),
        "user": user.to_public(),
    }
