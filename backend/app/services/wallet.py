"""Wallet sign-in challenge helpers (EIP-191 personal_sign)."""
from __future__ import annotations

import re
import secrets
from dataclasses import dataclass
from typing import Optional

from eth_account import Account
from eth_account.messages import encode_defunct


ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")
CHALLENGE_TITLE = "Sign in to Siggy Profile"
NONCE_BYTES = 12


def is_address(value: str) -> bool:
    return bool(ADDRESS_RE.match(value or ""))


def new_nonce() -> str:
    return secrets.token_hex(NONCE_BYTES)


def build_challenge_message(address: str, nonce: str) -> str:
    return "\n".join([
        CHALLENGE_TITLE,
        f"Address: {address}",
        f"Nonce: {nonce}",
    ])


def nonce_line(nonce: str) -> str:
    return f"Nonce: {nonce}"


@dataclass(frozen=True)
class Recovery:
    address: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.address is not None


def recover_signer(message: str, signature: str) -> Recovery:
    """Recover the lowercase address that personal_signed ``message``."""
    try:
        recovered = Account.recover_message(encode_defunct(text=message), signature=signature)
    except Exception as e:  # eth_account raises several unrelated types on malformed input
        return Recovery(error=f"{type(e).__name__}: {e}")
    return Recovery(address=recovered.lower())
