from __future__ import annotations

import math
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Optional


class StoreError(Exception):
    pass


class ConflictError(StoreError):
    """A contact (email, handle or wallet) already belongs to another user."""


@dataclass
class UserRecord:
    id: int
    email: str = ""
    discord: str = ""
    twitter: str = ""
    wallet: str = ""
    created_at: int = 0
    updated_at: int = 0

    def to_public(self) -> Dict[str, Any]:
        data = asdict(self)
        return {
            "id": data["id"],
            "email": data["email"],
            "discord": data["discord"],
            "twitter": data["twitter"],
            "wallet": data["wallet"],
            "createdAt": data["created_at"],
            "updatedAt": data["updated_at"],
        }


@dataclass
class InteractionRecord:
    id: int
    type: str
    value: int
    metadata: Optional[Dict[str, Any]] = field(default=None)
    ts: int = 0

    def to_public(self) -> Dict[str, Any]:
        return asdict(self)


def now_ms() -> int:
    return int(time.time() * 1000)


def norm_wallet(wallet: str) -> str:
    return (wallet or "").strip().lower()


def norm_email(email: str) -> str:
    return (email or "").strip().lower()


def norm_handle(handle: str) -> str:
    cleaned = (handle or "").strip().lstrip("@")
    return f"@{cleaned}" if cleaned else ""


MAX_INTERACTION_VALUE = 2**31 - 1


def norm_interaction_value(value: Any) -> int:
    try:
        number = float(value if value is not None else 1)
    except (TypeError, ValueError):
        return 1
    if not math.isfinite(number):
        return 1
    return min(MAX_INTERACTION_VALUE, max(1, math.floor(number)))


def clamp_limit(limit: int) -> int:
    return max(1, min(200, int(limit)))
