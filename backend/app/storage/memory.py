from __future__ import annotations

import threading
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Optional, Tuple

from .records import (
    ConflictError,
    InteractionRecord,
    StoreError,
    UserRecord,
    clamp_limit,
    norm_email,
    norm_handle,
    norm_interaction_value,
    norm_wallet,
    now_ms,
)


@dataclass
class _Identity:
    user_id: int
    identifier: str


class MemoryStore:
    kind = "memory"

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._users: Dict[int, UserRecord] = {}
        self._identities: Dict[Tuple[str, str], _Identity] = {}
        self._events: Dict[int, List[InteractionRecord]] = {}
        # nonce -> (wallet, expires_at)
        self._wallet_nonces: Dict[str, Tuple[str, float]] = {}
        self._next_user_id = 1
        self._next_event_id = 1

    def _find_user_by_field(self, field: str, value: str) -> Optional[UserRecord]:
        if not value:
            return None
        for user in self._users.values():
            if getattr(user, field) == value:
                return user
        return None

    def _create_user(self, wallet: str) -> UserRecord:
        now = now_ms()
        user = UserRecord(id=self._next_user_id, wallet=wallet, created_at=now, updated_at=now)
        self._users[user.id] = user
        self._next_user_id += 1
        return user

    def _set_wallet(self, user: UserRecord, wallet: str) -> None:
        holder = self._find_user_by_field("wallet", wallet)
        if holder is not None and holder.id != user.id:
            raise ConflictError("UNIQUE constraint failed: users.wallet_address")
        user.wallet = wallet
        user.updated_at = now_ms()

    def get_user(self, user_id: int) -> Optional[UserRecord]:
        with self._lock:
            user = self._users.get(user_id)
            return replace(user) if user else None

    def ensure_user_from_identity(self, provider: str, provider_uid: str, identifier: str) -> UserRecord:
        provider_uid = (provider_uid or "").strip()
        identifier = (identifier or "").strip()
        if not provider_uid or not identifier:
            raise StoreError("Invalid identity payload.")

        with self._lock:
            identity = self._identities.get((provider, provider_uid))
            if identity is not None:
                user = self._users.get(identity.user_id)
                if user is None:
                    raise StoreError("User not found for identity.")
                identity.identifier = identifier
                self._set_wallet(user, norm_wallet(identifier))
                return replace(user)

            wallet = norm_wallet(identifier)
            user = self._find_user_by_field("wallet", wallet) or self._create_user(wallet)
            self._identities[(provider, provider_uid)] = _Identity(user_id=user.id, identifier=identifier)
            self._set_wallet(user, wallet)
            return replace(user)

    def get_user_by_identity(self, provider_uid: str, provider: str = "wallet") -> Optional[UserRecord]:
        with self._lock:
            identity = self._identities.get((provider, (provider_uid or "").strip()))
            if identity is None:
                return None
            user = self._users.get(identity.user_id)
            return replace(user) if user else None

    def update_user_profile(
        self,
        user_id: int,
        email: Optional[str] = None,
        discord: Optional[str] = None,
        twitter: Optional[str] = None,
        wallet: Optional[str] = None,
    ) -> UserRecord:
        with self._lock:
            current = self._users.get(user_id)
            if current is None:
                raise StoreError("User not found.")
            updated = replace(
                current,
                email=norm_email(email) if email is not None else current.email,
                discord=norm_handle(discord) if discord is not None else current.discord,
                twitter=norm_handle(twitter) if twitter is not None else current.twitter,
                wallet=norm_wallet(wallet) if wallet is not None else current.wallet,
                updated_at=now_ms(),
            )
            for field in ("email", "discord", "twitter", "wallet"):
                holder = self._find_user_by_field(field, getattr(updated, field))
                if holder is not None and holder.id != user_id:
                    raise ConflictError(f"UNIQUE constraint failed: users.{field}")
            self._users[user_id] = updated

            if updated.wallet:
                identity = self._identities.get(("wallet", updated.wallet))
                if identity is None:
                    self._identities[("wallet", updated.wallet)] = _Identity(user_id=user_id, identifier=updated.wallet)
                else:
                    identity.identifier = updated.wallet
            return replace(updated)

    def add_interaction(
        self,
        user_id: int,
        type: str,
        value: Any = 1,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> InteractionRecord:
        kind = (type or "").strip()
        if not kind:
            raise StoreError("Interaction type is required.")
        with self._lock:
            if user_id not in self._users:
                raise StoreError("User not found.")
            event = InteractionRecord(
                id=self._next_event_id,
                type=kind,
                value=norm_interaction_value(value),
                metadata=dict(metadata) if metadata else None,
                ts=now_ms(),
            )
            self._next_event_id += 1
            self._events.setdefault(user_id, []).append(event)
            return event

    def list_recent_interactions(self, user_id: int, limit: int = 20) -> List[InteractionRecord]:
        with self._lock:
            events = list(self._events.get(user_id, []))
        events.sort(key=lambda e: (e.ts, e.id), reverse=True)
        return events[: clamp_limit(limit)]

    def get_interaction_totals(self, user_id: int) -> Dict[str, int]:
        totals: Dict[str, int] = {}
        with self._lock:
            for event in self._events.get(user_id, []):
                totals[event.type] = totals.get(event.type, 0) + event.value
        return totals

    def remember_nonce(self, wallet_address: str, nonce: str, expires_at: float, now: float) -> None:
        with self._lock:
            expired = [key for key, (_, expiry) in self._wallet_nonces.items() if expiry <= now]
            for key in expired:
                del self._wallet_nonces[key]
            self._wallet_nonces[nonce] = (norm_wallet(wallet_address), expires_at)

    def consume_nonce(self, wallet_address: str, nonce: str, now: float) -> bool:
        with self._lock:
            entry = self._wallet_nonces.get(nonce)
            if not entry:
                return False
            address, expires_at = entry
            if address != norm_wallet(wallet_address) or now >= expires_at:
                return False
            del self._wallet_nonces[nonce]
            return True
