from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    BigInteger,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    create_engine,
    delete,
    func,
    select,
)
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column

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


logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    email: Mapped[Optional[str]] = mapped_column(String(320), unique=True, nullable=True)
    discord_username: Mapped[Optional[str]] = mapped_column(String(64), unique=True, nullable=True)
    twitter_username: Mapped[Optional[str]] = mapped_column(String(64), unique=True, nullable=True)
    wallet_address: Mapped[Optional[str]] = mapped_column(String(80), unique=True, nullable=True)
    created_at: Mapped[int] = mapped_column(BigInteger)
    updated_at: Mapped[int] = mapped_column(BigInteger)


class AuthIdentity(Base):
    __tablename__ = "auth_identities"
    __table_args__ = (UniqueConstraint("provider", "provider_uid"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    provider: Mapped[str] = mapped_column(String(32))
    provider_uid: Mapped[str] = mapped_column(String(256))
    identifier: Mapped[str] = mapped_column(String(256))
    created_at: Mapped[int] = mapped_column(BigInteger)
    updated_at: Mapped[int] = mapped_column(BigInteger)


class InteractionEvent(Base):
    __tablename__ = "interaction_events"
    __table_args__ = (Index("idx_interactions_user_type_time", "user_id", "type", "created_at"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"))
    type: Mapped[str] = mapped_column(String(64))
    value: Mapped[int] = mapped_column(Integer, default=1)
    metadata_json: Mapped[Optional[str]] = mapped_column("metadata", Text, nullable=True)
    created_at: Mapped[int] = mapped_column(BigInteger)


class WalletNonce(Base):
    __tablename__ = "wallet_nonces"

    nonce: Mapped[str] = mapped_column(String(128), primary_key=True)
    wallet_address: Mapped[str] = mapped_column(String(80), index=True)
    expires_at: Mapped[float] = mapped_column(Float)


def _to_record(user: User) -> UserRecord:
    return UserRecord(
        id=int(user.id),
        email=user.email or "",
        discord=user.discord_username or "",
        twitter=user.twitter_username or "",
        wallet=user.wallet_address or "",
        created_at=int(user.created_at),
        updated_at=int(user.updated_at),
    )


def _parse_metadata(raw: Optional[str]) -> Optional[Dict[str, Any]]:
    if not raw:
        return None
    try:
        parsed = json.loads(raw)
    except ValueError:
        return None
    return parsed if isinstance(parsed, dict) else None


class DatabaseStore:
    kind = "database"

    def __init__(self, db_url: str) -> None:
        connect_args = {"check_same_thread": False} if db_url.startswith("sqlite") else {}
        self._engine = create_engine(db_url, pool_pre_ping=True, connect_args=connect_args)
        Base.metadata.create_all(self._engine)

    def _find_identity(self, session: Session, provider: str, provider_uid: str) -> Optional[AuthIdentity]:
        stmt = select(AuthIdentity).where(
            AuthIdentity.provider == provider,
            AuthIdentity.provider_uid == provider_uid,
        )
        return session.scalars(stmt).first()

    def get_user(self, user_id: int) -> Optional[UserRecord]:
        with Session(self._engine) as session:
            user = session.get(User, user_id)
            return _to_record(user) if user else None

    def ensure_user_from_identity(self, provider: str, provider_uid: str, identifier: str) -> UserRecord:
        provider_uid = (provider_uid or "").strip()
        identifier = (identifier or "").strip()
        if not provider_uid or not identifier:
            raise StoreError("Invalid identity payload.")
        try:
            return self._ensure_user(provider, provider_uid, identifier)
        except IntegrityError:
            # Another request attached the same identity first; its row wins.
            logger.info("[STORAGE] identity insert raced for %s, re-reading", provider_uid)
        try:
            return self._ensure_user(provider, provider_uid, identifier)
        except IntegrityError as e:
            logger.error("[STORAGE] could not attach identity %s: %s", provider_uid, e.orig)
            raise StoreError("Failed to attach wallet account.") from e

    def _ensure_user(self, provider: str, provider_uid: str, identifier: str) -> UserRecord:
        wallet = norm_wallet(identifier)
        now = now_ms()
        with Session(self._engine) as session:
            identity = self._find_identity(session, provider, provider_uid)
            if identity is not None:
                identity.identifier = identifier
                identity.updated_at = now
                user = session.get(User, identity.user_id)
                if user is None:
                    raise StoreError("User not found for identity.")
            else:
                user = session.scalars(select(User).where(User.wallet_address == wallet)).first()
                if user is None:
                    user = User(wallet_address=wallet, created_at=now, updated_at=now)
                    session.add(user)
                    session.flush()
                session.add(AuthIdentity(
                    user_id=user.id,
                    provider=provider,
                    provider_uid=provider_uid,
                    identifier=identifier,
                    created_at=now,
                    updated_at=now,
                ))
            user.wallet_address = wallet
            user.updated_at = now
            session.commit()
            return _to_record(user)

    def get_user_by_identity(self, provider_uid: str, provider: str = "wallet") -> Optional[UserRecord]:
        with Session(self._engine) as session:
            identity = self._find_identity(session, provider, (provider_uid or "").strip())
            if identity is None:
                return None
            user = session.get(User, identity.user_id)
            return _to_record(user) if user else None

    def _sync_wallet_identity(self, session: Session, user: User, now: int) -> None:
        identity = self._find_identity(session, "wallet", user.wallet_address)
        if identity is None:
            session.add(AuthIdentity(
                user_id=user.id,
                provider="wallet",
                provider_uid=user.wallet_address,
                identifier=user.wallet_address,
                created_at=now,
                updated_at=now,
            ))
        else:
            identity.identifier = user.wallet_address
            identity.updated_at = now

    def update_user_profile(
        self,
        user_id: int,
        email: Optional[str] = None,
        discord: Optional[str] = None,
        twitter: Optional[str] = None,
        wallet: Optional[str] = None,
    ) -> UserRecord:
        now = now_ms()
        with Session(self._engine) as session:
            user = session.get(User, user_id)
            if user is None:
                raise StoreError("User not found.")
            if email is not None:
                user.email = norm_email(email) or None
            if discord is not None:
                user.discord_username = norm_handle(discord) or None
            if twitter is not None:
                user.twitter_username = norm_handle(twitter) or None
            if wallet is not None:
                user.wallet_address = norm_wallet(wallet) or None
            user.updated_at = now

            try:
                if user.wallet_address:
                    self._sync_wallet_identity(session, user, now)
                session.commit()
            except IntegrityError as e:
                session.rollback()
                raise ConflictError(str(e.orig)) from e
            return _to_record(user)

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
        with Session(self._engine) as session:
            if session.get(User, user_id) is None:
                raise StoreError("User not found.")
            event = InteractionEvent(
                user_id=user_id,
                type=kind,
                value=norm_interaction_value(value),
                metadata_json=json.dumps(metadata) if metadata else None,
                created_at=now_ms(),
            )
            session.add(event)
            try:
                session.commit()
            except (SQLAlchemyError, OverflowError) as e:
                session.rollback()
                logger.error("[STORAGE] interaction insert failed for user=%s: %s", user_id, e)
                raise StoreError("Failed to record interaction.") from e
            return InteractionRecord(
                id=int(event.id),
                type=event.type,
                value=int(event.value),
                metadata=_parse_metadata(event.metadata_json),
                ts=int(event.created_at),
            )

    def list_recent_interactions(self, user_id: int, limit: int = 20) -> List[InteractionRecord]:
        stmt = (
            select(InteractionEvent)
            .where(InteractionEvent.user_id == user_id)
            .order_by(InteractionEvent.created_at.desc(), InteractionEvent.id.desc())
            .limit(clamp_limit(limit))
        )
        with Session(self._engine) as session:
            return [
                InteractionRecord(
                    id=int(row.id),
                    type=row.type,
                    value=int(row.value or 0),
                    metadata=_parse_metadata(row.metadata_json),
                    ts=int(row.created_at),
                )
                for row in session.scalars(stmt)
            ]

    def get_interaction_totals(self, user_id: int) -> Dict[str, int]:
        stmt = (
            select(InteractionEvent.type, func.sum(InteractionEvent.value))
            .where(InteractionEvent.user_id == user_id)
            .group_by(InteractionEvent.type)
        )
        with Session(self._engine) as session:
            return {kind: int(total or 0) for kind, total in session.execute(stmt)}

    def remember_nonce(self, wallet_address: str, nonce: str, expires_at: float, now: float) -> None:
        with Session(self._engine) as session:
            session.execute(delete(WalletNonce).where(WalletNonce.expires_at <= now))
            session.add(WalletNonce(nonce=nonce, wallet_address=norm_wallet(wallet_address), expires_at=expires_at))
            session.commit()

    def consume_nonce(self, wallet_address: str, nonce: str, now: float) -> bool:
        stmt = delete(WalletNonce).where(
            WalletNonce.nonce == nonce,
            WalletNonce.wallet_address == norm_wallet(wallet_address),
            WalletNonce.expires_at > now,
        )
        with Session(self._engine) as session:
            result = session.execute(stmt)
            session.commit()
            return result.rowcount == 1
