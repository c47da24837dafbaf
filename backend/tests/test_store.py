import pytest
from sqlalchemy.exc import IntegrityError

from backend.app.storage import ConflictError, DatabaseStore, MemoryStore, StoreError, init_store
from backend.app.storage.records import MAX_INTERACTION_VALUE


WALLET = "0xabcdefabcdefabcdefabcdefabcdefabcdefabcd"
OTHER = "0x1234567890123456789012345678901234567890"


@pytest.fixture(params=["memory", "database"])
def profile_store(request, tmp_path):
    if request.param == "memory":
        return MemoryStore()
    return DatabaseStore(f"sqlite:///{tmp_path / 'profile.sqlite'}")


def test_ensure_user_creates_then_reuses(profile_store):
    user = profile_store.ensure_user_from_identity("wallet", WALLET, WALLET)
    assert user.wallet == WALLET
    assert user.created_at > 0

    again = profile_store.ensure_user_from_identity("wallet", WALLET, WALLET.upper().replace("0X", "0x"))
    assert again.id == user.id
    assert again.wallet == WALLET


def test_ensure_user_rejects_blank_identity(profile_store):
    with pytest.raises(StoreError):
        profile_store.ensure_user_from_identity("wallet", "  ", WALLET)


def test_get_user_by_identity(profile_store):
    assert profile_store.get_user_by_identity(WALLET) is None
    user = profile_store.ensure_user_from_identity("wallet", WALLET, WALLET)
    assert profile_store.get_user_by_identity(f" {WALLET} ").id == user.id


def test_update_profile_normalizes_and_syncs_wallet(profile_store):
    user = profile_store.ensure_user_from_identity("wallet", WALLET, WALLET)
    updated = profile_store.update_user_profile(
        user.id, email=" Cat@Siggy.Land ", discord="@@meow", twitter="siggy", wallet=OTHER.upper().replace("0X", "0x")
    )
    assert updated.email == "cat@siggy.land"
    assert updated.discord == "@meow"
    assert updated.twitter == "@siggy"
    assert updated.wallet == OTHER
    assert profile_store.get_user_by_identity(OTHER).id == user.id


def test_update_profile_conflict(profile_store):
    first = profile_store.ensure_user_from_identity("wallet", WALLET, WALLET)
    second = profile_store.ensure_user_from_identity("wallet", OTHER, OTHER)
    profile_store.update_user_profile(first.id, email="cat@siggy.land")
    with pytest.raises(ConflictError):
        profile_store.update_user_profile(second.id, email="cat@siggy.land")


def test_interactions_totals_and_recent(profile_store):
    user = profile_store.ensure_user_from_identity("wallet", WALLET, WALLET)
    profile_store.add_interaction(user.id, "ask_prompt", 2.7)
    profile_store.add_interaction(user.id, "ask_prompt", 0)
    profile_store.add_interaction(user.id, "market_trade", 1, {"marketId": "m1"})

    assert profile_store.get_interaction_totals(user.id) == {"ask_prompt": 3, "market_trade": 1}
    recent = profile_store.list_recent_interactions(user.id, limit=2)
    assert [event.type for event in recent] == ["market_trade", "ask_prompt"]
    assert recent[0].metadata == {"marketId": "m1"}

    with pytest.raises(StoreError):
        profile_store.add_interaction(user.id, " ")


def test_nonce_ledger_consumes_once(profile_store):
    profile_store.remember_nonce(WALLET.upper().replace("0X", "0x"), "aa", expires_at=160.0, now=100.0)
    assert profile_store.consume_nonce(WALLET, "bb", now=100.0) is False
    assert profile_store.consume_nonce(OTHER, "aa", now=100.0) is False
    assert profile_store.consume_nonce(WALLET, "aa", now=100.0) is True
    assert profile_store.consume_nonce(WALLET, "aa", now=100.0) is False


def test_nonce_ledger_holds_several_nonces_per_wallet(profile_store):
    profile_store.remember_nonce(WALLET, "aa", expires_at=160.0, now=100.0)
    profile_store.remember_nonce(WALLET, "bb", expires_at=170.0, now=110.0)
    assert profile_store.consume_nonce(WALLET, "aa", now=120.0) is True
    assert profile_store.consume_nonce(WALLET, "bb", now=120.0) is True


def test_nonce_ledger_expiry_follows_given_clock(profile_store):
    profile_store.remember_nonce(WALLET, "aa", expires_at=160.0, now=100.0)
    assert profile_store.consume_nonce(WALLET, "aa", now=160.0) is False

    profile_store.remember_nonce(WALLET, "bb", expires_at=260.0, now=200.0)
    assert profile_store.consume_nonce(WALLET, "aa", now=200.0) is False
    assert profile_store.consume_nonce(WALLET, "bb", now=259.0) is True


def test_interaction_value_is_capped(profile_store):
    user = profile_store.ensure_user_from_identity("wallet", WALLET, WALLET)
    event = profile_store.add_interaction(user.id, "ask_prompt", 1e300)
    assert event.value == MAX_INTERACTION_VALUE
    assert profile_store.get_interaction_totals(user.id) == {"ask_prompt": MAX_INTERACTION_VALUE}


def test_repeated_identity_conflict_raises_store_error(tmp_path, monkeypatch):
    store = DatabaseStore(f"sqlite:///{tmp_path / 'profile.sqlite'}")

    def conflicting(provider, provider_uid, identifier):
        raise IntegrityError("INSERT INTO auth_identities", {}, Exception("UNIQUE constraint failed"))

    monkeypatch.setattr(store, "_ensure_user", conflicting)
    with pytest.raises(StoreError) as excinfo:
        store.ensure_user_from_identity("wallet", WALLET, WALLET)
    assert str(excinfo.value) == "Failed to attach wallet account."
    assert "UNIQUE" not in str(excinfo.value)


def test_init_store_falls_back_to_memory(monkeypatch):
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.delenv("DB_URL", raising=False)
    assert isinstance(init_store(), MemoryStore)


def test_init_store_uses_database_url(tmp_path):
    store = init_store(f"sqlite:///{tmp_path / 'p.sqlite'}")
    assert isinstance(store, DatabaseStore)
