import pytest
from eth_account import Account
from eth_account.messages import encode_defunct
from fastapi.testclient import TestClient

from backend.app.config import AuthConfig
from backend.app.main import create_app
from backend.app.storage import DatabaseStore, MemoryStore


# Known test keys; never used outside tests.
ALICE_KEY = "50c8e358cc974aaaa6e460641e53f78bdc550fd372984aa78ef8fd27c751e6f4"
MALLORY_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"
T0 = 1_700_000_000.0


class FakeClock:
    def __init__(self, now: float = T0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def sign_text(message: str, private_key: str) -> str:
    signed = Account.sign_message(encode_defunct(text=message), private_key=private_key)
    return "0x" + bytes(signed.signature).hex()


@pytest.fixture
def alice():
    return Account.from_key(ALICE_KEY)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture(params=["memory", "database"])
def store(request, tmp_path):
    if request.param == "memory":
        return MemoryStore()
    return DatabaseStore(f"sqlite:///{tmp_path / 'profile.sqlite'}")


@pytest.fixture
def auth_config():
    return AuthConfig(secret="test-secret", secret_source="explicit")


@pytest.fixture
def app(auth_config, store, clock):
    return create_app(config=auth_config, store=store, clock=clock)


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def sign():
    return sign_text


@pytest.fixture
def mallory_key():
    return MALLORY_KEY
