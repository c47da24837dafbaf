PROFILE_URL = "/api/profile/me"
INTERACTIONS_URL = "/api/profile/interactions"


def _sign_in(client, account, sign):
    data = client.post("/api/auth/wallet/challenge", json={"address": account.address}).json()
    res = client.post("/api/auth/wallet/verify", json={
        "address": account.address,
        "message": data["message"],
        "signature": sign(data["message"], account.key),
    })
    assert res.status_code == 200
    return res.json()["user"]


def test_profile_requires_session(client):
    assert client.get(PROFILE_URL).status_code == 401
    assert client.patch(PROFILE_URL, json={}).json() == {"ok": False, "error": "Unauthorized"}
    assert client.post(INTERACTIONS_URL, json={"type": "ask_prompt"}).status_code == 401


def test_profile_snapshot(client, alice, sign):
    user = _sign_in(client, alice, sign)
    res = client.get(PROFILE_URL)
    assert res.status_code == 200
    data = res.json()
    assert data["user"]["id"] == user["id"]
    assert data["stats"]["totals"] == {"auth_login": 1}
    assert data["recent"][0]["type"] == "auth_login"
    assert data["recent"][0]["metadata"] == {"provider": "wallet"}
    assert data["session"]["uid"] == alice.address.lower()


def test_track_interaction(client, alice, sign):
    _sign_in(client, alice, sign)
    assert client.post(INTERACTIONS_URL, json={"type": "ask_prompt", "value": "3.9"}).json() == {"ok": True}
    assert client.post(INTERACTIONS_URL, json={"type": "ask_prompt", "value": "lots", "metadata": [1]}).json() == {"ok": True}

    totals = client.get(PROFILE_URL).json()["stats"]["totals"]
    assert totals["ask_prompt"] == 4


def test_track_interaction_rejects_bad_type(client, alice, sign):
    _sign_in(client, alice, sign)
    for kind in ("", "A", "Ask", "1ask", "ask-prompt"):
        res = client.post(INTERACTIONS_URL, json={"type": kind})
        assert res.status_code == 400
        assert res.json()["error"] == "Invalid interaction type."


def test_update_profile(client, alice, sign):
    _sign_in(client, alice, sign)
    res = client.patch(PROFILE_URL, json={"email": "Cat@Siggy.Land", "discord": "meow", "twitter": "@siggy"})
    assert res.status_code == 200
    user = res.json()["user"]
    assert user["email"] == "cat@siggy.land"
    assert user["discord"] == "@meow"
    assert user["twitter"] == "@siggy"
    assert res.json()["stats"]["totals"]["profile_update"] == 1


def test_update_profile_validation(client, alice, sign):
    _sign_in(client, alice, sign)
    cases = [
        ({"email": "not-an-email"}, "Invalid email format."),
        ({"discord": "x"}, "Invalid Discord handle."),
        ({"twitter": "this_handle_is_too_long"}, "Invalid Twitter handle."),
        ({"wallet": "0x12"}, "Invalid wallet address."),
    ]
    for body, error in cases:
        res = client.patch(PROFILE_URL, json=body)
        assert res.status_code == 400
        assert res.json()["error"] == error


def test_update_profile_conflict(app, alice, sign, mallory_key):
    from eth_account import Account
    from fastapi.testclient import TestClient

    first = TestClient(app)
    _sign_in(first, alice, sign)
    assert first.patch(PROFILE_URL, json={"email": "cat@siggy.land"}).status_code == 200

    second = TestClient(app)
    _sign_in(second, Account.from_key(mallory_key), sign)
    res = second.patch(PROFILE_URL, json={"email": "cat@siggy.land"})
    assert res.status_code == 409
    assert res.json()["error"] == "This contact is already linked to another profile."


def test_track_interaction_with_huge_value(client, alice, sign):
    _sign_in(client, alice, sign)
    res = client.post(INTERACTIONS_URL, json={"type": "ask_prompt", "value": 1e300})
    assert res.status_code == 200
    assert res.json() == {"ok": True}
    assert client.get(PROFILE_URL).json()["stats"]["totals"]["ask_prompt"] == 2**31 - 1
