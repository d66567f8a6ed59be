"""
Test suite for the HTTP shell.

Tests:
- registration / auth enforcement
- verify + details + rental sync through the API, with status mapping
- listing filters and administrative dev guards

Run: pytest nftmarket/test_routes.py -v
"""

from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from conftest import ALICE, BOB, CONTRACT, NOW, TOKEN_URI
from nftmarket.datastore import DocumentStore
from nftmarket.main import create_app

PASSWORD = "correct-horse"


@pytest.fixture
def client(tmp_path, chain, resolver, clock):
    app = create_app(
        store=DocumentStore(str(tmp_path / "api.json")),
        chain=chain,
        resolver=resolver,
        start_scheduler=False,
        clock=clock,
    )
    with TestClient(app) as c:
        yield c


def _register(client, username, wallet=None):
    body = {"username": username, "password": PASSWORD}
    if wallet:
        body["wallet_address"] = wallet
    resp = client.post("/accounts/register", json=body)
    assert resp.status_code == 200, f"Register failed: {resp.text}"
    return {"Authorization": f"Bearer {resp.json()['access_token']}"}


class TestAccounts:
    def test_health(self, client):
        assert client.get("/health").json() == {"status": "ok"}

    def test_register_and_me(self, client):
        headers = _register(client, "alice", ALICE.upper().replace("0X", "0x"))
        me = client.get("/accounts/me", headers=headers).json()
        assert me["username"] == "alice"
        assert me["wallet_address"] == ALICE
        assert me["stats"] == {"total_owned": 0, "total_rented": 0, "total_rented_out": 0}

    def test_duplicate_username_conflicts(self, client):
        _register(client, "alice")
        resp = client.post("/accounts/register", json={"username": "alice", "password": PASSWORD})
        assert resp.status_code == 409

    def test_duplicate_wallet_conflicts(self, client):
        _register(client, "alice", ALICE)
        resp = client.post("/accounts/register", json={"username": "bob", "password": PASSWORD, "wallet_address": ALICE})
        assert resp.status_code == 409

    def test_invalid_wallet_rejected(self, client):
        resp = client.post("/accounts/register", json={"username": "x", "password": PASSWORD, "wallet_address": "0x123"})
        assert resp.status_code == 422

    def test_me_requires_auth(self, client):
        assert client.get("/accounts/me").status_code in (401, 403)

    def test_bad_token_is_401(self, client):
        resp = client.get("/accounts/me", headers={"Authorization": "Bearer not-a-jwt"})
        assert resp.status_code == 401

    def test_link_wallet(self, client):
        headers = _register(client, "alice")
        resp = client.post("/accounts/wallet", json={"wallet_address": ALICE}, headers=headers)
        assert resp.status_code == 200
        assert resp.json()["wallet_address"] == ALICE

    def test_short_password_rejected(self, client):
        resp = client.post("/accounts/register", json={"username": "x", "password": "123"})
        assert resp.status_code == 422

    def test_password_hash_is_never_returned(self, client):
        resp = client.post("/accounts/register", json={"username": "alice", "password": PASSWORD})
        assert "password_hash" not in resp.json()["account"]
        headers = {"Authorization": f"Bearer {resp.json()['access_token']}"}
        me = client.get("/accounts/me", headers=headers).json()
        assert "password_hash" not in me
        assert "password" not in me


class TestLogin:
    def test_login_issues_working_token(self, client):
        _register(client, "alice", ALICE)
        resp = client.post("/accounts/login", json={"username": " alice ", "password": PASSWORD})
        assert resp.status_code == 200, resp.text
        body = resp.json()
        assert body["token_type"] == "bearer"
        assert body["account"]["wallet_address"] == ALICE

        headers = {"Authorization": f"Bearer {body['access_token']}"}
        assert client.get("/accounts/me", headers=headers).json()["username"] == "alice"

    def test_wrong_password_is_401(self, client):
        _register(client, "alice")
        resp = client.post("/accounts/login", json={"username": "alice", "password": "wrong-password"})
        assert resp.status_code == 401
        assert resp.json()["detail"] == "Invalid credentials"

    def test_unknown_user_is_401(self, client):
        resp = client.post("/accounts/login", json={"username": "nobody", "password": PASSWORD})
        assert resp.status_code == 401

    def test_password_is_stored_hashed(self, client):
        _register(client, "alice")
        account = client.app.state.engine.accounts.find_by_username("alice")
        assert account.password_hash
        assert account.password_hash != PASSWORD
        assert len(account.password_hash) == 64


class TestVerifyRoute:
    def test_verify_defaults_to_callers_wallet(self, client, chain):
        chain.mint(CONTRACT, 1, ALICE, TOKEN_URI)
        headers = _register(client, "alice", ALICE)

        resp = client.post("/api/nft/verify", json={"contract_address": CONTRACT, "token_id": 1}, headers=headers)
        assert resp.status_code == 200, resp.text
        body = resp.json()
        assert body["success"] is True
        assert body["current_owner"] == ALICE
        assert body["asset"]["name"] == "Rental Hero #7"

        owned = client.get("/accounts/me/owned", headers=headers).json()
        assert owned["total"] == 1
        assert owned["items"][0]["id"] == body["asset"]["id"]

    def test_verify_requires_auth(self, client):
        resp = client.post("/api/nft/verify", json={"contract_address": CONTRACT, "token_id": 1})
        assert resp.status_code in (401, 403)

    def test_mismatch_is_403_with_current_owner(self, client, chain):
        chain.mint(CONTRACT, 1, ALICE)
        headers = _register(client, "bob", BOB)
        resp = client.post("/api/nft/verify", json={"contract_address": CONTRACT, "token_id": 1}, headers=headers)
        assert resp.status_code == 403
        detail = resp.json()["detail"]
        assert detail["code"] == "OWNERSHIP_MISMATCH"
        assert detail["current_owner"] == ALICE

    def test_invalid_contract_is_400(self, client):
        headers = _register(client, "alice")
        resp = client.post("/api/nft/verify", json={"contract_address": "0x12", "token_id": 1}, headers=headers)
        assert resp.status_code == 400
        assert resp.json()["detail"]["code"] == "INVALID_CONTRACT_ADDRESS"

    def test_unknown_token_is_404(self, client):
        headers = _register(client, "alice")
        resp = client.post("/api/nft/verify", json={"contract_address": CONTRACT, "token_id": "7"}, headers=headers)
        assert resp.status_code == 404

    def test_ledger_down_is_502(self, client, chain, unreachable):
        chain.mint(CONTRACT, 1, ALICE)
        chain.fail["owner_of"] = unreachable
        headers = _register(client, "alice")
        resp = client.post("/api/nft/verify", json={"contract_address": CONTRACT, "token_id": 1}, headers=headers)
        assert resp.status_code == 502
        assert resp.json()["detail"]["code"] == "EXTERNAL_SERVICE_ERROR"

    def test_details_is_public_and_read_only(self, client, chain):
        chain.mint(CONTRACT, 1, ALICE, TOKEN_URI)
        resp = client.get("/api/nft/details", params={"contract_address": CONTRACT, "token_id": "1"})
        assert resp.status_code == 200
        assert resp.json()["contract"]["symbol"] == "HERO"
        assert client.get("/api/nft").json()["total"] == 0


class TestListing:
    @pytest.fixture
    def seeded(self, client, chain):
        headers = _register(client, "alice", ALICE)
        chain.mint(CONTRACT, 1, ALICE, TOKEN_URI)
        chain.mint(CONTRACT, 2, ALICE)
        for token in (1, 2):
            client.post("/api/nft/verify", json={"contract_address": CONTRACT, "token_id": token}, headers=headers)
        return headers

    def test_name_search(self, client, seeded):
        resp = client.get("/api/nft", params={"q": "rental hero"})
        assert [a["token_id"] for a in resp.json()["items"]] == ["1"]

    def test_sort_and_paging(self, client, seeded):
        resp = client.get("/api/nft", params={"sort": "token_id", "order": "asc", "limit": 1, "skip": 1})
        body = resp.json()
        assert body["total"] == 2
        assert [a["token_id"] for a in body["items"]] == ["2"]

    def test_invalid_sort_field(self, client, seeded):
        assert client.get("/api/nft", params={"sort": "owner"}).status_code == 400

    @pytest.mark.parametrize("q, expected", [
        ("(", 0),
        ("(a+)+$", 0),
        (".", 0),
        ("#", 2),
        ("HERO #7", 1),
    ])
    def test_search_is_literal(self, client, seeded, q, expected):
        resp = client.get("/api/nft", params={"q": q})
        assert resp.status_code == 200
        assert resp.json()["total"] == expected

    def test_get_unknown_asset(self, client):
        assert client.get("/api/nft/does-not-exist").status_code == 404


class TestRentalRoutes:
    def test_sync_mirrors_renter(self, client, chain):
        alice = _register(client, "alice", ALICE)
        bob = _register(client, "bob", BOB)
        chain.mint(CONTRACT, 1, ALICE)
        client.post("/api/nft/verify", json={"contract_address": CONTRACT, "token_id": 1}, headers=alice)
        chain.set_user(CONTRACT, 1, BOB, NOW + 3600)

        resp = client.post("/api/rentals/sync", json={"contract_address": CONTRACT, "token_id": 1}, headers=bob)
        assert resp.status_code == 200, resp.text
        assert resp.json()["active"] is True

        assert client.get("/accounts/me/rented", headers=bob).json()["total"] == 1
        assert client.get("/accounts/me/rented-out", headers=alice).json()["total"] == 1
        assert client.get("/accounts/me/owned", headers=alice).json()["total"] == 0

        listed = client.get("/api/nft", params={"is_rented": "true"}).json()
        assert listed["total"] == 1

    def test_sync_bad_token_is_400(self, client):
        headers = _register(client, "alice")
        resp = client.post("/api/rentals/sync", json={"contract_address": CONTRACT, "token_id": -4}, headers=headers)
        assert resp.status_code == 400
        assert resp.json()["detail"]["code"] == "INVALID_TOKEN_ID"


class TestAdminDevGuards:
    def test_sweep_returns_403_when_not_dev(self, client):
        with patch("nftmarket.dependencies.IS_DEV", False):
            resp = client.post("/api/rentals/sweep")
        assert resp.status_code == 403
        assert "only available in dev" in resp.json()["detail"].lower()

    def test_delete_returns_403_when_not_dev(self, client):
        with patch("nftmarket.dependencies.IS_DEV", False):
            assert client.delete("/api/nft/anything").status_code == 403

    def test_sweep_in_dev(self, client, chain):
        headers = _register(client, "alice", ALICE)
        chain.mint(CONTRACT, 1, ALICE)
        client.post("/api/nft/verify", json={"contract_address": CONTRACT, "token_id": 1}, headers=headers)
        with patch("nftmarket.dependencies.IS_DEV", True):
            resp = client.post("/api/rentals/sweep")
        assert resp.status_code == 200
        assert resp.json()["synced"] == 1

    def test_delete_in_dev(self, client, chain):
        headers = _register(client, "alice", ALICE)
        chain.mint(CONTRACT, 1, ALICE)
        asset_id = client.post(
            "/api/nft/verify", json={"contract_address": CONTRACT, "token_id": 1}, headers=headers
        ).json()["asset"]["id"]
        with patch("nftmarket.dependencies.IS_DEV", True):
            assert client.delete(f"/api/nft/{asset_id}").status_code == 200
        assert client.get(f"/api/nft/{asset_id}").status_code == 404
