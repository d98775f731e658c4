from __future__ import annotations

import asyncio
import time
from dataclasses import replace

from fastapi.testclient import TestClient

from app.api import dependencies
from tests.conftest import (
    DEFAULT_PASSWORD,
    add_member,
    auth,
    invite_member,
    last_invite_token,
    register_org,
)


def _login(client: TestClient, email: str, password: str = DEFAULT_PASSWORD, **extra):
    return client.post("/v1/auth/login", json={"email": email, "password": password, **extra})


# ---- register ----


def test_register_creates_org_and_owner(client: TestClient) -> None:
    body = register_org(client, "Nimbus Works")
    assert body["success"] is True
    assert body["token"]
    assert body["user"]["role"] == "owner"
    assert body["user"]["isActive"] is True
    org = body["organization"]
    assert org["slug"] == "nimbus-works"
    assert org["plan"] == "free"
    assert org["limits"] == {"maxInterns": 5, "maxAdmins": 2, "maxStorageMB": 100}
    assert org["usage"] == {"currentInterns": 0, "currentAdmins": 1, "storageUsedMB": 0.0}

    stored = dependencies.org_repo._by_slug["nimbus-works"]
    assert str(stored.owner_id) == body["user"]["id"]


def test_register_duplicate_org_name(client: TestClient) -> None:
    register_org(client, "Nimbus Works")
    resp = client.post(
        "/v1/auth/register",
        json={
            "organizationName": "nimbus works",
            "name": "Someone Else",
            "email": "else@nimbus.test",
            "password": DEFAULT_PASSWORD,
        },
    )
    assert resp.status_code == 400
    assert resp.json()["message"] == "Organization name already taken. Please choose another."


def test_register_rejects_short_password(client: TestClient) -> None:
    resp = client.post(
        "/v1/auth/register",
        json={
            "organizationName": "Tiny Co",
            "name": "Tina",
            "email": "tina@tiny.test",
            "password": "123",
        },
    )
    assert resp.status_code == 400
    assert resp.json()["field"] == "password"


def test_register_missing_field_is_400(client: TestClient) -> None:
    resp = client.post("/v1/auth/register", json={"name": "No Org"})
    assert resp.status_code == 400
    assert resp.json()["success"] is False


# ---- login ----


def test_login_success_and_me(client: TestClient) -> None:
    register_org(client, "Login Org", email="boss@login.test")
    resp = _login(client, "BOSS@login.test")
    assert resp.status_code == 200
    token = resp.json()["token"]

    resp = client.get("/v1/auth/me", headers=auth(token))
    assert resp.status_code == 200
    assert resp.json()["user"]["email"] == "boss@login.test"
    assert resp.json()["organization"]["slug"] == "login-org"


def test_login_wrong_password(client: TestClient) -> None:
    register_org(client, "Login Org", email="boss@login.test")
    resp = _login(client, "boss@login.test", "not-the-password")
    assert resp.status_code == 401
    assert resp.json() == {"success": False, "message": "Invalid credentials"}


def test_login_unknown_email(client: TestClient) -> None:
    resp = _login(client, "nobody@nowhere.test")
    assert resp.status_code == 401


def test_login_email_in_two_orgs_needs_slug(client: TestClient) -> None:
    register_org(client, "First Org", email="shared@multi.test")
    register_org(client, "Second Org", email="shared@multi.test")

    resp = _login(client, "shared@multi.test")
    assert resp.status_code == 400

    resp = _login(client, "shared@multi.test", organization="second-org")
    assert resp.status_code == 200
    assert resp.json()["organization"]["slug"] == "second-org"


def test_me_requires_token(client: TestClient) -> None:
    resp = client.get("/v1/auth/me")
    assert resp.status_code == 401
    assert resp.headers.get("www-authenticate") == "Bearer"

    resp = client.get("/v1/auth/me", headers=auth("not-a-jwt"))
    assert resp.status_code == 401
    assert resp.json()["message"] == "Invalid token"


# ---- invitations ----


def test_invite_creates_pending_member(client: TestClient) -> None:
    owner = register_org(client)
    resp = invite_member(client, owner["token"], "New.Intern@Acme.test", name="Nia")
    assert resp.status_code == 201
    body = resp.json()
    assert body["emailSent"] is True
    user = body["user"]
    assert user["email"] == "new.intern@acme.test"
    assert user["role"] == "intern"
    assert user["isActive"] is False
    assert user["invitePending"] is True

    # A pending member does not hold a seat yet.
    me = client.get("/v1/auth/me", headers=auth(owner["token"])).json()
    assert me["organization"]["usage"]["currentInterns"] == 0


def test_accept_invite_activates_and_takes_seat(client: TestClient) -> None:
    owner = register_org(client)
    invite_member(client, owner["token"], "nia@acme.test")

    resp = client.post(
        f"/v1/auth/accept-invite/{last_invite_token()}",
        json={"password": "fresh-pass", "name": "Nia Park"},
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["user"]["isActive"] is True
    assert body["user"]["isEmailVerified"] is True
    assert body["user"]["invitePending"] is False
    assert body["user"]["name"] == "Nia Park"

    me = client.get("/v1/auth/me", headers=auth(owner["token"])).json()
    assert me["organization"]["usage"]["currentInterns"] == 1
    assert _login(client, "nia@acme.test", "fresh-pass").status_code == 200


def test_invite_token_is_single_use(client: TestClient) -> None:
    owner = register_org(client)
    invite_member(client, owner["token"], "nia@acme.test")
    token = last_invite_token()

    first = client.post(f"/v1/auth/accept-invite/{token}", json={"password": DEFAULT_PASSWORD})
    assert first.status_code == 200
    again = client.post(f"/v1/auth/accept-invite/{token}", json={"password": DEFAULT_PASSWORD})
    assert again.status_code == 400
    assert again.json()["message"] == "Invalid or expired invitation"


def test_expired_invite_rejected(client: TestClient) -> None:
    owner = register_org(client)
    user_id = invite_member(client, owner["token"], "late@acme.test").json()["user"]["id"]
    pending = next(
        u for u in dependencies.user_repo._by_id.values() if str(u.id) == user_id
    )
    asyncio.run(
        dependencies.user_repo.update(pending.id, invite_token_expires=int(time.time()) - 1)
    )

    resp = client.post(
        f"/v1/auth/accept-invite/{last_invite_token()}", json={"password": DEFAULT_PASSWORD}
    )
    assert resp.status_code == 400


def test_invite_duplicate_email(client: TestClient) -> None:
    owner = register_org(client)
    invite_member(client, owner["token"], "dup@acme.test")
    resp = invite_member(client, owner["token"], "dup@acme.test")
    assert resp.status_code == 400
    assert resp.json()["message"] == "User already exists in this organization"


def test_only_owner_invites_admins(client: TestClient) -> None:
    owner = register_org(client)
    admin = add_member(client, owner["token"], "ada@acme.test", role="admin")

    resp = invite_member(client, admin["token"], "ben@acme.test", role="admin")
    assert resp.status_code == 403

    resp = invite_member(client, admin["token"], "ivy@acme.test", role="intern")
    assert resp.status_code == 201


def test_interns_cannot_invite(client: TestClient) -> None:
    owner = register_org(client)
    intern = add_member(client, owner["token"], "ivy@acme.test")
    resp = invite_member(client, intern["token"], "friend@acme.test")
    assert resp.status_code == 403


def test_owner_role_cannot_be_invited(client: TestClient) -> None:
    owner = register_org(client)
    resp = invite_member(client, owner["token"], "boss2@acme.test", role="owner")
    assert resp.status_code == 400


def test_intern_limit_blocks_invite(client: TestClient) -> None:
    owner = register_org(client)
    for i in range(5):
        add_member(client, owner["token"], f"intern{i}@acme.test")

    resp = invite_member(client, owner["token"], "sixth@acme.test")
    assert resp.status_code == 403
    body = resp.json()
    assert body["upgradeRequired"] is True
    assert body["message"] == "Intern limit reached (5). Please upgrade."


def test_admin_limit_counts_owner(client: TestClient) -> None:
    owner = register_org(client)
    add_member(client, owner["token"], "ada@acme.test", role="admin")
    resp = invite_member(client, owner["token"], "ben@acme.test", role="admin")
    assert resp.status_code == 403
    assert resp.json()["upgradeRequired"] is True


def test_accept_rechecks_seat(client: TestClient) -> None:
    owner = register_org(client)
    for i in range(4):
        add_member(client, owner["token"], f"intern{i}@acme.test")
    # Two invites outstanding for the last seat.
    invite_member(client, owner["token"], "a@acme.test")
    token_a = last_invite_token()
    invite_member(client, owner["token"], "b@acme.test")
    token_b = last_invite_token()

    ok = client.post(f"/v1/auth/accept-invite/{token_a}", json={"password": DEFAULT_PASSWORD})
    assert ok.status_code == 200
    late = client.post(f"/v1/auth/accept-invite/{token_b}", json={"password": DEFAULT_PASSWORD})
    assert late.status_code == 403
    assert late.json()["upgradeRequired"] is True


def test_deactivated_organization_is_locked_out(client: TestClient) -> None:
    owner = register_org(client, "Closing Co")
    org = dependencies.org_repo._by_slug["closing-co"]
    dependencies.org_repo._store(replace(org, is_active=False))

    resp = client.get("/v1/auth/me", headers=auth(owner["token"]))
    assert resp.status_code == 403
    assert resp.json()["message"] == "Organization has been deactivated"

    resp = _login(client, "owner@closing-co.test")
    assert resp.status_code == 401


def test_login_ignores_unaccepted_invite_in_other_org(client: TestClient) -> None:
    register_org(client, "Home Org", email="roam@multi.test")
    other = register_org(client, "Other Org")
    invite_member(client, other["token"], "roam@multi.test")

    resp = _login(client, "roam@multi.test")
    assert resp.status_code == 200
    assert resp.json()["organization"]["slug"] == "home-org"
