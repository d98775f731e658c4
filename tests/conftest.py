from __future__ import annotations

import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

# Ensure repo root is on sys.path so `import app` works under pytest.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.api import dependencies  # noqa: E402
from app.main import app  # noqa: E402
from app.services import mailer as mailer_module  # noqa: E402
from app.services import storage  # noqa: E402
from app.services.cache import cache_service  # noqa: E402
from app.services.storage import LocalFileStorage  # noqa: E402

DEFAULT_PASSWORD = "password123"


@pytest.fixture(autouse=True)
def reset_repos() -> None:
    """Clear the in-memory repositories between tests."""
    dependencies.org_repo._by_id.clear()
    dependencies.org_repo._by_slug.clear()
    dependencies.user_repo._by_id.clear()
    dependencies.report_repo._store.clear()


@pytest.fixture(autouse=True)
def reset_cache() -> None:
    if hasattr(cache_service, "_store"):
        cache_service._store.clear()  # type: ignore[union-attr]


@pytest.fixture(autouse=True)
def reset_outbox() -> None:
    if hasattr(mailer_module.mailer, "outbox"):
        mailer_module.mailer.outbox.clear()  # type: ignore[union-attr]


@pytest.fixture(autouse=True)
def local_storage(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> LocalFileStorage:
    """Every test writes attachments under its own tmp directory."""
    backend = LocalFileStorage(tmp_path / "uploads")
    monkeypatch.setattr(storage, "storage_backend", backend)
    return backend


@pytest.fixture
def client() -> TestClient:
    return TestClient(app)


# ---------------------------------------------------------------------------
# Tenant helpers: drive the real signup and invitation endpoints.
# ---------------------------------------------------------------------------


def auth(token: str | None) -> dict[str, str]:
    if token is None:
        return {}
    return {"Authorization": f"Bearer {token}"}


def register_org(
    client: TestClient,
    org_name: str = "Acme Labs",
    *,
    email: str | None = None,
    name: str = "Olive Owner",
) -> dict:
    """Sign up an organization; returns the response body (token, user, organization)."""
    slug = org_name.lower().replace(" ", "-")
    resp = client.post(
        "/v1/auth/register",
        json={
            "organizationName": org_name,
            "name": name,
            "email": email or f"owner@{slug}.test",
            "password": DEFAULT_PASSWORD,
        },
    )
    assert resp.status_code == 201, resp.text
    return resp.json()


def invite_member(
    client: TestClient,
    inviter_token: str,
    email: str,
    role: str = "intern",
    name: str | None = None,
):
    return client.post(
        "/v1/auth/invite",
        json={"email": email, "role": role, "name": name},
        headers=auth(inviter_token),
    )


def last_invite_token() -> str:
    return mailer_module.mailer.outbox[-1].token  # type: ignore[union-attr]


def add_member(
    client: TestClient,
    inviter_token: str,
    email: str,
    role: str = "intern",
    name: str | None = None,
) -> dict:
    """Invite and accept in one go; returns the accept-invite body."""
    resp = invite_member(client, inviter_token, email, role, name)
    assert resp.status_code == 201, resp.text
    resp = client.post(
        f"/v1/auth/accept-invite/{last_invite_token()}",
        json={"password": DEFAULT_PASSWORD},
    )
    assert resp.status_code == 200, resp.text
    return resp.json()


def create_report(
    client: TestClient,
    token: str,
    *,
    type: str = "daily",
    summary: str = "Wrote unit tests for the billing module",
    submit_now: bool = False,
    file: tuple[str, bytes, str] | None = None,
):
    data = {"type": type, "summary": summary, "submitNow": str(submit_now).lower()}
    files = {"file": file} if file is not None else None
    return client.post("/v1/reports", data=data, files=files, headers=auth(token))


@pytest.fixture
def tenant(client: TestClient) -> dict[str, dict]:
    """One organization with an owner, an admin and two interns."""
    owner = register_org(client, "Acme Labs")
    admin = add_member(client, owner["token"], "ada@acme.test", role="admin", name="Ada")
    intern = add_member(client, owner["token"], "ivy@acme.test", name="Ivy")
    other = add_member(client, owner["token"], "otto@acme.test", name="Otto")
    return {"owner": owner, "admin": admin, "intern": intern, "other_intern": other}
