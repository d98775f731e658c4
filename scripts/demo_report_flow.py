"""Demo: walk one report from draft to graded using FastAPI TestClient.

Uses the in-memory repositories and local file storage, so no database,
Redis or S3 is needed.

Run with:
    python scripts/demo_report_flow.py
"""

from __future__ import annotations

from fastapi.testclient import TestClient

from app.main import app
from app.services import mailer as mailer_module

PASSWORD = "demo-pass"


def _auth(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def main() -> None:
    client = TestClient(app)

    # ── Step 1: register an organization ────────────────────────────
    r = client.post(
        "/v1/auth/register",
        json={
            "organizationName": "Demo Labs",
            "name": "Dana Owner",
            "email": "owner@demo.test",
            "password": PASSWORD,
        },
    )
    owner = r.json()["token"]
    usage = r.json()["organization"]["usage"]
    print(f"1. POST /v1/auth/register        → {r.status_code}  usage={usage}")

    # ── Step 2: invite an intern and accept ─────────────────────────
    r = client.post(
        "/v1/auth/invite",
        json={"email": "ivy@demo.test", "name": "Ivy", "role": "intern"},
        headers=_auth(owner),
    )
    print(f"2. POST /v1/auth/invite          → {r.status_code}  pending={r.json()['user']['invitePending']}")
    invite = mailer_module.mailer.outbox[-1].token  # type: ignore[union-attr]
    r = client.post(f"/v1/auth/accept-invite/{invite}", json={"password": PASSWORD})
    intern = r.json()["token"]
    print(f"   POST /v1/auth/accept-invite   → {r.status_code}  active={r.json()['user']['isActive']}")

    # ── Step 3: intern writes a draft with an attachment ────────────
    r = client.post(
        "/v1/reports",
        data={"type": "daily", "summary": "Set up the build pipeline"},
        files={"file": ("notes.txt", b"day one notes\n" * 64, "text/plain")},
        headers=_auth(intern),
    )
    report_id = r.json()["report"]["id"]
    print(f"3. POST /v1/reports              → {r.status_code}  status={r.json()['report']['status']}")

    # ── Step 4: submit, then a second submit conflicts ──────────────
    r = client.put(f"/v1/reports/{report_id}/submit", headers=_auth(intern))
    print(f"4. PUT  /v1/reports/{{id}}/submit  → {r.status_code}  status={r.json()['report']['status']}")
    r = client.put(f"/v1/reports/{report_id}/submit", headers=_auth(intern))
    print(f"   PUT  /v1/reports/{{id}}/submit  → {r.status_code}  {r.json()['message']}")

    # ── Step 5: owner opens and grades ──────────────────────────────
    r = client.get(f"/v1/reports/{report_id}", headers=_auth(owner))
    print(f"5. GET  /v1/reports/{{id}}         → {r.status_code}  status={r.json()['report']['status']}")
    r = client.put(
        f"/v1/reports/{report_id}/grade",
        json={"rating": 4, "marks": 88, "adminFeedback": "Solid start"},
        headers=_auth(owner),
    )
    print(f"   PUT  /v1/reports/{{id}}/grade   → {r.status_code}  status={r.json()['report']['status']}")

    # ── Step 6: stats and storage usage ─────────────────────────────
    r = client.get("/v1/reports/stats", headers=_auth(owner))
    print(f"6. GET  /v1/reports/stats        → {r.status_code}  {r.json()['stats']}")
    r = client.get("/v1/auth/me", headers=_auth(owner))
    print(f"   GET  /v1/auth/me              → {r.status_code}  usage={r.json()['organization']['usage']}")


if __name__ == "__main__":
    main()
