"""Tests for the request context middleware.

Verifies that every response gets:
- An X-Request-ID header (generated or echoed from the request)
- A summary log line that names the route template, not the raw path
"""

from __future__ import annotations

import logging
import uuid

import pytest
from fastapi.testclient import TestClient

from app.middleware.request_context import (
    RequestContextFilter,
    organization_id_var,
    request_id_var,
    user_id_var,
)


def test_request_id_generated_when_not_provided(client: TestClient) -> None:
    """When no X-Request-ID header is sent, one is generated."""
    resp = client.get("/health")
    req_id = resp.headers.get("x-request-id")
    assert req_id is not None
    uuid.UUID(req_id)  # raises ValueError if invalid


def test_request_id_echoed_when_provided(client: TestClient) -> None:
    custom_id = "my-custom-request-id-123"
    resp = client.get("/health", headers={"X-Request-ID": custom_id})
    assert resp.headers.get("x-request-id") == custom_id


def test_request_id_present_on_error_responses(client: TestClient) -> None:
    """Even error responses (401, 404) get an X-Request-ID header."""
    resp = client.get("/v1/reports/my")  # No auth token → 401
    assert resp.status_code == 401
    assert resp.headers.get("x-request-id") is not None


def test_summary_line_uses_route_template(
    client: TestClient, caplog: pytest.LogCaptureFixture
) -> None:
    secret = "invite-token-that-must-not-be-logged"
    with caplog.at_level(logging.INFO, logger="app.middleware.request_context"):
        client.post(f"/v1/auth/accept-invite/{secret}", json={"password": "whatever"})

    records = [r for r in caplog.records if r.name == "app.middleware.request_context"]
    assert records
    assert records[-1].path == "/v1/auth/accept-invite/{token}"  # type: ignore[attr-defined]
    assert secret not in caplog.text


def test_filter_copies_context_vars() -> None:
    record = logging.LogRecord(
        name="app.services.report_service",
        level=logging.INFO,
        pathname="x.py",
        lineno=1,
        msg="hello",
        args=(),
        exc_info=None,
    )
    tokens = (
        request_id_var.set("req-1"),
        user_id_var.set("user-1"),
        organization_id_var.set("org-1"),
    )
    try:
        assert RequestContextFilter().filter(record) is True
    finally:
        request_id_var.reset(tokens[0])
        user_id_var.reset(tokens[1])
        organization_id_var.reset(tokens[2])

    assert record.request_id == "req-1"  # type: ignore[attr-defined]
    assert record.user_id == "user-1"  # type: ignore[attr-defined]
    assert record.organization_id == "org-1"  # type: ignore[attr-defined]


def test_filter_keeps_explicit_extra_fields() -> None:
    record = logging.LogRecord(
        name="test", level=logging.INFO, pathname="x.py", lineno=1,
        msg="m", args=(), exc_info=None,
    )
    record.organization_id = "explicit-org"  # type: ignore[attr-defined]
    RequestContextFilter().filter(record)
    assert record.organization_id == "explicit-org"  # type: ignore[attr-defined]
