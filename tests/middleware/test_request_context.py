from __future__ import annotations

import logging
import uuid

from fastapi.testclient import TestClient

from coursetrack.middleware.request_context import _RequestContextFilter, request_id_var


def test_request_id_generated_when_not_provided(client: TestClient) -> None:
    resp = client.get("/health")
    req_id = resp.headers.get("x-request-id")
    assert req_id is not None
    uuid.UUID(req_id)


def test_request_id_echoed_when_provided(client: TestClient) -> None:
    resp = client.get("/health", headers={"X-Request-ID": "provider-report-17"})
    assert resp.headers.get("x-request-id") == "provider-report-17"


def test_request_id_present_on_error_responses(client: TestClient) -> None:
    resp = client.get(f"/v1/progress/{uuid.uuid4()}")  # no token -> 401
    assert resp.status_code == 401
    assert resp.headers.get("x-request-id") is not None


def test_filter_stamps_current_request_id() -> None:
    token = request_id_var.set("req-abc")
    try:
        record = logging.LogRecord("t", logging.INFO, "x.py", 1, "m", (), None)
        assert _RequestContextFilter().filter(record) is True
        assert record.request_id == "req-abc"  # type: ignore[attr-defined]
    finally:
        request_id_var.reset(token)
