"""Tests for structured logging and request_id propagation."""

import json
import logging

from vivu.core.logging import (
    ContextFilter,
    JsonFormatter,
    PrettyFormatter,
    account_id_ctx_var,
    latency_bucket_ms,
    log_event,
    request_id_ctx_var,
)


def test_request_id_in_response_and_logs(client, caplog):
    with caplog.at_level(logging.INFO, logger="vivu"):
        response = client.get("/healthz")
    rid = response.headers.get("x-request-id")
    assert rid
    records = [r for r in caplog.records if getattr(r, "request_id", None) == rid]
    assert records, "Expected logs to contain request_id from response"
    assert records[-1].getMessage() == "request.complete"
    assert records[-1].path == "/healthz"


def test_denied_search_logs_account(client, caplog):
    headers = {"X-User-Id": "logged"}
    client.post("/v1/search/authorize", headers=headers)
    with caplog.at_level(logging.INFO, logger="vivu"):
        client.post("/v1/search/authorize", headers=headers)
    denied = [r for r in caplog.records if r.getMessage() == "[entitlement] DENIED"]
    assert denied
    assert denied[0].account_id == "logged"
    errors = [r for r in caplog.records if r.getMessage() == "app.error"]
    assert errors[0].error_code == "subscription_required"


def test_json_formatter_includes_context_fields():
    record = logging.LogRecord("vivu", logging.INFO, __file__, 1, "[promo] redeemed", None, None)
    record.account_id = "acct-9"
    record.code = "VIVU1MON"
    token = request_id_ctx_var.set("rid-json")
    try:
        ContextFilter().filter(record)
    finally:
        request_id_ctx_var.reset(token)

    payload = json.loads(JsonFormatter().format(record))
    assert payload["message"] == "[promo] redeemed"
    assert payload["request_id"] == "rid-json"
    assert payload["account_id"] == "acct-9"
    assert payload["code"] == "VIVU1MON"
    assert "order_id" not in payload


def test_log_event_truncates_extra(caplog):
    with caplog.at_level(logging.INFO, logger="vivu"):
        log_event("info", "payment.note", account_id="acct-1", extra={"note": "x" * 600})
    record = [r for r in caplog.records if r.getMessage() == "payment.note"][0]
    assert record.account_id == "acct-1"
    assert record.note.endswith("...<truncated>")
    assert len(record.note) < 600


def test_latency_buckets():
    assert latency_bucket_ms(None) == "unknown"
    assert latency_bucket_ms(5) == "<10ms"
    assert latency_bucket_ms(250) == "100-500ms"
    assert latency_bucket_ms(2500) == ">=1000ms"


def test_context_filter_binds_account():
    record = logging.LogRecord("vivu", logging.INFO, __file__, 1, "[entitlement] ALLOWED", None, None)
    rid_token = request_id_ctx_var.set("rid-pretty")
    account_token = account_id_ctx_var.set("acct-ctx")
    try:
        ContextFilter().filter(record)
    finally:
        account_id_ctx_var.reset(account_token)
        request_id_ctx_var.reset(rid_token)

    line = PrettyFormatter().format(record)
    assert "rid=rid-pretty" in line
    assert "account=acct-ctx" in line
    assert line.endswith("[entitlement] ALLOWED")


def test_unsafe_request_id_is_replaced(client):
    resp = client.get("/healthz", headers={"x-request-id": "bad id with spaces"})
    assert resp.headers["x-request-id"] != "bad id with spaces"
    assert len(resp.headers["x-request-id"]) == 32
