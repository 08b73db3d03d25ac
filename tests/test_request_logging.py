"""
Tests: request id propagation and request-context log stamping.

Covers:
    - X-Request-ID echoed when well-formed, replaced when not
    - RequestContextFilter stamps request_id / actor / student_id; explicit extras win
    - JSONFormatter emits the context fields
    - Service log lines of an API call carry that call's request id
"""

from __future__ import annotations

import json
import logging

import pytest
from flask import g

from certtrack.middleware.logging_config import JSONFormatter, RequestContextFilter

BASE = "/api/v1/certification"


def _record(msg="stage updated", **extra) -> logging.LogRecord:
    record = logging.LogRecord("certtrack.services.x", logging.INFO, __file__, 1, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


@pytest.mark.unit
def test_inbound_request_id_is_echoed(client):
    res = client.get(f"{BASE}/stages", headers={"X-Request-ID": "abc-123"})
    assert res.headers["X-Request-ID"] == "abc-123"
    assert float(res.headers["X-Request-Duration-Ms"]) >= 0


@pytest.mark.unit
def test_malformed_request_id_is_replaced(client):
    res = client.get(f"{BASE}/stages", headers={"X-Request-ID": "not a valid id!"})
    assert res.headers["X-Request-ID"] != "not a valid id!"
    assert len(res.headers["X-Request-ID"]) == 12


@pytest.mark.unit
def test_filter_stamps_request_context(app):
    record = _record()
    with app.test_request_context(f"{BASE}/students/7/status", method="PUT",
                                  headers={"X-Actor": "secretaria"}):
        g.request_id = "req-1"
        assert RequestContextFilter().filter(record) is True
    assert record.request_id == "req-1"
    assert record.actor == "secretaria"
    assert record.student_id == 7


@pytest.mark.unit
def test_filter_keeps_explicit_extras(app):
    record = _record(student_id=99)
    with app.test_request_context(f"{BASE}/students/7/status"):
        g.request_id = "req-2"
        RequestContextFilter().filter(record)
    assert record.student_id == 99


@pytest.mark.unit
def test_filter_outside_request_is_noop():
    record = _record()
    assert RequestContextFilter().filter(record) is True
    assert not hasattr(record, "request_id")


@pytest.mark.unit
def test_json_formatter_includes_context():
    record = _record(request_id="req-3", student_id=7, stage="completed",
                     event_type="certification.advance")
    entry = json.loads(JSONFormatter().format(record))
    assert entry["message"] == "stage updated"
    assert entry["request_id"] == "req-3"
    assert entry["student_id"] == 7
    assert entry["event_type"] == "certification.advance"
    assert "actor" not in entry


@pytest.mark.unit
def test_service_log_carries_request_id(client, student, caplog):
    client.post(f"{BASE}/processes", json={"student_id": student.id})
    caplog.handler.addFilter(RequestContextFilter())
    with caplog.at_level(logging.INFO, logger="certtrack.services.certification_service"):
        res = client.put(
            f"{BASE}/students/{student.id}/status",
            json={"status": "exam_in_progress"},
            headers={"X-Request-ID": "trace-42", "X-Actor": "ana"},
        )
    assert res.status_code == 200
    record = next(r for r in caplog.records if r.getMessage().startswith("Certification stage updated"))
    assert record.request_id == "trace-42"
    assert record.actor == "ana"
    assert record.student_id == student.id
