"""
Tests: SLA table service — defaults merge, atomic upsert, validation, seeding.

All test data created via ORM helpers.
The `session` autouse fixture rolls back after every test.
"""

from __future__ import annotations

import logging

import pytest

from certtrack.core.exceptions import InvalidStageError, ValidationError
from certtrack.models import db as _db
from certtrack.models.audit import AuditLog
from certtrack.models.certification import (
    SLA_DEFAULTS,
    CertificationSLA,
    SLARule,
    Stage,
    seed_default_sla,
)
from certtrack.services.sla_service import get_sla_table, list_sla_config, update_sla_config


@pytest.mark.unit
def test_empty_table_is_all_defaults():
    assert get_sla_table() == SLA_DEFAULTS
    config = list_sla_config()
    assert [c["status"] for c in config] == [s.value for s in Stage]
    assert {c["source"] for c in config} == {"default"}


@pytest.mark.unit
def test_db_row_overrides_default():
    _db.session.add(CertificationSLA(status="exam_in_progress", days_limit=20, warning_days=4))
    _db.session.commit()

    table = get_sla_table()
    assert table[Stage.EXAM_IN_PROGRESS] == SLARule(20, 4)
    assert table[Stage.WELCOME] == SLA_DEFAULTS[Stage.WELCOME]
    entry = next(c for c in list_sla_config() if c["status"] == "exam_in_progress")
    assert entry["source"] == "db"


@pytest.mark.unit
def test_update_inserts_and_updates_rows_with_audit():
    _db.session.add(CertificationSLA(status="welcome", days_limit=2, warning_days=1))
    _db.session.commit()

    rows = update_sla_config(
        [
            {"status": "welcome", "days_limit": 3, "warning_days": 1},
            {"status": "documents_under_review", "days_limit": 10, "warning_days": 3},
        ],
        actor="admin@example.com",
    )
    assert [r["status"] for r in rows] == ["welcome", "documents_under_review"]
    assert get_sla_table()[Stage.WELCOME] == SLARule(3, 1)
    assert get_sla_table()[Stage.DOCUMENTS_UNDER_REVIEW] == SLARule(10, 3)

    audit = AuditLog.query.filter_by(action="sla.update").one()
    assert audit.actor == "admin@example.com"
    assert audit.diff["welcome"] == {
        "old": {"days_limit": 2, "warning_days": 1},
        "new": {"days_limit": 3, "warning_days": 1},
    }
    assert audit.diff["documents_under_review"]["old"] is None


@pytest.mark.unit
@pytest.mark.parametrize("entry", [
    {"status": "welcome", "days_limit": -1, "warning_days": 0},
    {"status": "welcome", "days_limit": 2, "warning_days": -5},
    {"status": "welcome", "days_limit": "two", "warning_days": 0},
    {"status": "welcome", "days_limit": True, "warning_days": 0},
    {"status": "welcome", "warning_days": 0},
])
def test_invalid_values_rejected(entry):
    with pytest.raises(ValidationError):
        update_sla_config([entry])
    assert CertificationSLA.query.count() == 0


@pytest.mark.unit
def test_one_bad_entry_rejects_batch():
    with pytest.raises(InvalidStageError):
        update_sla_config([
            {"status": "welcome", "days_limit": 5, "warning_days": 1},
            {"status": "shipping", "days_limit": 5, "warning_days": 1},
        ])
    assert CertificationSLA.query.count() == 0


@pytest.mark.unit
@pytest.mark.parametrize("payload", [None, [], {}, "x"])
def test_update_requires_non_empty_list(payload):
    with pytest.raises(ValidationError):
        update_sla_config(payload)


@pytest.mark.unit
def test_warning_above_limit_is_stored_and_logged(caplog):
    with caplog.at_level(logging.WARNING, logger="certtrack.services.sla_service"):
        update_sla_config([{"status": "welcome", "days_limit": 2, "warning_days": 5}])
    assert get_sla_table()[Stage.WELCOME] == SLARule(2, 5)
    assert any("exceeds limit" in r.getMessage() for r in caplog.records)


@pytest.mark.unit
def test_seed_default_sla_is_idempotent():
    _db.session.add(CertificationSLA(status="welcome", days_limit=9, warning_days=1))
    _db.session.commit()

    created = seed_default_sla()
    _db.session.commit()
    assert created == len(Stage) - 1
    assert seed_default_sla() == 0
    assert get_sla_table()[Stage.WELCOME] == SLARule(9, 1)
