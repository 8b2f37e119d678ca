"""Tests for log formatting: domain ids on JSON and readable lines."""

import json
import logging
import sys

from practicehub.middleware.logging_config import JSONFormatter, ReadableFormatter


def _record(msg="Period %s closed", args=(7,), exc_info=None, **extra):
    record = logging.LogRecord(
        "practicehub.services.retainer_period_service", logging.INFO, __file__, 10,
        msg, args, exc_info,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


# ── JSON ────────────────────────────────────────────────────────────────


class TestJSONFormatter:
    def test_context_ids_are_top_level_keys(self):
        line = JSONFormatter().format(_record(tenant_id=1, retainer_id=4, period_id=7, invoice_id=12))
        entry = json.loads(line)
        assert entry["message"] == "Period 7 closed"
        assert entry["level"] == "INFO"
        assert (entry["tenant_id"], entry["retainer_id"], entry["period_id"], entry["invoice_id"]) == (1, 4, 7, 12)
        assert "customer_id" not in entry

    def test_request_fields_kept(self):
        entry = json.loads(JSONFormatter().format(
            _record(method="POST", path="/api/v1/retainers", status=201, duration_ms=12.5),
        ))
        assert entry["path"] == "/api/v1/retainers"
        assert entry["duration_ms"] == 12.5

    def test_exception_included(self):
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            record = _record(exc_info=sys.exc_info())
        entry = json.loads(JSONFormatter().format(record))
        assert "RuntimeError: boom" in entry["exception"]


# ── Readable ────────────────────────────────────────────────────────────


class TestReadableFormatter:
    def test_context_appended_as_labels(self):
        line = ReadableFormatter().format(_record(tenant_id=1, retainer_id=4, job_name="dormancy_scan"))
        assert line.endswith("Period 7 closed tenant=1 retainer=4 job=dormancy_scan")

    def test_no_context_no_suffix(self):
        line = ReadableFormatter().format(_record())
        assert line.endswith("retainer_period_service: Period 7 closed")
