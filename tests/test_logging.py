import json
import logging

from conftest import make_user

from core.logging_setup import (
    CustomFormatter,
    add_audit_log_handler,
    log_security_event,
    log_step,
    redact_secrets,
    redact_url,
    security_logger,
    user_context,
)


def test_redaction():
    message = "GET https://backend.test/mobile-api/calendar/data?authCode=abc123&start_date=2025-01-01"

    assert "abc123" not in redact_secrets(message)
    assert "start_date=2025-01-01" in redact_secrets(message)
    assert redact_url("calling https://backend.test/x/y now") == "calling /x/y now"


# Purpose: log lines carry the step, school and user of the request that emitted them.
def test_formatter_includes_context():
    record = logging.LogRecord("t", logging.INFO, __file__, 1, "fetched %d events", (3,), None)

    with user_context("u1", "demo_school"), log_step("CALENDAR"):
        line = CustomFormatter().format(record)

    assert "[CALENDAR]" in line
    assert "[school=demo_school]" in line
    assert "[user=u1]" in line
    assert line.endswith("fetched 3 events")


def test_security_events_reach_audit_file(tmp_path):
    path = tmp_path / "audit" / "security.log"
    handler = add_audit_log_handler(str(path))
    previous_level = security_logger.level
    security_logger.setLevel(logging.INFO)

    try:
        entry = log_security_event(
            "calendar_access", make_user(id="u7"), school_id="demo_school", event_count=4
        )
    finally:
        security_logger.removeHandler(handler)
        handler.close()
        security_logger.setLevel(previous_level)

    written = json.loads(path.read_text().strip())
    assert written == entry
    assert written["user_id"] == "u7"
    assert written["school_id"] == "demo_school"
    assert written["details"] == {"event_count": 4}
