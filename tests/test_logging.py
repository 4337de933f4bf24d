import logging

from audisell.core.logging import LOG_FORMAT, SingleLineFormatter, request_id_var
from audisell.core.logging_redactor import redact


def test_redact_masks_secrets_and_emails():
    line = redact("login ana.souza@example.com with Bearer abc.def.ghi key sk_live_1234567890abcd")
    assert "ana.souza" not in line
    assert "a***@example.com" in line
    assert "abc.def.ghi" not in line
    assert "sk_live_" not in line


def test_redact_masks_assignments():
    assert redact("password=hunter2hunter") == "password=***"
    assert redact("nothing to hide") == "nothing to hide"


def test_log_lines_carry_request_id_and_stay_single_line():
    formatter = SingleLineFormatter(LOG_FORMAT)
    record = logging.LogRecord("audisell.test", logging.INFO, __file__, 1, "first\nsecond", None, None)
    token = request_id_var.set("rid-42")
    try:
        line = formatter.format(record)
    finally:
        request_id_var.reset(token)
    assert "rid=rid-42" in line
    assert "first | second" in line


def test_request_id_header_is_echoed(client):
    resp = client.get("/api/health", headers={"X-Request-ID": "rid-from-lb"})
    assert resp.headers["X-Request-ID"] == "rid-from-lb"
    assert request_id_var.get() == "-"
