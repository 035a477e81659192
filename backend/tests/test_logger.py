import json
import logging

from crm_assistant.utils.logger import JSONFormatter, setup_logger


def make_record(**extra):
    record = logging.LogRecord("crm_assistant", logging.INFO, __file__, 10, "Executing %s", ("contact.create",), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_formatter_includes_request_context():
    payload = json.loads(JSONFormatter().format(make_record(user_id="user-1", operation="contact.create")))

    assert payload["message"] == "Executing contact.create"
    assert payload["level"] == "INFO"
    assert payload["user_id"] == "user-1"
    assert payload["operation"] == "contact.create"
    assert "rule" not in payload


def test_setup_logger_replaces_handlers_and_quiets_clients():
    first = setup_logger("crm_assistant.test", json_output=True)
    second = setup_logger("crm_assistant.test")

    assert first is second
    assert len(second.handlers) == 1
    assert not isinstance(second.handlers[0].formatter, JSONFormatter)
    assert logging.getLogger("httpx").level == logging.WARNING
