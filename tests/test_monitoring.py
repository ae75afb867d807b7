import json
import logging

from filemanager.monitoring.context import get_request_context, request_id_var, set_request_context, storage_var
from filemanager.monitoring.errors import record_error
from filemanager.monitoring.logger import JsonFormatter, configure_logging, log


def _reset_context():
    request_id_var.set(None)
    storage_var.set(None)


def test_logger_context_injection(caplog):
    _reset_context()
    set_request_context(request_id="rid-1", storage="local")
    with caplog.at_level(logging.INFO, logger="filemanager"):
        log("INFO", "test message", module="api")
    record = caplog.records[-1]
    assert record.getMessage() == "test message"
    assert record.request_id == "rid-1"
    assert record.storage == "local"
    assert record.component == "api"
    _reset_context()


def test_logger_without_context():
    # Ensure log() doesn't crash when context is missing
    _reset_context()
    log("INFO", "test message", component="test")
    assert get_request_context() == {"request_id": None, "storage": None}


def test_record_error_logs_label(caplog):
    with caplog.at_level(logging.ERROR, logger="filemanager"):
        record_error("api", "summarize", "Summary failed", details={"x": 1}, label="ERROR_SERVER", storage="s3")
    record = caplog.records[-1]
    assert record.levelname == "ERROR"
    assert record.details == {"x": 1, "function": "summarize", "label": "ERROR_SERVER"}
    assert record.storage == "s3"


def test_record_error_never_raises(monkeypatch):
    calls = []

    def failing_log(level, message, **kwargs):
        calls.append(message)
        if len(calls) == 1:
            raise RuntimeError("handler down")

    monkeypatch.setattr("filemanager.monitoring.errors.log", failing_log)
    record_error("events", "dispatch", "listener failed")
    assert calls[1].startswith("Failed to record error")


def test_json_formatter():
    record = logging.LogRecord("filemanager", logging.WARNING, __file__, 1, "disk %s", ("full",), None)
    record.component = "local"
    record.details = {"path": "/a.txt"}
    payload = json.loads(JsonFormatter().format(record))
    assert payload["message"] == "disk full"
    assert payload["level"] == "WARNING"
    assert payload["component"] == "local"
    assert payload["details"] == {"path": "/a.txt"}


def test_configure_logging_sets_level():
    configure_logging("debug")
    assert logging.getLogger("filemanager").level == logging.DEBUG
    configure_logging("INFO")
    assert logging.getLogger("filemanager").level == logging.INFO
