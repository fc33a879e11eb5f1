import json
import logging
import sys

from upload_service.common.logging import JsonFormatter


def _record(msg="upload_completed", exc_info=None):
    return logging.LogRecord(
        name="upload_service.files",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg=msg,
        args=(),
        exc_info=exc_info,
    )


def test_formats_one_json_object():
    record = _record()
    record.extra = {"file_id": "f-1", "parts": 3}

    payload = json.loads(JsonFormatter().format(record))

    assert payload["level"] == "INFO"
    assert payload["logger"] == "upload_service.files"
    assert payload["message"] == "upload_completed"
    assert payload["file_id"] == "f-1"
    assert payload["parts"] == 3
    assert "ts" in payload


def test_includes_exception_text():
    try:
        raise ValueError("boom")
    except ValueError:
        record = _record("upload_failed", exc_info=sys.exc_info())

    payload = json.loads(JsonFormatter().format(record))

    assert "ValueError: boom" in payload["exc_info"]
