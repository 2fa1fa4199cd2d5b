"""
Unit tests for log redaction and JSON formatting.
"""

import json
import logging

from infrastructure.logging_config import JSONFormatter, SensitiveDataFilter

TOKEN = "a" * 64


def make_record(msg, *args, **extra):
    record = logging.LogRecord("test", logging.INFO, __file__, 1, msg, args or None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestSensitiveDataFilter:
    def test_invitation_token_in_path_is_redacted(self):
        record = make_record("GET %s 200", f"/api/v1/invitations/{TOKEN}")

        SensitiveDataFilter().filter(record)

        assert TOKEN not in record.getMessage()
        assert "/invitations/[REDACTED]" in record.getMessage()

    def test_public_album_token_in_message_is_redacted(self):
        record = make_record(f"Serving /public/albums/{TOKEN}")

        SensitiveDataFilter().filter(record)

        assert record.getMessage() == "Serving /public/albums/[REDACTED]"

    def test_plain_messages_untouched(self):
        record = make_record("Album created")

        assert SensitiveDataFilter().filter(record)
        assert record.getMessage() == "Album created"


class TestJSONFormatter:
    def test_album_context_fields_are_included(self):
        record = make_record("Permission denied", album_id="album-1", action="member:add", step="role")

        payload = json.loads(JSONFormatter().format(record))

        assert payload["message"] == "Permission denied"
        assert payload["album_id"] == "album-1"
        assert payload["action"] == "member:add"
        assert payload["step"] == "role"
        assert "user_id" not in payload

    def test_request_log_path_extra_is_redacted(self):
        path = f"/api/v1/invitations/{TOKEN}"
        record = make_record(
            "%s %s %s %.1fms", "GET", path, 410, 1.0, method="GET", path=path, status_code=410
        )

        SensitiveDataFilter().filter(record)
        output = JSONFormatter().format(record)

        assert TOKEN not in output
        assert json.loads(output)["path"] == "/api/v1/invitations/[REDACTED]"

    def test_public_album_path_extra_is_redacted(self):
        record = make_record("Album error", path="/api/v1/public/albums/share-token-value")

        SensitiveDataFilter().filter(record)

        assert record.path == "/api/v1/public/albums/[REDACTED]"
