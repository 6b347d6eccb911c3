"""Tests for user-facing error message sanitization"""

from __future__ import annotations

import pytest

from mailreview.utils.error_sanitizer import (
    GENERIC_MESSAGES,
    REDACTED,
    redact_secrets,
    sanitize_error_message,
)
from tests.conftest import TEST_API_KEY


def test_plain_message_passes_through():
    message = "API request failed: 403 Forbidden. API key not valid."

    assert sanitize_error_message(message, 502) == message


def test_known_secret_is_masked():
    message = f"Request with key {TEST_API_KEY} was rejected"

    result = sanitize_error_message(message, 502, secrets=[TEST_API_KEY])

    assert TEST_API_KEY not in result
    assert REDACTED in result


def test_google_key_pattern_masked_without_hint():
    result = redact_secrets("bad key AIzaSyA1234567890abcdefghijklmnop")

    assert "AIza" not in result


def test_bearer_token_masked():
    assert redact_secrets("Authorization: Bearer abc.def.ghi") == f"Authorization: {REDACTED}"


def test_none_secrets_are_skipped():
    assert redact_secrets("nothing secret", [None, ""]) == "nothing secret"


@pytest.mark.parametrize(
    "message",
    [
        "Error in /home/user/mailreview/cache/store.py",
        'Traceback (most recent call last):\n  File "x.py", line 3',
        "sqlite3.OperationalError: database is locked",
        "no such table: kv",
        "mailreview.cache.store failed",
    ],
)
def test_internal_details_replaced_by_generic(message):
    assert sanitize_error_message(message, 500) == GENERIC_MESSAGES[500]


def test_empty_message_uses_status_generic():
    assert sanitize_error_message("", 503) == GENERIC_MESSAGES[503]
    assert sanitize_error_message("", 418) == "An error occurred."
