"""
Error message sanitization for user-facing responses.

Remote-service errors are shown to the user, so they pass through here first:
known secrets and key-like tokens are masked, and messages that look like
internal details (paths, tracebacks, SQL errors) are replaced wholesale.
"""

from __future__ import annotations

import re
from collections.abc import Iterable

from mailreview.observability.logging import get_logger

logger = get_logger(__name__)

REDACTED = "[REDACTED]"

# Messages matching these are replaced by a generic message
INTERNAL_PATTERNS = [
    r"/[^\s]+\.py",
    r"[A-Za-z]:\\[^\s]+",
    r"Traceback \(most recent call last\)",
    r"File \".*\", line \d+",
    r"sqlite3?\.",
    r"no such table",
    r"mailreview\.[a-z_.]+",
]

# Substrings matching these are masked in place
TOKEN_PATTERNS = [
    r"AIza[0-9A-Za-z_-]{20,}",  # Google API keys
    r"Bearer [A-Za-z0-9._-]+",
    r"\b[A-Za-z0-9_-]{32,}\b",
]

GENERIC_MESSAGES = {
    400: "Invalid request. Please check your input and try again.",
    404: "Resource not found.",
    422: "Invalid data format.",
    500: "An internal error occurred. Please try again later.",
    502: "The review service returned an error.",
    503: "Service temporarily unavailable.",
}


def redact_secrets(message: str, secrets: Iterable[str | None] = ()) -> str:
    """Mask known secret values and key-like tokens."""
    for secret in secrets:
        if secret:
            message = message.replace(secret, REDACTED)
    for pattern in TOKEN_PATTERNS:
        message = re.sub(pattern, REDACTED, message)
    return message


def sanitize_error_message(
    message: str,
    status_code: int = 500,
    secrets: Iterable[str | None] = (),
) -> str:
    """
    Sanitize an error message before returning it to a client.

    Args:
        message: The original error message
        status_code: HTTP status code (used to select generic fallback)
        secrets: Values that must never appear in the output (API keys)

    Returns:
        Message safe for display
    """
    if not message:
        return GENERIC_MESSAGES.get(status_code, "An error occurred.")

    for pattern in INTERNAL_PATTERNS:
        if re.search(pattern, message, re.IGNORECASE):
            logger.warning("Sanitized internal error pattern: %s", pattern)
            return GENERIC_MESSAGES.get(status_code, "An error occurred.")

    return redact_secrets(message, secrets)
