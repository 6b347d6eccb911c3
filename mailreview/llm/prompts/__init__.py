"""Review prompt assembly

The email fields are sanitized before being embedded so message content
cannot pose as instructions (fenced blocks, markdown headers, chat-template
tags, horizontal rules that mimic the prompt's own delimiters).
"""

from __future__ import annotations

import re

from mailreview import config
from mailreview.storage.models import ContentRecord

REVIEW_INSTRUCTIONS = """You are an email assistant. Review the following email before it is sent. Check for:
1. Spelling and grammar errors
2. Tone and professionalism
3. Clarity and conciseness
4. Missing information or attachments mentioned but not attached
5. Potential issues or concerns

Email content:
---
Subject: {subject}
To: {to}
Body:
{body}
---

Provide a concise review with specific suggestions. If the email looks good, say so. If there are issues, list them clearly."""

CONNECTION_TEST_PROMPT = 'Hello, this is a test. Please respond with "OK".'

_SUBSTITUTIONS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"```"), "｀｀｀"),
    (re.compile(r"^\s*#{1,6}\s", re.MULTILINE), ""),
    (re.compile(r"\[INST\]", re.IGNORECASE), ""),
    (re.compile(r"\[/INST\]", re.IGNORECASE), ""),
    (re.compile(r"<<SYS>>", re.IGNORECASE), ""),
    (re.compile(r"</SYS>>", re.IGNORECASE), ""),
    (re.compile(r"^\s*---+\s*$", re.MULTILINE), "==="),
]


def sanitize_content(content: str | None, max_length: int = config.MAX_CONTENT_CHARS) -> str:
    if not content:
        return ""
    sanitized = content[:max_length]
    for pattern, replacement in _SUBSTITUTIONS:
        sanitized = pattern.sub(replacement, sanitized)
    return sanitized


def build_review_prompt(record: ContentRecord, custom_prompt: str = "") -> str:
    """Custom preamble (if any) followed by the standard review instructions."""
    prompt = ""
    if custom_prompt and custom_prompt.strip():
        prompt = f"{custom_prompt.strip()}\n\n"

    return prompt + REVIEW_INSTRUCTIONS.format(
        subject=sanitize_content(record.subject or "(No subject)"),
        to=sanitize_content(record.to or "(No recipient)"),
        body=sanitize_content(record.body or "(Empty body)"),
    )
