"""Strip structured-field leakage from model replies before delivery."""

from __future__ import annotations

import re

_LEAK_PATTERNS = (
    re.compile(r'setor:\s*".*?"\s*', re.IGNORECASE),
    re.compile(r'especialista:\s*".*?"\s*', re.IGNORECASE),
    re.compile(r'tags?:\s*".*?"\s*', re.IGNORECASE),
    re.compile(r"tags?:\s*\[.*?\]\s*", re.IGNORECASE),
    re.compile(r'^[\s\-:]*".*?"[\s\-:]*$', re.IGNORECASE | re.MULTILINE),
)
_BLANK_RUNS = re.compile(r"(\r?\n){2,}")


def _single_pass(text: str) -> str:
    for pattern in _LEAK_PATTERNS:
        text = pattern.sub("", text)
    text = _BLANK_RUNS.sub("\n\n", text)
    return text.strip()


def sanitize(text: str | None) -> str:
    """Return ``text`` without leaked routing fields.

    Passes repeat until the text stops changing; removing one field can join
    its neighbours into a new match.
    """

    if not text:
        return ""
    current = str(text)
    while True:
        cleaned = _single_pass(current)
        if cleaned == current:
            return cleaned
        current = cleaned
