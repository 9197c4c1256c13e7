"""Text normalisation helpers for participant responses."""

from __future__ import annotations

import unicodedata


def collapse_whitespace(text: str) -> str:
    """Collapse runs of whitespace, including non-breaking spaces, into single spaces."""

    if not text:
        return ""
    return " ".join(text.split())


def clean_response_text(text: str) -> str:
    """Return the stored form of a response: NFKC-normalised with collapsed whitespace."""

    stripped = (text or "").strip()
    if not stripped:
        return ""
    return collapse_whitespace(unicodedata.normalize("NFKC", stripped))
