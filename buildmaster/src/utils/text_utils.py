"""
BuildMaster - Text Utilities
=============================
Helper functions for text cleaning, fingerprinting and input
normalisation.

These utilities are consumed by the knowledge and conversation paths
and should remain stateless and side-effect-free.
"""

from __future__ import annotations

import hashlib
import re
import unicodedata


# ── Non-printable character pattern ────────────────────────────────────
# Matches control characters (C0/C1), except \n, \r, \t which we handle
# separately. Also catches BOM, zero-width chars, soft hyphens, etc.
_NON_PRINTABLE_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f-\x9f\ufeff\u200b\u200c\u200d\u200e\u200f\u00ad\u2060\ufffe]")

# Component categories are short labels such as "CPU", "GPU", "Power Supply"
_COMPONENT_TYPE_RE = re.compile(r"^[\w][\w .+/&()\-]*$")
_COMPONENT_TYPE_MAX_LEN = 64


def clean_text(text: str) -> str:
    """
    Sanitise raw knowledge text before it is stored and embedded.

    Steps:
        1. Unicode NFC normalisation.
        2. Strip non-printable / zero-width characters.
        3. Collapse runs of horizontal whitespace into a single space,
           *preserving* newlines.
        4. Strip leading / trailing whitespace from every line.
        5. Collapse 3+ consecutive blank lines to 2.

    Args:
        text: Raw text supplied by a caller or crawler.

    Returns:
        Cleaned, normalised text.
    """
    text = unicodedata.normalize("NFC", text)
    text = _NON_PRINTABLE_RE.sub("", text)
    text = re.sub(r"[^\S\n]+", " ", text)
    lines = [line.strip() for line in text.splitlines()]
    text = "\n".join(lines)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def content_fingerprint(text: str) -> str:
    """Return the hex SHA-256 digest of *text* (UTF-8)."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def normalize_component_type(component_type: str | None) -> str | None:
    """
    Validate and normalise a component category label.

    Returns the stripped label, or ``None`` if the label is empty,
    too long, or contains characters outside the accepted set.
    """
    if component_type is None:
        return None
    label = unicodedata.normalize("NFC", component_type).strip()
    if not label or len(label) > _COMPONENT_TYPE_MAX_LEN:
        return None
    if not _COMPONENT_TYPE_RE.match(label):
        return None
    return label


def truncate(text: str, limit: int) -> str:
    """Single-line preview of *text*, at most *limit* characters."""
    flat = " ".join(text.split())
    if len(flat) <= limit:
        return flat
    return flat[: max(limit - 1, 0)].rstrip() + "…"
