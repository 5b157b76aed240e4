"""
Text Cleaner
Whitespace normalization, HTML stripping and canonical content hashing
"""
import hashlib
import html
import re
from typing import Optional


MULTIPLE_SPACES = re.compile(r"\s+")
INLINE_SPACES = re.compile(r"[ \t\f\v]+")
MULTIPLE_NEWLINES = re.compile(r"\n{3,}")
SCRIPT_BLOCK = re.compile(r"<script[^>]*>.*?</script>", re.IGNORECASE | re.DOTALL)
STYLE_BLOCK = re.compile(r"<style[^>]*>.*?</style>", re.IGNORECASE | re.DOTALL)
HTML_TAG = re.compile(r"<[^>]+>")


def collapse_whitespace(text: Optional[str]) -> str:
    """Collapse every whitespace run to a single space and trim."""
    return MULTIPLE_SPACES.sub(" ", str(text or "")).strip()


def normalize_lines(text: Optional[str]) -> str:
    """
    Normalize extracted page text line by line.

    Inline whitespace is collapsed, blank lines are dropped and line order is kept.
    """
    value = str(text or "").replace("\r\n", "\n").replace("\r", "\n")
    lines = (INLINE_SPACES.sub(" ", line).strip() for line in value.split("\n"))
    return "\n".join(line for line in lines if line)


def strip_html(value: Optional[str]) -> str:
    """Drop script/style blocks and tags, decode entities, collapse whitespace."""
    text = str(value or "")
    text = SCRIPT_BLOCK.sub(" ", text)
    text = STYLE_BLOCK.sub(" ", text)
    text = HTML_TAG.sub(" ", text)
    text = html.unescape(text)
    return collapse_whitespace(text)


def truncate(text: Optional[str], max_len: int) -> str:
    value = str(text or "")
    if len(value) <= max_len:
        return value
    return value[:max_len].rstrip()


def normalize_for_hash(text: Optional[str]) -> str:
    """Canonical form used for content fingerprints: trimmed, collapsed, lowercased."""
    return collapse_whitespace(text).lower()


def compute_content_hash(text: Optional[str]) -> str:
    """
    SHA-256 fingerprint of the canonical text.

    ``compute_content_hash("Hello  world") == compute_content_hash("hello world")``
    """
    return hashlib.sha256(normalize_for_hash(text).encode("utf-8")).hexdigest()
