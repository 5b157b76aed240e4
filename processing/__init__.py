"""
Processing Module
Text normalization and content fingerprints
"""
from .cleaner import (
    collapse_whitespace,
    compute_content_hash,
    normalize_for_hash,
    normalize_lines,
    strip_html,
    truncate,
)

__all__ = [
    "collapse_whitespace",
    "compute_content_hash",
    "normalize_for_hash",
    "normalize_lines",
    "strip_html",
    "truncate",
]
