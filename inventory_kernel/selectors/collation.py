"""
String collation and search normalization for the query engine.

``collation_key`` approximates locale-aware ordering without depending on
the process locale: compatibility decomposition, combining marks removed,
then case folding.  The original string is the secondary key so that
strings differing only by accent or case still have a total order.
"""

import unicodedata


def fold(text: str) -> str:
    """Accent- and case-insensitive form of ``text``."""
    decomposed = unicodedata.normalize("NFKD", text)
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return stripped.casefold()


def collation_key(text: str) -> tuple[str, str]:
    return (fold(text), text)


def contains(haystack: str, needle: str) -> bool:
    """Case- and accent-insensitive substring test."""
    return fold(needle) in fold(haystack)
