"""Small text helpers for slugs and matching keys."""

import re
import unicodedata

_NON_SLUG = re.compile(r"[^a-z0-9]+")
_WHITESPACE = re.compile(r"\s+")


def slugify(value: str) -> str:
    """
    Make a URL-safe slug: "The Crown & Anchor" -> "the-crown-anchor".

    Accented characters are folded to ASCII first.
    """
    folded = unicodedata.normalize("NFKD", value or "").encode("ascii", "ignore").decode()
    return _NON_SLUG.sub("-", folded.lower()).strip("-")


def normalize_whitespace(value: str | None) -> str:
    return _WHITESPACE.sub(" ", value or "").strip()


def is_blank(value: object) -> bool:
    """True for None and for strings holding only whitespace."""
    return value is None or (isinstance(value, str) and not value.strip())
