"""URL slug helpers shared by the validator, resolver and product writer."""

import re

_WHITESPACE = re.compile(r"\s+")
_NON_WORD = re.compile(r"[^\w-]+")
_DASHES = re.compile(r"-{2,}")


def slugify(text: str) -> str:
    """Lower-case, whitespace to dashes, drop non-word characters, collapse dashes."""
    slug = _WHITESPACE.sub("-", text.strip().lower())
    slug = _NON_WORD.sub("", slug)
    return _DASHES.sub("-", slug).strip("-")
