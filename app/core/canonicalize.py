"""Canonical entity names used for deduplication and name lookup."""

import re
import unicodedata

_WHITESPACE = re.compile(r"\s+")


def canonicalize_name(name: str) -> str:
    """Normalize a display name into its canonical lookup form.

    NFKC-normalizes, case-folds, trims, and collapses inner whitespace.
    Idempotent: canonicalize_name(canonicalize_name(x)) == canonicalize_name(x).
    """
    normalized = unicodedata.normalize("NFKC", name or "")
    folded = normalized.casefold()
    # casefold can produce non-NFKC sequences for a few code points
    folded = unicodedata.normalize("NFKC", folded)
    return _WHITESPACE.sub(" ", folded).strip()


def normalize_aliases(aliases: list[str] | None, exclude: str | None = None) -> list[str]:
    """Trim aliases, drop empties and duplicates (by canonical form).

    Args:
        aliases: Raw alias list from tool arguments
        exclude: Canonical name of the owning entity; aliases equal to it are dropped
    """
    result: list[str] = []
    seen: set[str] = set()
    if exclude:
        seen.add(exclude)
    for alias in aliases or []:
        trimmed = (alias or "").strip()
        if not trimmed:
            continue
        key = canonicalize_name(trimmed)
        if key in seen:
            continue
        seen.add(key)
        result.append(trimmed)
    return result
