"""
Resource naming helpers.

GCE resource names and GCS bucket names share one practical subset: lowercase
alphanumerics and ``-``, at most 63 characters, never ending in ``-``. All
names derived from user text go through :func:`sanitize` or
:func:`compose_name` so they meet that subset regardless of input.
"""

import re
import secrets
import string

MAX_NAME_LENGTH = 63
SEPARATOR = "-"

_INVALID_CHARS = re.compile(r"[^a-z0-9-]")
_INVALID_ALIAS_CHARS = re.compile(r"[^a-z0-9._-]")
_SEPARATOR_RUNS = re.compile(r"-+")
_SUFFIX_ALPHABET = string.ascii_lowercase + string.digits


def _clean(text: str, invalid: re.Pattern) -> str:
    text = invalid.sub(SEPARATOR, text.lower())
    return _SEPARATOR_RUNS.sub(SEPARATOR, text).strip(SEPARATOR)


def _truncate(text: str, max_length: int) -> str:
    return text[:max_length].rstrip(SEPARATOR)


def sanitize(text: str, max_length: int = MAX_NAME_LENGTH) -> str:
    """
    Reduce free text to a valid resource name component.

    Example:
        >>> sanitize("My Snap!!")
        'my-snap'
    """
    return _truncate(_clean(text, _INVALID_CHARS), max_length)


def sanitize_alias(text: str, max_length: int = MAX_NAME_LENGTH) -> str:
    """Like :func:`sanitize` but keeps ``.`` and ``_`` (used for local file names)."""
    return _truncate(_clean(text, _INVALID_ALIAS_CHARS), max_length)


def compose_name(prefix: str, *parts: str, suffix: str, max_length: int = MAX_NAME_LENGTH) -> str:
    """
    Build ``<prefix>-<parts...>-<suffix>`` within ``max_length``.

    When the result would be too long the free-text parts are shortened, so the
    prefix and the disambiguation suffix are always present in full.

    Args:
        prefix: Fixed leading component (must start with a letter)
        *parts: Free-text components, sanitized here
        suffix: Random disambiguation suffix
        max_length: Maximum total length

    Returns:
        Sanitized name
    """
    head = sanitize(prefix)
    tail = sanitize(suffix)
    middle = SEPARATOR.join(p for p in (sanitize(part) for part in parts) if p)

    budget = max_length - len(head) - len(tail) - 2
    if budget <= 0:
        return _truncate(f"{head}{SEPARATOR}{tail}", max_length)

    middle = _truncate(middle, budget)
    if not middle:
        return f"{head}{SEPARATOR}{tail}"
    return f"{head}{SEPARATOR}{middle}{SEPARATOR}{tail}"


def random_suffix(length: int = 8) -> str:
    """Random lowercase alphanumeric string for resource disambiguation."""
    return "".join(secrets.choice(_SUFFIX_ALPHABET) for _ in range(length))


def format_bytes(num_bytes: int) -> str:
    """
    Human readable byte count.

    Example:
        >>> format_bytes(1536)
        '1.50 KB'
    """
    units = ["B", "KB", "MB", "GB", "TB", "PB"]
    value = float(num_bytes)
    unit = 0
    while value >= 1024 and unit < len(units) - 1:
        value /= 1024
        unit += 1
    if unit == 0:
        return f"{int(value)} B"
    return f"{value:.2f} {units[unit]}"
