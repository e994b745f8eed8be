"""Shared validation helpers."""

from __future__ import annotations

import math
import re
import typing as t

MAX_FUNCTION_NAME_LENGTH: t.Final[int] = 128
_FUNCTION_NAME_CHARS: t.Final[re.Pattern[str]] = re.compile(r"[A-Za-z0-9._-]")


def validate_positive_finite_timeout(timeout: float, *, name: str = "timeout") -> None:
    """Ensure *timeout* represents a usable timeout value."""
    if isinstance(timeout, bool):
        msg = f"{name} must be a real number"
        raise TypeError(msg)

    if not (timeout > 0 and math.isfinite(timeout)):
        msg = f"{name} must be > 0 and finite"
        raise ValueError(msg)


def validate_optional_interval(interval: float, *, name: str) -> None:
    """Ensure *interval* is zero (disabled) or a positive finite number."""
    if isinstance(interval, bool):
        msg = f"{name} must be a real number"
        raise TypeError(msg)

    if interval == 0:
        return
    validate_positive_finite_timeout(interval, name=name)


def validate_function_name(name: str) -> None:
    """Ensure *name* can be embedded directly into a request path.

    Names must be non-empty, at most :data:`MAX_FUNCTION_NAME_LENGTH`
    characters, must not start with ``/`` and may only contain ASCII letters,
    digits, ``-``, ``_`` and ``.``.
    """
    if not name:
        msg = "function name cannot be empty"
        raise ValueError(msg)
    if name.startswith("/"):
        msg = "function name cannot start with '/'"
        raise ValueError(msg)
    if len(name) > MAX_FUNCTION_NAME_LENGTH:
        msg = (
            f"function name cannot be longer than {MAX_FUNCTION_NAME_LENGTH} "
            "characters"
        )
        raise ValueError(msg)
    for char in name:
        if _FUNCTION_NAME_CHARS.fullmatch(char) is None:
            msg = f"function name contains invalid character: {char!r}"
            raise ValueError(msg)


def validate_port(raw: str) -> int:
    """Return the TCP port announced in *raw* or raise :class:`ValueError`."""
    text = raw.strip()
    if not text.isascii() or not text.isdigit():
        msg = f"invalid port received from plugin: {text!r}"
        raise ValueError(msg)
    port = int(text)
    if not 0 < port <= 65535:  # noqa: PLR2004 - TCP port range
        msg = f"port out of range: {port}"
        raise ValueError(msg)
    return port
