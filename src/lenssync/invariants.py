"""Invariant markers for lenssync."""

from __future__ import annotations

from typing import NoReturn

from lenssync.exceptions import NeverThrown


def _render_env(env: dict[str, object]) -> str:
    return ", ".join(f"{key}={env[key]!r}" for key in sorted(env))


def never(reason: str = "", **env: object) -> NoReturn:
    """Mark a code path as intentionally unreachable.

    The keyword payload is attached to the raised exception and appended to
    its message.
    """
    message = reason or "never() marker reached"
    if env:
        message = f"{message} ({_render_env(env)})"
    raise NeverThrown(message, env=env)
