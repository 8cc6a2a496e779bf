"""Encoding of the tracked flag inside an ordered argument list.

The flag lives as one entry of a command-line style list such as
``["--log=verbose", "--code-lens=0"]``. Entries that are not the flag are
never moved or rewritten.
"""

from __future__ import annotations

from enum import Enum
from typing import Iterable, Sequence

from lenssync.invariants import never

DEFAULT_FLAG = "--code-lens"

_ENABLED_VALUES = {"1", "true"}


class EncodingPolicy(Enum):
    # flag always written as flag=1 / flag=0
    EXPLICIT = "explicit"
    # absence means enabled, only flag=0 is written
    PRESENCE = "presence"


def locate(args: Sequence[str], flag: str = DEFAULT_FLAG) -> int:
    for index, arg in enumerate(args):
        if arg.lstrip().startswith(flag):
            return index
    return -1


def parse_entry(entry: str, flag: str = DEFAULT_FLAG) -> bool:
    suffix = entry.strip()[len(flag):].strip()
    if not suffix:
        return True
    if suffix.startswith("="):
        return suffix[1:].strip().lower() in _ENABLED_VALUES
    return False


def decode(args: Sequence[str], flag: str = DEFAULT_FLAG) -> bool:
    index = locate(args, flag)
    if index < 0:
        return True
    return parse_entry(args[index], flag)


def render(enabled: bool, flag: str = DEFAULT_FLAG) -> str:
    return f"{flag}={'1' if enabled else '0'}"


def encode(
    desired: bool,
    policy: EncodingPolicy,
    args: Sequence[str],
    flag: str = DEFAULT_FLAG,
) -> list[str]:
    """Return a copy of ``args`` carrying ``desired`` under ``policy``.

    The first flag entry is rewritten in place (or removed); any later flag
    entries are dropped so the result holds at most one.
    """
    index = locate(args, flag)
    result = [
        arg
        for position, arg in enumerate(args)
        if position <= index or not arg.lstrip().startswith(flag)
    ]
    if policy is EncodingPolicy.EXPLICIT:
        replacement: str | None = render(desired, flag)
    elif policy is EncodingPolicy.PRESENCE:
        replacement = None if desired else render(False, flag)
    else:
        never("unknown encoding policy", policy=policy)

    if index >= 0:
        if replacement is None:
            del result[index]
        else:
            result[index] = replacement
    elif replacement is not None:
        result.append(replacement)
    return result


def same_arguments(lhs: Iterable[str], rhs: Iterable[str]) -> bool:
    return set(lhs) == set(rhs)


def policy_from_text(value: str) -> EncodingPolicy:
    text = value.strip().lower()
    for policy in EncodingPolicy:
        if policy.value == text:
            return policy
    raise ValueError(f"unknown encoding policy: {value!r}")
