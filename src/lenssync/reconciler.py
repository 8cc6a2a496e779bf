"""Write/verify/retry of the argument list against the settings store.

The store has no locking primitive and may be rewritten at any time by the
user or by another instance of this synchronizer, so every write is
followed by a delayed re-read. A mismatch schedules another pass that
re-encodes from the current desired value.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable

from lenssync.arguments import DEFAULT_FLAG, EncodingPolicy, decode, encode, same_arguments
from lenssync.host import SettingsStore

logger = logging.getLogger(__name__)

DEFAULT_JITTER_MINIMUM_MS = 10
DEFAULT_JITTER_SPREAD_MS = 240


def jitter_delay_ms(
    identity: str,
    *,
    minimum_ms: int = DEFAULT_JITTER_MINIMUM_MS,
    spread_ms: int = DEFAULT_JITTER_SPREAD_MS,
) -> int:
    """Map ``identity`` onto ``[minimum_ms, minimum_ms + spread_ms)``.

    Instances with different identities re-check at different moments, while
    one identity always gets the same delay.
    """
    digest = hashlib.md5(identity.encode("utf-8")).hexdigest()
    return minimum_ms + int(digest, 16) % spread_ms


@dataclass
class FlagState:
    desired: bool = True
    dirty: bool = False

    def request(self, desired: bool) -> None:
        self.desired = desired
        self.dirty = True


class Reconciler:
    def __init__(
        self,
        store: SettingsStore,
        *,
        delay_ms: int,
        arguments_key: str = "clangd.arguments",
        flag: str = DEFAULT_FLAG,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    ) -> None:
        self.delay_ms = delay_ms
        self.arguments_key = arguments_key
        self.flag = flag
        self._store = store
        self._sleep = sleep

    async def read_arguments(self) -> list[str]:
        value = await self._store.get(self.arguments_key, [])
        if not isinstance(value, list):
            logger.warning("%s is not a list; treating it as empty", self.arguments_key)
            return []
        return [str(item) for item in value]

    async def reconcile(self, state: FlagState, policy: EncodingPolicy) -> bool:
        """Persist ``state.desired`` and return whether the flag value changed.

        Runs until the store reflects the encoded list. A failing write
        re-raises with ``state.dirty`` set again.
        """
        if not state.dirty:
            return False
        changed = False
        attempt = 0
        while state.dirty:
            state.dirty = False
            attempt += 1
            current = await self.read_arguments()
            desired = state.desired
            encoded = encode(desired, policy, current, self.flag)
            if same_arguments(encoded, current):
                logger.debug("%s already encodes %s=%s", self.arguments_key, self.flag, desired)
                continue
            try:
                await self._store.update(self.arguments_key, encoded)
            except Exception:
                state.dirty = True
                raise
            if decode(current, self.flag) != desired:
                changed = True
            await self._sleep(self.delay_ms / 1000)
            settled = await self.read_arguments()
            if not same_arguments(settled, encoded):
                logger.debug(
                    "%s not settled after attempt %d; retrying",
                    self.arguments_key,
                    attempt,
                )
                state.dirty = True
        return changed
