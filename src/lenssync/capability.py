"""Per-binary memo of whether the external binary understands the flag."""

from __future__ import annotations

import asyncio
import logging
from enum import Enum

from lenssync.arguments import DEFAULT_FLAG
from lenssync.exceptions import LaunchError
from lenssync.host import Launcher, SettingsStore, subprocess_launcher
from lenssync.placeholders import PlaceholderContext, resolve_placeholders

logger = logging.getLogger(__name__)

DEFAULT_BINARY = "clangd"
DEFAULT_HELP_ARGUMENT = "--help"


class Capability(Enum):
    UNKNOWN = "unknown"
    SUPPORTED = "supported"
    UNSUPPORTED = "unsupported"


class CapabilityCache:
    """Mapping from resolved binary path to :class:`Capability`.

    Entries are never invalidated; a different path is a different key.
    """

    def __init__(self) -> None:
        self._entries: dict[str, Capability] = {}

    def lookup(self, path: str) -> Capability:
        return self._entries.get(path, Capability.UNKNOWN)

    def store(self, path: str, capability: Capability) -> None:
        if capability is Capability.UNKNOWN:
            self._entries.pop(path, None)
            return
        self._entries[path] = capability

    def __contains__(self, path: object) -> bool:
        return path in self._entries

    def __len__(self) -> int:
        return len(self._entries)


class CapabilityProbe:
    def __init__(
        self,
        *,
        flag: str = DEFAULT_FLAG,
        default_binary: str = DEFAULT_BINARY,
        help_argument: str = DEFAULT_HELP_ARGUMENT,
        launcher: Launcher = subprocess_launcher,
        cache: CapabilityCache | None = None,
        context: PlaceholderContext | None = None,
        store: SettingsStore | None = None,
    ) -> None:
        self.flag = flag
        self.default_binary = default_binary
        self.help_argument = help_argument
        self.cache = cache if cache is not None else CapabilityCache()
        self.context = context if context is not None else PlaceholderContext.from_environment()
        self._launcher = launcher
        self._store = store
        self._inflight: dict[str, asyncio.Future[Capability]] = {}

    async def resolve_path(self, path: str) -> str:
        if not path:
            return self.default_binary
        return await resolve_placeholders(path, self.context, self._store)

    async def capability(self, path: str) -> Capability:
        resolved = await self.resolve_path(path)
        cached = self.cache.lookup(resolved)
        if cached is not Capability.UNKNOWN:
            return cached
        pending = self._inflight.get(resolved)
        if pending is not None:
            return await pending
        future: asyncio.Future[Capability] = asyncio.get_running_loop().create_future()
        self._inflight[resolved] = future
        try:
            result = await self._probe(resolved)
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as exc:
            future.set_exception(exc)
            # Mark retrieved so an unawaited future does not warn.
            future.exception()
            raise
        else:
            self.cache.store(resolved, result)
            future.set_result(result)
        finally:
            del self._inflight[resolved]
        return result

    async def is_supported(self, path: str) -> bool:
        return await self.capability(path) is Capability.SUPPORTED

    async def _probe(self, executable: str) -> Capability:
        try:
            result = await self._launcher(executable, self.help_argument)
        except LaunchError as exc:
            logger.warning("capability probe of %s failed: %s", executable, exc)
            return Capability.UNSUPPORTED
        if self.flag in result.stdout:
            logger.debug("%s supports %s", executable, self.flag)
            return Capability.SUPPORTED
        if result.returncode != 0:
            logger.warning(
                "capability probe of %s exited with %s: %s",
                executable,
                result.returncode,
                result.stderr.strip(),
            )
        else:
            logger.info("%s does not list %s; using default encoding", executable, self.flag)
        return Capability.UNSUPPORTED
