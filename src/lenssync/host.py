"""Interfaces to the editor host, plus local adapters.

The synchronizer only talks to the host through the protocols below. The
adapters in this module back the CLI and the test-suite; an editor
integration supplies its own.
"""

from __future__ import annotations

import asyncio
import copy
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Awaitable, Callable, Iterable, Protocol, TypeVar

from lenssync.exceptions import LaunchError
from lenssync.json_types import JSONObject
from lenssync.runtime.json_io import load_json_object_path, write_json_object_path

logger = logging.getLogger(__name__)

T = TypeVar("T")

_MISSING = object()


class Disposable:
    def __init__(self, callback: Callable[[], None]) -> None:
        self._callback: Callable[[], None] | None = callback

    def dispose(self) -> None:
        callback, self._callback = self._callback, None
        if callback is not None:
            callback()


@dataclass(frozen=True)
class Document:
    language_id: str
    uri: str = ""


@dataclass(frozen=True)
class ConfigurationChangeEvent:
    changed_keys: frozenset[str] = frozenset()

    @classmethod
    def for_keys(cls, *keys: str) -> ConfigurationChangeEvent:
        return cls(frozenset(keys))

    def affects_configuration(self, key: str) -> bool:
        # A key is affected when it, one of its parents or one of its
        # children changed.
        for changed in self.changed_keys:
            if changed == key:
                return True
            if changed.startswith(f"{key}.") or key.startswith(f"{changed}."):
                return True
        return False


DocumentHandler = Callable[[Document | None], Awaitable[object]]
ConfigurationHandler = Callable[[ConfigurationChangeEvent], Awaitable[object]]


class SettingsStore(Protocol):
    async def get(self, key: str, default: T) -> T: ...

    async def update(self, key: str, value: object) -> None: ...


class EventBus(Protocol):
    def on_did_change_active_document(self, handler: DocumentHandler) -> Disposable: ...

    def on_did_change_configuration(self, handler: ConfigurationHandler) -> Disposable: ...


class ProcessController(Protocol):
    def is_active(self) -> bool: ...

    async def activate(self) -> None: ...

    async def execute_command(self, command: str, *args: object) -> object: ...


@dataclass(frozen=True)
class LaunchResult:
    returncode: int
    stdout: str
    stderr: str = ""


DEFAULT_LAUNCH_TIMEOUT_S = 10.0

Launcher = Callable[..., Awaitable[LaunchResult]]


async def subprocess_launcher(
    executable: str,
    *args: str,
    timeout: float = DEFAULT_LAUNCH_TIMEOUT_S,
) -> LaunchResult:
    try:
        proc = await asyncio.create_subprocess_exec(
            executable,
            *args,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as exc:
        raise LaunchError(f"failed to start {executable!r}: {exc}") from exc
    try:
        out, err = await asyncio.wait_for(proc.communicate(), timeout)
    except asyncio.TimeoutError as exc:
        proc.kill()
        await proc.wait()
        raise LaunchError(f"{executable!r} did not exit within {timeout}s") from exc
    return LaunchResult(
        returncode=proc.returncode if proc.returncode is not None else 0,
        stdout=out.decode("utf-8", errors="replace"),
        stderr=err.decode("utf-8", errors="replace"),
    )


class MemorySettingsStore:
    """Dict-backed settings store.

    ``stale_reads`` makes every write invisible to that many subsequent
    reads of the same key, which models a host that persists settings
    asynchronously.
    """

    def __init__(
        self,
        values: dict[str, object] | None = None,
        *,
        stale_reads: int = 0,
    ) -> None:
        self.values: dict[str, object] = dict(values or {})
        self.stale_reads = stale_reads
        self.writes: list[tuple[str, object]] = []
        self._pending: dict[str, tuple[int, object]] = {}

    async def get(self, key: str, default: T) -> T:
        pending = self._pending.get(key)
        if pending is not None:
            remaining, previous = pending
            if remaining > 0:
                self._pending[key] = (remaining - 1, previous)
                return copy.deepcopy(previous) if previous is not _MISSING else default
            del self._pending[key]
        value = self.values.get(key, _MISSING)
        if value is _MISSING:
            return default
        return copy.deepcopy(value)

    async def update(self, key: str, value: object) -> None:
        if self.stale_reads > 0:
            self._pending[key] = (self.stale_reads, self.values.get(key, _MISSING))
        self.values[key] = copy.deepcopy(value)
        self.writes.append((key, copy.deepcopy(value)))


class JsonSettingsStore:
    """Workspace ``settings.json`` backed store.

    Keys are looked up verbatim first (``"clangd.arguments"``) and then as a
    path through nested objects (``{"clangd": {"arguments": [...]}}``).
    Writes always use the verbatim dotted key.
    """

    def __init__(self, path: Path) -> None:
        self.path = path

    def _read(self) -> JSONObject:
        return load_json_object_path(self.path)

    def _lookup(self, data: JSONObject, key: str) -> object:
        if key in data:
            return data[key]
        parts = key.split(".")
        for split in range(len(parts) - 1, 0, -1):
            head = ".".join(parts[:split])
            node = data.get(head)
            if isinstance(node, dict):
                found = self._lookup(node, ".".join(parts[split:]))
                if found is not _MISSING:
                    return found
        return _MISSING

    def _write(self, key: str, value: object) -> None:
        data = load_json_object_path(self.path, strict=True)
        data[key] = value
        write_json_object_path(self.path, data)

    async def get(self, key: str, default: T) -> T:
        data = await asyncio.to_thread(self._read)
        value = self._lookup(data, key)
        if value is _MISSING:
            return default
        return value

    async def update(self, key: str, value: object) -> None:
        await asyncio.to_thread(self._write, key, value)
        logger.debug("wrote %s to %s", key, self.path)


class LocalEventBus:
    """In-process event bus delivering events to handlers in order."""

    def __init__(self) -> None:
        self._document_handlers: list[DocumentHandler] = []
        self._configuration_handlers: list[ConfigurationHandler] = []

    def on_did_change_active_document(self, handler: DocumentHandler) -> Disposable:
        self._document_handlers.append(handler)
        return Disposable(lambda: self._document_handlers.remove(handler))

    def on_did_change_configuration(self, handler: ConfigurationHandler) -> Disposable:
        self._configuration_handlers.append(handler)
        return Disposable(lambda: self._configuration_handlers.remove(handler))

    async def emit_active_document(self, document: Document | None) -> None:
        for handler in list(self._document_handlers):
            await handler(document)

    async def emit_configuration(self, keys: Iterable[str]) -> None:
        event = ConfigurationChangeEvent(frozenset(keys))
        for handler in list(self._configuration_handlers):
            await handler(event)


@dataclass
class RecordingController:
    """Dependent-process controller that records issued commands."""

    active: bool = True
    activations: int = 0
    commands: list[tuple[str, tuple[object, ...]]] = field(default_factory=list)

    def is_active(self) -> bool:
        return self.active

    async def activate(self) -> None:
        self.activations += 1
        self.active = True

    async def execute_command(self, command: str, *args: object) -> object:
        self.commands.append((command, args))
        return None
