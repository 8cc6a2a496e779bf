from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from lenssync.arguments import EncodingPolicy, locate, parse_entry
from lenssync.capability import CapabilityProbe
from lenssync.config import as_bool
from lenssync.host import (
    ConfigurationChangeEvent,
    Disposable,
    Document,
    EventBus,
    Launcher,
    ProcessController,
    SettingsStore,
    subprocess_launcher,
)
from lenssync.placeholders import PlaceholderContext
from lenssync.reconciler import FlagState, Reconciler, jitter_delay_ms
from lenssync.schema import SyncOptions, SyncSettings

logger = logging.getLogger(__name__)


async def read_settings(store: SettingsStore, options: SyncOptions) -> SyncSettings:
    enabled = await store.get(options.enabled_key, True)
    restart = await store.get(options.restart_key, False)
    path = await store.get(options.path_key, "")
    arguments = await store.get(options.arguments_key, [])
    return SyncSettings(
        enabled=as_bool(enabled),
        restart_on_change=as_bool(restart),
        path=path if isinstance(path, str) else "",
        arguments=[str(item) for item in arguments] if isinstance(arguments, list) else [],
    )


class ChangeDispatcher:
    """Reacts to editor events by reconciling the tracked flag.

    Owns the :class:`FlagState`; the encoding policy follows the capability
    of the configured binary (EXPLICIT when it understands the flag,
    PRESENCE with the flag forced on when it does not).
    """

    def __init__(
        self,
        store: SettingsStore,
        probe: CapabilityProbe,
        reconciler: Reconciler,
        controller: ProcessController,
        *,
        options: SyncOptions | None = None,
        notify: Callable[[str], None] | None = None,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    ) -> None:
        self.options = options if options is not None else SyncOptions()
        self.state = FlagState()
        # user setting; state.desired may be forced on while unsupported
        self.requested = True
        self.policy = EncodingPolicy.EXPLICIT
        self.binary_path = ""
        self.probe = probe
        self.reconciler = reconciler
        self._store = store
        self._controller = controller
        self._notify = notify
        self._sleep = sleep
        self._advised = False
        self._restarts: set[asyncio.Task[None]] = set()
        self._disposables: list[Disposable] = []

    @classmethod
    def create(
        cls,
        store: SettingsStore,
        controller: ProcessController,
        *,
        identity: str,
        options: SyncOptions | None = None,
        launcher: Launcher = subprocess_launcher,
        context: PlaceholderContext | None = None,
        notify: Callable[[str], None] | None = None,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    ) -> ChangeDispatcher:
        options = options if options is not None else SyncOptions()
        probe = CapabilityProbe(
            flag=options.flag,
            default_binary=options.default_binary,
            help_argument=options.help_argument,
            launcher=launcher,
            context=context,
            store=store,
        )
        reconciler = Reconciler(
            store,
            delay_ms=jitter_delay_ms(
                identity,
                minimum_ms=options.jitter_minimum_ms,
                spread_ms=options.jitter_spread_ms,
            ),
            arguments_key=options.arguments_key,
            flag=options.flag,
            sleep=sleep,
        )
        return cls(
            store,
            probe,
            reconciler,
            controller,
            options=options,
            notify=notify,
            sleep=sleep,
        )

    def attach(self, bus: EventBus) -> list[Disposable]:
        disposables = [
            bus.on_did_change_active_document(self.did_change_active_document),
            bus.on_did_change_configuration(self.did_change_configuration),
        ]
        self._disposables.extend(disposables)
        return disposables

    def dispose(self) -> None:
        disposables, self._disposables = self._disposables, []
        for disposable in disposables:
            disposable.dispose()

    async def start(self) -> bool:
        settings = await read_settings(self._store, self.options)
        self.requested = settings.enabled
        self.state.request(settings.enabled)
        self.binary_path = settings.path
        await self._resolve_policy()
        return await self._reconcile_and_restart()

    async def did_change_active_document(self, document: Document | None) -> bool:
        if document is None or document.language_id not in self.options.languages:
            return False
        return await self._reconcile_and_restart()

    async def did_change_configuration(self, event: ConfigurationChangeEvent) -> bool:
        changed_enabled = event.affects_configuration(self.options.enabled_key)
        changed_path = event.affects_configuration(self.options.path_key)
        changed_arguments = event.affects_configuration(self.options.arguments_key)
        if not (changed_enabled or changed_path or changed_arguments):
            return False

        settings = await read_settings(self._store, self.options)
        if changed_path:
            self.binary_path = settings.path
        if changed_enabled:
            self.requested = settings.enabled
            self.state.request(settings.enabled)
        if changed_arguments:
            self._advise(settings.arguments)
            self.state.dirty = True
        await self._resolve_policy()
        return await self._reconcile_and_restart()

    async def _resolve_policy(self) -> None:
        if await self.probe.is_supported(self.binary_path):
            self.policy = EncodingPolicy.EXPLICIT
            if self.state.desired != self.requested:
                self.state.request(self.requested)
            return
        if not self.requested:
            logger.info(
                "%s is not supported by %r; keeping code lens enabled",
                self.options.flag,
                self.binary_path or self.options.default_binary,
            )
        self.policy = EncodingPolicy.PRESENCE
        self.state.request(True)

    def _advise(self, arguments: list[str]) -> None:
        if self._advised:
            return
        index = locate(arguments, self.options.flag)
        if index < 0 or parse_entry(arguments[index], self.options.flag) == self.state.desired:
            return
        self._advised = True
        message = (
            f"{self.options.flag} in {self.options.arguments_key} follows "
            f"{self.options.enabled_key}; the edited value will be replaced."
        )
        logger.info(message)
        if self._notify is not None:
            self._notify(message)

    async def _reconcile_and_restart(self) -> bool:
        changed = await self.reconciler.reconcile(self.state, self.policy)
        if not changed:
            return False
        settings = await read_settings(self._store, self.options)
        if settings.restart_on_change:
            self.request_restart()
        return True

    def request_restart(self) -> bool:
        if not self._controller.is_active():
            logger.debug("%s is not active; nothing to restart", self.options.extension_id)
            return False
        task = asyncio.get_running_loop().create_task(self._delayed_restart())
        self._restarts.add(task)
        task.add_done_callback(self._restart_done)
        return True

    async def _delayed_restart(self) -> None:
        await self._sleep(self.options.restart_delay_s)
        await self._controller.execute_command(self.options.restart_command)

    def _restart_done(self, task: asyncio.Task[None]) -> None:
        self._restarts.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("%s failed: %s", self.options.restart_command, exc)

    async def drain(self) -> None:
        """Wait for every scheduled restart to finish."""
        while self._restarts:
            await asyncio.gather(*list(self._restarts), return_exceptions=True)
