from __future__ import annotations

import asyncio

import pytest

from lenssync.arguments import EncodingPolicy
from lenssync.dispatcher import ChangeDispatcher, read_settings
from lenssync.host import (
    ConfigurationChangeEvent,
    Document,
    LocalEventBus,
    MemorySettingsStore,
    RecordingController,
)
from lenssync.placeholders import PlaceholderContext
from lenssync.schema import SyncOptions
from tests.host_helpers import (
    HELP_WITH_FLAG,
    HELP_WITHOUT_FLAG,
    FailingStore,
    FakeLauncher,
    RecordingSleep,
)

ARGS = "clangd.arguments"
ENABLED = "clangd.CodeLens.Enabled"
RESTART = "clangd.CodeLens.RestartServerOnChange"
PATH = "clangd.path"


def _dispatcher(
    store: MemorySettingsStore,
    controller: RecordingController,
    launcher: FakeLauncher,
    sleep: RecordingSleep,
    **kwargs,
) -> ChangeDispatcher:
    return ChangeDispatcher.create(
        store,
        controller,
        identity="test-instance",
        launcher=launcher,
        sleep=sleep,
        context=PlaceholderContext(home="/home/dev"),
        **kwargs,
    )


def test_read_settings_applies_defaults(options: SyncOptions) -> None:
    settings = asyncio.run(read_settings(MemorySettingsStore(), options))
    assert settings.enabled is True
    assert settings.restart_on_change is False
    assert settings.path == ""
    assert settings.arguments == []


def test_read_settings_tolerates_odd_values(options: SyncOptions) -> None:
    store = MemorySettingsStore({ENABLED: "false", RESTART: 1, PATH: 7, ARGS: ["--a", 3]})
    settings = asyncio.run(read_settings(store, options))
    assert settings.enabled is False
    assert settings.restart_on_change is True
    assert settings.path == ""
    assert settings.arguments == ["--a", "3"]


def test_start_writes_disabled_flag(controller, sleep) -> None:
    store = MemorySettingsStore({ENABLED: False, ARGS: ["--log=error"]})
    dispatcher = _dispatcher(store, controller, FakeLauncher(HELP_WITH_FLAG), sleep)
    assert asyncio.run(dispatcher.start()) is True
    assert dispatcher.policy is EncodingPolicy.EXPLICIT
    assert store.values[ARGS] == ["--log=error", "--code-lens=0"]
    assert controller.commands == []


def test_start_restarts_when_configured(controller, sleep) -> None:
    store = MemorySettingsStore({ENABLED: False, RESTART: True})
    dispatcher = _dispatcher(store, controller, FakeLauncher(HELP_WITH_FLAG), sleep)

    async def _run() -> bool:
        changed = await dispatcher.start()
        await dispatcher.drain()
        return changed

    assert asyncio.run(_run()) is True
    assert controller.commands == [("clangd.restart", ())]
    assert sleep.delays[-1] == 1.0


def test_restart_skipped_when_extension_inactive(sleep) -> None:
    controller = RecordingController(active=False)
    store = MemorySettingsStore({ENABLED: False, RESTART: True})
    dispatcher = _dispatcher(store, controller, FakeLauncher(HELP_WITH_FLAG), sleep)

    async def _run() -> None:
        await dispatcher.start()
        await dispatcher.drain()

    asyncio.run(_run())
    assert controller.commands == []
    assert controller.activations == 0


def test_no_restart_without_change(controller, sleep) -> None:
    store = MemorySettingsStore({ENABLED: True, RESTART: True, ARGS: ["--code-lens=1"]})
    dispatcher = _dispatcher(store, controller, FakeLauncher(HELP_WITH_FLAG), sleep)

    async def _run() -> bool:
        changed = await dispatcher.start()
        await dispatcher.drain()
        return changed

    assert asyncio.run(_run()) is False
    assert store.writes == []
    assert controller.commands == []


def test_unsupported_binary_forces_enabled(controller, sleep) -> None:
    store = MemorySettingsStore({ENABLED: False, ARGS: ["--code-lens=0", "--bar"]})
    dispatcher = _dispatcher(store, controller, FakeLauncher(HELP_WITHOUT_FLAG), sleep)
    assert asyncio.run(dispatcher.start()) is True
    assert dispatcher.policy is EncodingPolicy.PRESENCE
    assert dispatcher.state.desired is True
    assert store.values[ARGS] == ["--bar"]


def test_unsupported_binary_leaves_list_without_flag(controller, sleep) -> None:
    store = MemorySettingsStore({ENABLED: False, ARGS: ["--bar"]})
    dispatcher = _dispatcher(store, controller, FakeLauncher(HELP_WITHOUT_FLAG), sleep)
    assert asyncio.run(dispatcher.start()) is False
    assert store.writes == []


def test_document_focus_filters_languages(controller, sleep) -> None:
    store = MemorySettingsStore({ARGS: ["--code-lens=1"]})
    dispatcher = _dispatcher(store, controller, FakeLauncher(HELP_WITH_FLAG), sleep)

    async def _run() -> tuple[bool, bool, bool]:
        await dispatcher.start()
        dispatcher.state.request(False)
        ignored_none = await dispatcher.did_change_active_document(None)
        ignored_python = await dispatcher.did_change_active_document(Document("python"))
        handled = await dispatcher.did_change_active_document(Document("cpp"))
        return ignored_none, ignored_python, handled

    assert asyncio.run(_run()) == (False, False, True)
    assert store.values[ARGS] == ["--code-lens=0"]


def test_document_focus_without_pending_work_is_noop(controller, sleep) -> None:
    store = MemorySettingsStore({ARGS: ["--code-lens=1"]})
    dispatcher = _dispatcher(store, controller, FakeLauncher(HELP_WITH_FLAG), sleep)

    async def _run() -> bool:
        await dispatcher.start()
        return await dispatcher.did_change_active_document(Document("c"))

    assert asyncio.run(_run()) is False
    assert store.writes == []


def test_unrelated_configuration_is_ignored(controller, sleep) -> None:
    launcher = FakeLauncher(HELP_WITH_FLAG)
    store = MemorySettingsStore()
    dispatcher = _dispatcher(store, controller, launcher, sleep)

    async def _run() -> bool:
        await dispatcher.start()
        store.values[ENABLED] = False
        return await dispatcher.did_change_configuration(
            ConfigurationChangeEvent.for_keys("editor.fontSize")
        )

    assert asyncio.run(_run()) is False
    assert dispatcher.state.desired is True
    assert len(launcher.calls) == 1


def test_enabled_change_is_reconciled(controller, sleep) -> None:
    store = MemorySettingsStore({RESTART: True})
    dispatcher = _dispatcher(store, controller, FakeLauncher(HELP_WITH_FLAG), sleep)

    async def _run() -> bool:
        await dispatcher.start()
        store.values[ENABLED] = False
        changed = await dispatcher.did_change_configuration(
            ConfigurationChangeEvent.for_keys(ENABLED)
        )
        await dispatcher.drain()
        return changed

    assert asyncio.run(_run()) is True
    assert store.values[ARGS] == ["--code-lens=0"]
    assert controller.commands == [("clangd.restart", ())]


def test_path_change_selects_new_capability(controller, sleep) -> None:
    launcher = FakeLauncher(
        HELP_WITH_FLAG,
        by_path={"/home/dev/old/clangd": HELP_WITHOUT_FLAG},
    )
    store = MemorySettingsStore({ENABLED: False})
    dispatcher = _dispatcher(store, controller, launcher, sleep)

    async def _run() -> bool:
        await dispatcher.start()
        store.values[PATH] = "${userHome}/old/clangd"
        return await dispatcher.did_change_configuration(
            ConfigurationChangeEvent.for_keys(PATH)
        )

    assert asyncio.run(_run()) is True
    assert dispatcher.binary_path == "${userHome}/old/clangd"
    assert dispatcher.policy is EncodingPolicy.PRESENCE
    assert store.values[ARGS] == []
    assert [call[0] for call in launcher.calls] == ["clangd", "/home/dev/old/clangd"]


def test_supported_path_restores_requested_value(controller, sleep) -> None:
    launcher = FakeLauncher(
        HELP_WITHOUT_FLAG,
        by_path={"/opt/new/clangd": HELP_WITH_FLAG},
    )
    store = MemorySettingsStore({ENABLED: False})
    dispatcher = _dispatcher(store, controller, launcher, sleep)

    async def _run() -> bool:
        await dispatcher.start()
        assert dispatcher.state.desired is True
        store.values[PATH] = "/opt/new/clangd"
        return await dispatcher.did_change_configuration(
            ConfigurationChangeEvent.for_keys(PATH)
        )

    assert asyncio.run(_run()) is True
    assert dispatcher.policy is EncodingPolicy.EXPLICIT
    assert dispatcher.requested is False
    assert dispatcher.state.desired is False
    assert store.values[ARGS] == ["--code-lens=0"]


def test_capability_is_probed_once_per_path(controller, sleep) -> None:
    launcher = FakeLauncher(HELP_WITH_FLAG)
    store = MemorySettingsStore()
    dispatcher = _dispatcher(store, controller, launcher, sleep)

    async def _run() -> None:
        await dispatcher.start()
        for value in (False, True, False):
            store.values[ENABLED] = value
            await dispatcher.did_change_configuration(ConfigurationChangeEvent.for_keys(ENABLED))

    asyncio.run(_run())
    assert len(launcher.calls) == 1


def test_hand_edited_flag_is_restored_with_one_notice(controller, sleep) -> None:
    notices: list[str] = []
    store = MemorySettingsStore({ENABLED: False})
    dispatcher = _dispatcher(
        store, controller, FakeLauncher(HELP_WITH_FLAG), sleep, notify=notices.append
    )

    async def _run() -> list[bool]:
        await dispatcher.start()
        results = []
        for edited in (["--code-lens=1", "--x"], ["--code-lens"]):
            store.values[ARGS] = edited
            results.append(
                await dispatcher.did_change_configuration(ConfigurationChangeEvent.for_keys(ARGS))
            )
        return results

    assert asyncio.run(_run()) == [True, True]
    assert store.values[ARGS] == ["--code-lens=0"]
    assert len(notices) == 1
    assert "--code-lens" in notices[0]


def test_own_write_echo_is_quiet(controller, sleep) -> None:
    notices: list[str] = []
    store = MemorySettingsStore({ENABLED: False})
    dispatcher = _dispatcher(
        store, controller, FakeLauncher(HELP_WITH_FLAG), sleep, notify=notices.append
    )

    async def _run() -> bool:
        await dispatcher.start()
        return await dispatcher.did_change_configuration(ConfigurationChangeEvent.for_keys(ARGS))

    assert asyncio.run(_run()) is False
    assert notices == []
    assert len(store.writes) == 1


def test_write_failure_keeps_work_pending(controller, sleep) -> None:
    store = FailingStore({ENABLED: False})
    dispatcher = _dispatcher(store, controller, FakeLauncher(HELP_WITH_FLAG), sleep)

    async def _run() -> bool:
        with pytest.raises(OSError):
            await dispatcher.start()
        assert dispatcher.state.dirty is True
        store.failing = False
        return await dispatcher.did_change_active_document(Document("objective-cpp"))

    assert asyncio.run(_run()) is True
    assert store.values[ARGS] == ["--code-lens=0"]


def test_attach_routes_bus_events(controller, sleep) -> None:
    bus = LocalEventBus()
    store = MemorySettingsStore()
    dispatcher = _dispatcher(store, controller, FakeLauncher(HELP_WITH_FLAG), sleep)
    dispatcher.attach(bus)

    async def _run() -> None:
        await dispatcher.start()
        store.values[ENABLED] = False
        await bus.emit_configuration([ENABLED])
        dispatcher.dispose()
        store.values[ENABLED] = True
        await bus.emit_configuration([ENABLED])

    asyncio.run(_run())
    assert dispatcher.state.desired is False
    assert store.values[ARGS] == ["--code-lens=0"]


def test_custom_options_change_keys_and_flag(controller, sleep) -> None:
    options = SyncOptions(section="lsp", flag="--inlay-hints", restart_command="lsp.restart")
    store = MemorySettingsStore({"lsp.CodeLens.Enabled": False, "lsp.CodeLens.RestartServerOnChange": True})
    launcher = FakeLauncher("  --inlay-hints\n")
    dispatcher = _dispatcher(store, controller, launcher, sleep, options=options)

    async def _run() -> None:
        await dispatcher.start()
        await dispatcher.drain()

    asyncio.run(_run())
    assert store.values["lsp.arguments"] == ["--inlay-hints=0"]
    assert controller.commands == [("lsp.restart", ())]
