"""Unit tests for the language server session state machine and watcher."""

import asyncio
import os

import pytest

from cadence_ext.core.settings import Settings
from cadence_ext.emulator.account import Account
from cadence_ext.emulator.server.language_server import (
    CREATE_ACCOUNT_SERVER,
    GET_ACCOUNTS_SERVER,
    NO_EMULATOR_WARNING,
    RELOAD_CONFIGURATION,
    SWITCH_ACCOUNT_SERVER,
    ClientState,
    ClientStateError,
    EmulatorState,
    LanguageServerAPI,
    compute_emulator_state,
)
from cadence_ext.emulator.server.lsp_client import LanguageServerError
from tests.infrastructure.mocks.session_mocks import (
    FakeLanguageClient,
    ScriptedScanner,
    fake_client_factory,
)


def make_api(settings, notifier, scanner=None, **client_overrides):
    return LanguageServerAPI(
        settings,
        notifier=notifier,
        scanner=scanner or ScriptedScanner([False]),
        client_factory=fake_client_factory(**client_overrides),
    )


async def settle(predicate, attempts=200):
    for _ in range(attempts):
        if predicate():
            return True
        await asyncio.sleep(0.005)
    return predicate()


class TestEmulatorState:

    @pytest.mark.parametrize("client_state,flow_enabled,expected", [
        (ClientState.RUNNING, True, EmulatorState.CONNECTED),
        (ClientState.STARTING, True, EmulatorState.CONNECTING),
        (ClientState.STOPPED, True, EmulatorState.DISCONNECTED),
        (ClientState.RUNNING, False, EmulatorState.DISCONNECTED),
        (ClientState.STARTING, False, EmulatorState.DISCONNECTED),
        (ClientState.STOPPED, False, EmulatorState.DISCONNECTED),
    ])
    def test_compute_emulator_state(self, client_state, flow_enabled, expected):
        assert compute_emulator_state(client_state, flow_enabled) == expected

    def test_initial_state(self, settings, notifier):
        api = make_api(settings, notifier)
        assert api.client_state.get() == ClientState.STOPPED
        assert api.flow_enabled.get() is False
        assert api.emulator_state.get() == EmulatorState.DISCONNECTED
        assert not api.emulator_connected()


class TestStartClient:

    @pytest.mark.asyncio
    async def test_start_with_flow(self, settings, notifier, workspace):
        api = make_api(settings, notifier)

        await api.start_client(enable_flow=True)
        try:
            client = FakeLanguageClient.instances[-1]
            assert client.command == "flow"
            assert client.args == ["cadence", "language-server", "--enable-flow-client=true"]
            assert client.initialization_options == {
                "configPath": str((workspace / "flow.json").resolve()),
                "numberOfAccounts": "5",
                "accessCheckMode": "strict",
            }
            assert client.root_path == workspace
            assert api.client_state.get() == ClientState.RUNNING
            assert api.emulator_connected()
            assert notifier.infos == ["Flow Emulator Connected"]
        finally:
            await api.deactivate()

    @pytest.mark.asyncio
    async def test_start_uses_detection_when_unspecified(self, settings, notifier):
        scanner = ScriptedScanner([False])
        api = make_api(settings, notifier, scanner=scanner)

        await api.start_client()
        try:
            assert scanner.calls == 1
            assert FakeLanguageClient.instances[-1].args[-1] == "--enable-flow-client=false"
            assert api.client_state.get() == ClientState.RUNNING
            assert api.emulator_state.get() == EmulatorState.DISCONNECTED
            assert notifier.warnings == [NO_EMULATOR_WARNING]
        finally:
            await api.deactivate()

    @pytest.mark.asyncio
    async def test_missing_flow_config_starts_without_path(self, tmp_path, notifier):
        settings = Settings(workspace=tmp_path, config_watch_interval=0.01)
        api = make_api(settings, notifier)

        await api.start_client(enable_flow=True)
        try:
            assert FakeLanguageClient.instances[-1].initialization_options["configPath"] == ""
            assert api.client_state.get() == ClientState.RUNNING
            assert api._config_watch is None
        finally:
            await api.deactivate()

    @pytest.mark.asyncio
    async def test_start_failure_reverts_to_stopped(self, settings, notifier):
        api = make_api(settings, notifier, fail_start=LanguageServerError("boom"))

        await api.start_client(enable_flow=True)

        assert api.client_state.get() == ClientState.STOPPED
        assert api.client is None
        assert notifier.errors == ["Cadence language server failed to start: boom"]
        assert notifier.infos == []

    @pytest.mark.asyncio
    async def test_start_while_starting_is_rejected(self, settings, notifier):
        gate = asyncio.Event()
        api = make_api(settings, notifier, start_gate=gate)

        task = asyncio.create_task(api.start_client(enable_flow=True))
        assert await settle(lambda: api.client_state.get() == ClientState.STARTING)

        with pytest.raises(ClientStateError):
            await api.start_client(enable_flow=False)

        assert api.client_state.get() == ClientState.STARTING
        assert api.flow_enabled.get() is True
        assert len(FakeLanguageClient.instances) == 1

        gate.set()
        await task
        try:
            assert api.client_state.get() == ClientState.RUNNING
        finally:
            await api.deactivate()

    @pytest.mark.asyncio
    async def test_start_while_detecting_is_rejected(self, settings, notifier):
        release = asyncio.Event()

        class SlowScanner:
            async def detect(self):
                await release.wait()
                return False

        api = make_api(settings, notifier, scanner=SlowScanner())
        task = asyncio.create_task(api.start_client())
        await asyncio.sleep(0.01)

        with pytest.raises(ClientStateError):
            await api.start_client(enable_flow=True)

        release.set()
        await task
        try:
            assert len(FakeLanguageClient.instances) == 1
        finally:
            await api.deactivate()

    @pytest.mark.asyncio
    async def test_start_while_running_is_rejected(self, settings, notifier):
        api = make_api(settings, notifier)
        await api.start_client(enable_flow=True)
        try:
            with pytest.raises(ClientStateError):
                await api.start_client(enable_flow=True)
            assert api.client_state.get() == ClientState.RUNNING
            assert len(FakeLanguageClient.instances) == 1
        finally:
            await api.deactivate()

    @pytest.mark.asyncio
    async def test_observers_see_every_transition(self, settings, notifier):
        api = make_api(settings, notifier)
        client_states = []
        emulator_states = []
        api.client_state.subscribe(client_states.append, replay=False)
        api.emulator_state.subscribe(emulator_states.append)

        await api.start_client(enable_flow=True)
        await api.stop_client()

        assert client_states == [ClientState.STARTING, ClientState.RUNNING, ClientState.STOPPED]
        assert emulator_states[0] == EmulatorState.DISCONNECTED
        assert EmulatorState.CONNECTING in emulator_states
        assert emulator_states.index(EmulatorState.CONNECTING) < emulator_states.index(EmulatorState.CONNECTED)
        assert emulator_states[-1] == EmulatorState.DISCONNECTED


class TestStopClient:

    @pytest.mark.asyncio
    async def test_stop_stops_client_and_config_watch(self, settings, notifier):
        api = make_api(settings, notifier)
        await api.start_client(enable_flow=True)
        client = FakeLanguageClient.instances[-1]
        watch = api._config_watch

        await api.stop_client()

        assert client.stopped
        assert api.client is None
        assert api.client_state.get() == ClientState.STOPPED
        assert watch is not None and not watch.running

    @pytest.mark.asyncio
    async def test_stop_during_start_discards_client(self, settings, notifier):
        gate = asyncio.Event()
        api = make_api(settings, notifier, start_gate=gate)

        task = asyncio.create_task(api.start_client(enable_flow=True))
        assert await settle(lambda: api.client_state.get() == ClientState.STARTING)
        await api.stop_client()
        gate.set()
        await task

        assert api.client_state.get() == ClientState.STOPPED
        assert api.client is None
        assert FakeLanguageClient.instances[0].stopped


class TestWatcher:

    @pytest.mark.asyncio
    async def test_restarts_only_on_status_change(self, settings, notifier):
        scanner = ScriptedScanner([False, True, True, False])
        api = make_api(settings, notifier, scanner=scanner)
        await api.start_client(enable_flow=False)
        restarts = []
        original_restart = api.restart

        async def counting_restart(enable_flow):
            restarts.append(enable_flow)
            await original_restart(enable_flow)

        api.restart = counting_restart
        try:
            for _ in range(4):
                await api.check_emulator()
        finally:
            await api.deactivate()

        assert restarts == [True, False]
        assert len(FakeLanguageClient.instances) == 3
        assert FakeLanguageClient.instances[1].args[-1] == "--enable-flow-client=true"
        assert FakeLanguageClient.instances[2].args[-1] == "--enable-flow-client=false"

    @pytest.mark.asyncio
    async def test_tick_skipped_while_starting(self, settings, notifier):
        scanner = ScriptedScanner([True])
        api = make_api(settings, notifier, scanner=scanner)
        api.client_state.set(ClientState.STARTING)

        await api.check_emulator()

        assert scanner.calls == 0
        assert FakeLanguageClient.instances == []

    @pytest.mark.asyncio
    async def test_tick_errors_are_swallowed(self, settings, notifier):
        class FailingScanner:
            async def detect(self):
                raise OSError("scan failed")

        api = make_api(settings, notifier, scanner=FailingScanner())

        await api.check_emulator()

        assert api.client_state.get() == ClientState.STOPPED

    @pytest.mark.asyncio
    async def test_loop_survives_failed_tick_without_overlap(self, settings, notifier):
        class FlakyScanner:
            def __init__(self):
                self.calls = 0
                self.active = 0
                self.max_active = 0

            async def detect(self):
                self.calls += 1
                self.active += 1
                self.max_active = max(self.max_active, self.active)
                try:
                    await asyncio.sleep(0.02)  # longer than the poll interval
                    if self.calls == 2:
                        raise OSError("scan failed")
                    return self.calls >= 3
                finally:
                    self.active -= 1

        scanner = FlakyScanner()
        api = make_api(settings, notifier, scanner=scanner)

        # call 1 is the startup detection, call 2 the first (failing) tick
        await api.activate()
        try:
            assert await settle(api.emulator_connected)
            assert api.watching
        finally:
            await api.deactivate()

        assert scanner.calls >= 3
        assert scanner.max_active == 1

    @pytest.mark.asyncio
    async def test_activate_connects_when_emulator_appears(self, settings, notifier):
        scanner = ScriptedScanner([False, False, True])
        api = make_api(settings, notifier, scanner=scanner)

        await api.activate()
        try:
            assert api.watching
            assert await settle(api.emulator_connected)
        finally:
            await api.deactivate()

        assert not api.watching
        assert api.client_state.get() == ClientState.STOPPED
        assert "Flow Emulator Connected" in notifier.infos

    @pytest.mark.asyncio
    async def test_reset_restarts_with_detection(self, settings, notifier):
        scanner = ScriptedScanner([True])
        api = make_api(settings, notifier, scanner=scanner)
        await api.start_client(enable_flow=False)

        await api.reset()
        try:
            assert api.emulator_connected()
            assert FakeLanguageClient.instances[0].stopped
        finally:
            await api.deactivate()


class TestFlowConfigurationReload:

    @pytest.mark.asyncio
    async def test_config_change_sends_reload(self, settings, notifier, workspace):
        api = make_api(settings, notifier)
        await api.start_client(enable_flow=True)
        client = FakeLanguageClient.instances[-1]
        try:
            await asyncio.sleep(0.03)
            path = workspace / "flow.json"
            stat = path.stat()
            os.utime(path, (stat.st_atime, stat.st_mtime + 5))

            assert await settle(lambda: (RELOAD_CONFIGURATION, []) in client.commands)
        finally:
            await api.deactivate()


class TestAccountCommands:

    @pytest.mark.asyncio
    async def test_switch_active_account(self, settings, notifier):
        api = make_api(settings, notifier)
        await api.start_client(enable_flow=True)
        try:
            await api.switch_active_account(Account("Alice", "0x01"))
            assert FakeLanguageClient.instances[-1].commands == [(SWITCH_ACCOUNT_SERVER, ["Alice"])]
        finally:
            await api.deactivate()

    @pytest.mark.asyncio
    async def test_create_account(self, settings, notifier):
        api = make_api(settings, notifier, responses={
            CREATE_ACCOUNT_SERVER: {"Name": "Charlie", "Address": "e03daebed8ca0615", "Active": False},
        })
        await api.start_client(enable_flow=True)
        try:
            account = await api.create_account()
        finally:
            await api.deactivate()

        assert account == Account("Charlie", "0xe03daebed8ca0615")

    @pytest.mark.asyncio
    async def test_create_account_failure_notifies(self, settings, notifier):
        api = make_api(settings, notifier, responses={
            CREATE_ACCOUNT_SERVER: LanguageServerError("emulator unreachable"),
        })
        await api.start_client(enable_flow=True)
        try:
            with pytest.raises(LanguageServerError):
                await api.create_account()
        finally:
            await api.deactivate()

        assert notifier.errors == ["Failed to create account: emulator unreachable"]

    @pytest.mark.asyncio
    async def test_get_accounts(self, settings, notifier):
        api = make_api(settings, notifier, responses={
            GET_ACCOUNTS_SERVER: [
                {"Name": "Alice", "Address": "01", "Active": True},
                {"Name": "Bob", "Address": "02", "Active": False},
            ],
        })
        await api.start_client(enable_flow=True)
        try:
            response = await api.get_accounts()
        finally:
            await api.deactivate()

        assert response.active == Account("Alice", "0x01", True)
        assert [a.name for a in response.accounts] == ["Alice", "Bob"]

    @pytest.mark.asyncio
    async def test_commands_require_running_client(self, settings, notifier):
        api = make_api(settings, notifier)

        with pytest.raises(ClientStateError):
            await api.get_accounts()
        with pytest.raises(ClientStateError):
            await api.switch_active_account(Account("Alice", "0x01"))
