"""
Language Server API - owns the Cadence language server session.

The session tracks two observable values, the client lifecycle state and
whether the Flow client is enabled, and derives the emulator connectivity
state from them. A watcher loop polls for a usable emulator and restarts
the language server with or without the Flow client whenever the detected
emulator status and the current connectivity disagree.

State transitions:
- STOPPED -> STARTING: start_client()
- STARTING -> RUNNING: language server initialized
- STARTING -> STOPPED: language server failed to start
- any -> STOPPED: stop_client()
"""

from __future__ import annotations

import asyncio
from enum import Enum
from pathlib import Path
from typing import Any, Callable, List, Optional

from cadence_ext.core.asyncio_utils import cancel_and_wait, create_logged_task
from cadence_ext.core.logging_utils import get_module_logger
from cadence_ext.core.notifications import LoggingNotifier, Notifier
from cadence_ext.core.observable import DerivedValue, ObservableValue
from cadence_ext.core.settings import Settings

from ..account import Account
from ..flow_config import ConfigWatch, FlowConfig, FlowConfigError
from ..responses import ClientAccount, GetAccountsResponse
from ..scanner import EmulatorScanner
from .lsp_client import LanguageClient

# Identities for commands handled by the language server
CREATE_ACCOUNT_SERVER = "cadence.server.flow.createAccount"
SWITCH_ACCOUNT_SERVER = "cadence.server.flow.switchActiveAccount"
GET_ACCOUNTS_SERVER = "cadence.server.flow.getAccounts"
RELOAD_CONFIGURATION = "cadence.server.flow.reloadConfiguration"

NO_EMULATOR_WARNING = (
    "Couldn't connect to emulator. Run 'flow emulator' in a terminal to enable all "
    "extension features. If you want to deploy contracts, send transactions or execute "
    "scripts you need a running emulator."
)


class ClientState(Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"


class EmulatorState(Enum):
    CONNECTED = "connected"
    CONNECTING = "connecting"
    DISCONNECTED = "disconnected"


class ClientStateError(RuntimeError):
    """Operation not allowed in the current client state."""


def compute_emulator_state(client_state: ClientState, flow_enabled: bool) -> EmulatorState:
    # Emulator is always disconnected when the Flow client is off
    if not flow_enabled:
        return EmulatorState.DISCONNECTED
    if client_state == ClientState.RUNNING:
        return EmulatorState.CONNECTED
    if client_state == ClientState.STARTING:
        return EmulatorState.CONNECTING
    return EmulatorState.DISCONNECTED


ClientFactory = Callable[..., LanguageClient]


class LanguageServerAPI:

    def __init__(
        self,
        settings: Settings,
        *,
        notifier: Optional[Notifier] = None,
        flow_config: Optional[FlowConfig] = None,
        scanner: Optional[EmulatorScanner] = None,
        client_factory: ClientFactory = LanguageClient,
    ):
        self.settings = settings
        self.logger = get_module_logger("LanguageServer")
        self.notifier: Notifier = notifier or LoggingNotifier()
        self.flow_config = flow_config or FlowConfig(settings)
        self.scanner = scanner or EmulatorScanner(
            self.flow_config.get_config_path,
            host=settings.emulator_host,
            port=settings.emulator_port,
            notifier=self.notifier,
        )
        self._client_factory = client_factory

        self.client: Optional[LanguageClient] = None

        self.client_state: ObservableValue[ClientState] = ObservableValue(
            ClientState.STOPPED, name="client_state", logger=self.logger
        )
        self.flow_enabled: ObservableValue[bool] = ObservableValue(
            False, name="flow_enabled", logger=self.logger
        )
        self.emulator_state: DerivedValue[EmulatorState] = DerivedValue(
            [self.client_state, self.flow_enabled],
            compute_emulator_state,
            name="emulator_state",
            logger=self.logger,
        )

        self._start_pending = False
        self._restart_lock = asyncio.Lock()
        self._watch_task: Optional[asyncio.Task] = None
        self._config_watch: Optional[ConfigWatch] = None

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def activate(self) -> None:
        """Start the language server and begin watching for an emulator."""
        await self.start_client()
        self.watch_emulator()

    async def deactivate(self) -> None:
        await cancel_and_wait(self._watch_task)
        self._watch_task = None
        await self.stop_client()

    async def start_client(self, enable_flow: Optional[bool] = None) -> None:
        # Prevent starting multiple times
        if self._start_pending or self.client_state.get() != ClientState.STOPPED:
            raise ClientStateError("Can't start client while already starting or started")

        self._start_pending = True
        try:
            await self._start_client(enable_flow)
        finally:
            self._start_pending = False

    async def _start_client(self, enable_flow: Optional[bool]) -> None:
        if enable_flow is None:
            enable_flow = await self.scanner.detect()
        self.flow_enabled.set(enable_flow)
        self.client_state.set(ClientState.STARTING)

        client: Optional[LanguageClient] = None
        config_path: Optional[Path] = None
        try:
            config_path = await self._resolve_config_path()
            client = self._client_factory(
                self.settings.flow_command,
                ["cadence", "language-server", f"--enable-flow-client={str(enable_flow).lower()}"],
                {
                    "configPath": str(config_path) if config_path else "",
                    "numberOfAccounts": str(self.settings.num_accounts),
                    "accessCheckMode": self.settings.access_check_mode,
                },
                root_path=Path(self.settings.workspace),
            )
            self.client = client
            await client.start()
        except Exception as e:
            self.logger.error("Language server failed to start: %s", e, exc_info=True)
            if self.client is client:
                self.client = None
                self.client_state.set(ClientState.STOPPED)
            self.notifier.show_error(f"Cadence language server failed to start: {e}")
        else:
            if self.client is not client:
                # stop_client() ran while we were starting
                self.logger.info("Client stopped during startup, discarding it")
                await self._stop_quietly(client)
                return
            self.client_state.set(ClientState.RUNNING)
            if config_path is not None:
                self._watch_flow_configuration(config_path)

        if not enable_flow:
            self.notifier.show_warning(NO_EMULATOR_WARNING)
        elif self.client_state.get() == ClientState.RUNNING:
            self.notifier.show_info("Flow Emulator Connected")

    async def _resolve_config_path(self) -> Optional[Path]:
        try:
            return await self.flow_config.get_config_path()
        except FlowConfigError as e:
            self.logger.warning("%s; starting without a Flow configuration", e)
            return None

    async def stop_client(self) -> None:
        self.client_state.set(ClientState.STOPPED)

        if self._config_watch is not None:
            await self._config_watch.stop()
            self._config_watch = None

        client, self.client = self.client, None
        if client is not None:
            await self._stop_quietly(client)

    async def _stop_quietly(self, client: LanguageClient) -> None:
        try:
            await client.stop()
        except Exception as e:
            self.logger.error("Error stopping language server: %s", e, exc_info=True)

    async def restart(self, enable_flow: bool) -> None:
        async with self._restart_lock:
            self.logger.info("Restarting language server (flow client %s)",
                             "enabled" if enable_flow else "disabled")
            await self.stop_client()
            await self.start_client(enable_flow)

    async def reset(self) -> None:
        enable_flow = await self.scanner.detect()
        await self.restart(enable_flow)

    def emulator_connected(self) -> bool:
        return self.emulator_state.get() == EmulatorState.CONNECTED

    # =========================================================================
    # Emulator watcher
    # =========================================================================

    @property
    def watching(self) -> bool:
        return self._watch_task is not None and not self._watch_task.done()

    def watch_emulator(self) -> None:
        if self.watching:
            return
        self._watch_task = create_logged_task(
            self._watch_loop(), logger=self.logger, context="emulator-watcher"
        )

    async def _watch_loop(self) -> None:
        # The next tick is only scheduled once the current one has finished.
        while True:
            await self.check_emulator()
            await asyncio.sleep(self.settings.poll_interval)

    async def check_emulator(self) -> None:
        """Run one watcher tick. Errors are logged, never raised."""
        try:
            # Wait for the client to finish connecting or disconnecting
            if self.client_state.get() == ClientState.STARTING:
                return

            emulator_found = await self.scanner.detect()
            if self.emulator_connected() == emulator_found:
                return

            self.logger.info("Emulator %s", "detected" if emulator_found else "lost")
            await self.restart(emulator_found)
        except Exception as e:
            self.logger.error("Emulator watcher tick failed: %s", e, exc_info=True)

    # =========================================================================
    # Flow configuration
    # =========================================================================

    def _watch_flow_configuration(self, config_path: Path) -> None:
        self._config_watch = self.flow_config.watch(config_path, self.reload_configuration)

    async def reload_configuration(self) -> None:
        await self._send_request(RELOAD_CONFIGURATION)

    # =========================================================================
    # Account commands
    # =========================================================================

    async def _send_request(self, command: str, args: Optional[List[Any]] = None) -> Any:
        client = self.client
        if client is None or self.client_state.get() != ClientState.RUNNING:
            raise ClientStateError(f"Cannot run {command}: language server is not running")
        return await client.execute_command(command, args or [])

    async def switch_active_account(self, account: Account) -> None:
        await self._send_request(SWITCH_ACCOUNT_SERVER, [account.name])

    async def create_account(self) -> Account:
        try:
            res = await self._send_request(CREATE_ACCOUNT_SERVER)
            return ClientAccount(res).as_account()
        except Exception as e:
            self.notifier.show_error(f"Failed to create account: {e}")
            raise

    async def get_accounts(self) -> GetAccountsResponse:
        res = await self._send_request(GET_ACCOUNTS_SERVER)
        return GetAccountsResponse(res)


__all__ = [
    "LanguageServerAPI",
    "ClientState",
    "EmulatorState",
    "ClientStateError",
    "compute_emulator_state",
    "CREATE_ACCOUNT_SERVER",
    "SWITCH_ACCOUNT_SERVER",
    "GET_ACCOUNTS_SERVER",
    "RELOAD_CONFIGURATION",
    "NO_EMULATOR_WARNING",
]
