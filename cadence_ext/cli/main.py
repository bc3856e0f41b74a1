from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import signal
import sys
from pathlib import Path
from typing import Optional, Sequence

from cadence_ext.core.logging_config import configure_logging
from cadence_ext.core.logging_utils import get_module_logger
from cadence_ext.core.notifications import LoggingNotifier
from cadence_ext.core.paths import CONFIG_PATH, MASTER_LOG_FILE, ensure_directories
from cadence_ext.core.settings import Settings
from cadence_ext.dependency_installer import DependencyInstaller
from cadence_ext.emulator.flow_config import FlowConfig
from cadence_ext.emulator.scanner import EmulatorScanner
from cadence_ext.emulator.server import LanguageServerAPI

logger = get_module_logger("CLI")

LOG_LEVELS: dict[str, int] = {
    "critical": logging.CRITICAL,
    "error": logging.ERROR,
    "warning": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cadence-ext",
        description="Manage Cadence tool dependencies and the language server session",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=CONFIG_PATH,
        help="Settings file (key = value lines)",
    )
    parser.add_argument(
        "--workspace",
        type=Path,
        default=Path.cwd(),
        help="Flow project directory containing flow.json",
    )
    parser.add_argument(
        "--log-level",
        choices=sorted(LOG_LEVELS.keys()),
        default="info",
        help="Logging verbosity",
    )
    parser.add_argument(
        "--log-file",
        type=Path,
        default=None,
        help=f"Log file (default: {MASTER_LOG_FILE})",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("check", help="List missing dependencies")
    subparsers.add_parser("install", help="Install missing dependencies")
    subparsers.add_parser("detect", help="Report whether a usable emulator is running")
    subparsers.add_parser("serve", help="Run the language server session until interrupted")
    return parser


async def run_check(settings: Settings) -> int:
    installer = DependencyInstaller(settings=settings, notifier=LoggingNotifier())
    missing = await installer.check_dependencies()
    if not missing:
        print("All dependencies are installed.")
        return 0
    print("Missing dependencies: " + ", ".join(x.get_name() for x in missing))
    return 1


async def run_install(settings: Settings) -> int:
    installer = DependencyInstaller(settings=settings, notifier=LoggingNotifier())
    report = await installer.install_missing()
    for name, message in report.failed.items():
        print(f"{name}: {message}")
    return 0 if report.succeeded else 1


async def run_detect(settings: Settings) -> int:
    scanner = EmulatorScanner(
        FlowConfig(settings).get_config_path,
        host=settings.emulator_host,
        port=settings.emulator_port,
    )
    found = await scanner.detect()
    print("Emulator detected." if found else "No usable emulator detected.")
    return 0 if found else 1


async def run_serve(settings: Settings, stop_event: Optional[asyncio.Event] = None) -> int:
    notifier = LoggingNotifier()

    # Missing tools are reported (with the install prompt) before the
    # language server is launched.
    installer = DependencyInstaller(settings=settings, notifier=notifier)
    missing = await installer.check_dependencies()
    if missing:
        logger.warning("Run 'cadence-ext install' to install: %s",
                       ", ".join(x.get_name() for x in missing))

    api = LanguageServerAPI(settings, notifier=notifier)
    api.emulator_state.subscribe(
        lambda state: logger.info("Emulator state: %s", state.value), replay=False
    )

    if stop_event is None:
        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            with contextlib.suppress(NotImplementedError):
                loop.add_signal_handler(sig, stop_event.set)

    await api.activate()
    try:
        await stop_event.wait()
    finally:
        await api.deactivate()
    return 0


COMMANDS = {
    "check": run_check,
    "install": run_install,
    "detect": run_detect,
    "serve": run_serve,
}


async def async_main(args: argparse.Namespace) -> int:
    settings = await Settings.load(args.config, workspace=args.workspace)
    return await COMMANDS[args.command](settings)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    ensure_directories()
    log_file = args.log_file or MASTER_LOG_FILE
    configure_logging(LOG_LEVELS[args.log_level], log_file=log_file)
    logger.debug("Log file: %s", log_file)

    try:
        return asyncio.run(async_main(args))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
