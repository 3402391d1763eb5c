#!/usr/bin/env python3

original_print = print
import asyncio
import datetime
import logging
import os
import signal
import sys
from dataclasses import dataclass, field
from typing import Any

from loguru import logger
from prompt_toolkit import PromptSession
from prompt_toolkit.auto_suggest import AutoSuggestFromHistory
from prompt_toolkit.history import FileHistory, ThreadedHistory
from prompt_toolkit.patch_stdout import patch_stdout
from prompt_toolkit.shortcuts import set_title

from walink import cmds
from walink.completer import CommandCompleter
from walink.engine.config import SupervisorConfig, loadConfig
from walink.engine.credstore import CredentialStore
from walink.engine.errors import ConfigError
from walink.engine.events import Event, EventBus, EventKind
from walink.engine.protocols import SessionFactory
from walink.engine.supervisor import LifecycleSupervisor
from walink.helpers import PAIRING_INSTRUCTIONS, resolveFactory, statusToolbar


@dataclass(slots=True)
class WalinkApp:
    config: SupervisorConfig = field(default_factory=loadConfig)

    # session library entry point (resolved from config.sessionFactory if not given)
    factory: SessionFactory | None = None

    # seconds between bottom toolbar refreshes
    toolbarUpdateInterval: float = 1.0

    dispatch: cmds.Dispatch = field(default_factory=cmds.Dispatch)

    store: CredentialStore = field(init=False)
    bus: EventBus = field(init=False)
    supervisor: LifecycleSupervisor = field(init=False)

    # destinations successfully sent to this session (ordered, for completion)
    recentDestinations: dict[str, None] = field(default_factory=dict)

    # show full tracebacks for debug command errors
    bigerror: bool = False

    exiting: bool = False

    # Console log handler (set by setupLogging)
    _console_handler_id: int = field(init=False, default=0)

    def __post_init__(self) -> None:
        self.setupLogging()

        if self.factory is None:
            self.factory = resolveFactory(self.config.sessionFactory)

        self.store = CredentialStore(self.config.authDir)
        self.bus = EventBus()
        self.supervisor = LifecycleSupervisor(
            self.factory, self.store, bus=self.bus, config=self.config
        )
        self.bus.subscribe(self.onEvent)

    def setupLogging(self) -> None:
        # Session libraries usually log through stdlib logging; keep that in its own file.
        now = datetime.datetime.now()
        LOGDIR = self.config.logDir / f"{now.year}" / f"{now.month:02}"
        LOGDIR.mkdir(exist_ok=True, parents=True)
        LOG_FILE_TEMPLATE = str(LOGDIR / f"walink-{now.isoformat(timespec='seconds')}").replace(
            ":", "-"
        )
        logging.basicConfig(
            level=logging.INFO,
            filename=LOG_FILE_TEMPLATE + "-session.log",
            format="%(asctime)s %(name)s %(message)s",
        )

        logger.info("Logging session with prefix: {}", LOG_FILE_TEMPLATE)

        def asink(x):
            # plain print keeps output above the prompt under patch_stdout()
            original_print(x, end="")

        logger.remove()
        self._console_handler_id = logger.add(asink, colorize=True, level=self.config.logLevel)

        # everything (including TRACE-logged user input) goes to the file log
        logger.add(sink=LOG_FILE_TEMPLATE + "-walink.log", level="TRACE", colorize=False)

    def onEvent(self, event: Event) -> None:
        match event.kind:
            case EventKind.PAIRING_CHALLENGE:
                logger.info("Pairing code received:\n{}", event.payload)
                logger.info(PAIRING_INSTRUCTIONS)
            case EventKind.READY:
                logger.info("Ready: session connected")
            case EventKind.CONNECTING:
                logger.info("Connecting...")
            case EventKind.LOGOUT:
                logger.warning("Logged out: credentials cleared")

    async def buildAndRun(self, text: str) -> Any:
        result = None
        for request in text.split(";"):
            request = request.strip()
            if not request:
                continue

            name, _, args = request.partition(" ")
            try:
                result = await self.dispatch.runop(name, args.strip(), self)
            except Exception:
                logger.exception("[{}] Command failed?", name)

            if self.exiting:
                break

        return result

    async def dorepl(self) -> None:
        session: PromptSession = PromptSession(
            history=ThreadedHistory(FileHistory(os.path.expanduser("~/.walink_history"))),
            auto_suggest=AutoSuggestFromHistory(),
            completer=CommandCompleter(self),
        )

        while not self.exiting:
            try:
                text = await session.prompt_async(
                    "walink> ",
                    bottom_toolbar=lambda: statusToolbar(self.supervisor.getStatus()),
                    refresh_interval=self.toolbarUpdateInterval,
                    complete_while_typing=True,
                )

                # log user input to our active logfile(s)
                logger.trace("walink> {}", text)

                await self.buildAndRun(text)
            except KeyboardInterrupt:
                # Control-C pressed. Try again.
                continue
            except EOFError:
                # Control-D pressed
                logger.error("Exiting...")
                self.exiting = True

    async def run(self) -> None:
        set_title("walink")
        task = asyncio.current_task()
        try:
            asyncio.get_running_loop().add_signal_handler(signal.SIGTERM, task.cancel)
        except NotImplementedError:
            pass

        try:
            with patch_stdout():
                await self.supervisor.start()
                await self.dorepl()
        finally:
            await self.supervisor.stop()


def main() -> None:
    try:
        app = WalinkApp()
    except ConfigError as e:
        logger.error("{}", e)
        sys.exit(2)

    try:
        asyncio.run(app.run())
    except (KeyboardInterrupt, asyncio.CancelledError):
        logger.warning("Shutting down gracefully...")


if __name__ == "__main__":
    main()
