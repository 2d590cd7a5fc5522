# Main entrypoint for the group chat bridge
from core.config import AppConfig, ConfigError, load_config
from core.relay import RelayEngine
from core.routing import RoutingResolver
from storage.mapping_store import MappingStore
from storage.state_repository import StateRepository
from services.call_watcher import CallEndWatcher
from services.commands import BridgeCommands
from services.lifecycle import Lifecycle, SHUTDOWN_NOTICE
from transports.discord_client import DiscordClient
import logging
import asyncio
import signal
import sqlite3
import sys
import os

import discord
from discord.ext import commands


class BridgeApp:
    def __init__(self, config: AppConfig):
        self.config = config
        # Main logger for app-wide events
        self.logger = logging.getLogger("GCBridge")
        self.discord_logger = self.logger.getChild("Discord")
        self.relay_logger = self.logger.getChild("Relay")
        self.storage_logger = self.logger.getChild("Storage")
        self.commands_logger = self.logger.getChild("Commands")
        self.calls_logger = self.logger.getChild("Calls")

        self.store = MappingStore(self.storage_logger, self._open_repository())

        self.bot = commands.Bot(
            command_prefix=config.prefix,
            intents=discord.Intents.all(),
            case_insensitive=True,
            strip_after_prefix=True,
            owner_id=config.owner_id,
            help_command=None,
        )
        self.router = RoutingResolver(config.channels, config.has_nitro)
        self.relay = RelayEngine(self.bot, self.router, self.store, self.relay_logger)
        self.call_watcher = CallEndWatcher(self.relay, self.calls_logger)
        self.lifecycle = Lifecycle(self.bot, self.store, self.relay, self.logger, self.call_watcher)
        self.discord = DiscordClient(
            self.bot,
            self.relay,
            self.router,
            self.call_watcher,
            self.lifecycle,
            self.discord_logger,
            config=config,
            app_logger=self.logger,
        )

    def _open_repository(self):
        if not self.config.cache_to_file:
            return None
        try:
            return StateRepository(
                self.config.db_path,
                self.storage_logger,
                legacy_json_path=self.config.legacy_cache_path,
            )
        except (sqlite3.Error, OSError) as exc:
            self.logger.error(f"Database initialization failed: {exc}", exc_info=True)
            return None

    def _install_signal_handlers(self):
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(
                    sig, lambda: asyncio.ensure_future(self.lifecycle.shutdown(SHUTDOWN_NOTICE))
                )
            except (NotImplementedError, RuntimeError):
                self.logger.debug(f"Signal handlers unavailable for {sig!r}")

    async def start(self) -> int:
        self.store.load()
        await self.bot.add_cog(
            BridgeCommands(self.bot, self.relay, self.lifecycle, self.commands_logger, self.config.prefix)
        )
        self._install_signal_handlers()
        try:
            await self.discord.start(self.config.token)
        finally:
            if not self.lifecycle.shutting_down:
                self.store.save_all()
                self.store.close()
        return self.lifecycle.exit_code or 0


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )

    # Suppress noisy INFO logs from third-party libraries
    logging.getLogger("discord").setLevel(logging.WARNING)

    config_path = os.environ.get("BRIDGE_CONFIG", "config.json")
    try:
        config = load_config(config_path)
    except ConfigError as exc:
        logging.error(f"{exc}. Exiting.")
        sys.exit(1)

    app = BridgeApp(config)
    try:
        exit_code = asyncio.run(app.start())
    except discord.LoginFailure as exc:
        logging.error(f"Failed to login: {exc}")
        sys.exit(1)
    sys.exit(exit_code)
