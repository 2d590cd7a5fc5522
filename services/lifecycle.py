# Start time, shutdown flag and the save-before-exit sequence
import time
from typing import Optional

SHUTDOWN_NOTICE = "[SYSTEM] shutdown :("
RESTART_NOTICE = "[SYSTEM] restarting..."
STARTUP_NOTICE = "[SYSTEM] started!"


class Lifecycle:
    def __init__(self, bot, store, relay, logger, call_watcher=None):
        self.bot = bot
        self.store = store
        self.relay = relay
        self.logger = logger
        self.call_watcher = call_watcher
        self.started_at = time.time()
        self.shutting_down = False
        self.exit_code: Optional[int] = None

    async def shutdown(self, notice: Optional[str] = SHUTDOWN_NOTICE, exit_code: int = 0):
        if self.shutting_down:
            return
        self.shutting_down = True
        self.exit_code = exit_code
        self.logger.info("Shutting down...")

        if self.call_watcher is not None:
            self.call_watcher.cancel_all()
        self.store.save_all()

        if notice:
            try:
                await self.relay.send_to_all_channels(notice)
            except Exception as exc:
                self.logger.error(f"Failed to send shutdown messages: {exc}")

        self.store.close()
        await self.bot.close()
