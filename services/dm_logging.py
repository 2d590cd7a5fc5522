# Mirrors application log records to the owner's DMs for remote debugging
import asyncio
import logging

MAX_DM_LENGTH = 1900

LEVEL_PREFIXES = {
    logging.ERROR: "ERROR: ",
    logging.CRITICAL: "ERROR: ",
    logging.WARNING: "[WARN] ",
    logging.INFO: "[INFO] ",
}


def format_dm(text: str, levelno: int) -> str:
    text = f"{LEVEL_PREFIXES.get(levelno, '')}{text}"
    # Discord caps messages at 2000 characters
    if len(text) > MAX_DM_LENGTH:
        text = f"{text[:MAX_DM_LENGTH]}..."
    return f"```\n{text}\n```"


class OwnerDMHandler(logging.Handler):
    def __init__(self, bot, owner_id: int, level=logging.INFO):
        super().__init__(level)
        self.bot = bot
        self.owner_id = owner_id
        self._tasks = set()

    def emit(self, record: logging.LogRecord):
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        try:
            text = format_dm(self.format(record), record.levelno)
        except Exception:
            self.handleError(record)
            return
        task = loop.create_task(self._send(text, record))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _send(self, text: str, record: logging.LogRecord):
        try:
            owner = self.bot.get_user(self.owner_id) or await self.bot.fetch_user(self.owner_id)
            await owner.send(text)
        except Exception:
            # Never log from here: the record would come straight back to this handler
            self.handleError(record)


def attach_dm_logging(logger: logging.Logger, bot, owner_id: int) -> OwnerDMHandler:
    handler = OwnerDMHandler(bot, owner_id)
    handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
    logger.addHandler(handler)
    logger.info("DM logging enabled")
    return handler
