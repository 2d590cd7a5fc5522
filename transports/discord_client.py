# Discord transport client: gateway events in, relay engine calls out
import functools

import discord

from core.classifier import is_system_message
from services.dm_logging import attach_dm_logging
from services.lifecycle import STARTUP_NOTICE


def safe_handler(func):
    """Keep one failing event handler from reaching discord.py's dispatcher."""

    @functools.wraps(func)
    async def wrapper(self, *args, **kwargs):
        try:
            await func(self, *args, **kwargs)
        except Exception as exc:
            self.logger.error(f"Error in {func.__name__}: {exc}", exc_info=True)

    return wrapper


class DiscordClient:
    def __init__(self, bot, relay, router, call_watcher, lifecycle, logger, config=None, app_logger=None):
        self.bot = bot
        self.relay = relay
        self.router = router
        self.call_watcher = call_watcher
        self.lifecycle = lifecycle
        self.logger = logger
        self.config = config
        self.app_logger = app_logger
        self._ready_once = False

        # bot.event replaces commands.Bot.on_message, so commands are only invoked from here
        for handler in (
            self.on_ready,
            self.on_message,
            self.on_raw_message_delete,
            self.on_raw_message_edit,
            self.on_raw_reaction_add,
            self.on_raw_reaction_remove,
            self.on_voice_state_update,
        ):
            self.bot.event(handler)

    def _is_self(self, user_id) -> bool:
        return self.bot.user is not None and user_id == self.bot.user.id

    async def start(self, token):
        self.logger.info("Starting Discord bot")
        await self.bot.start(token)

    @safe_handler
    async def on_ready(self):
        # on_ready fires again after every reconnect
        if self._ready_once:
            return
        self._ready_once = True
        self.logger.info(f"Logged in as {self.bot.user}")

        if self.config is not None and self.config.debug_to_dms and self.app_logger is not None:
            attach_dm_logging(self.app_logger, self.bot, self.config.owner_id)
        else:
            self.logger.info("DM logging disabled")

        await self.relay.send_to_all_channels(STARTUP_NOTICE)
        self.logger.info("Startup messages sent!")

    @safe_handler
    async def on_message(self, message):
        if self._is_self(message.author.id):
            return

        ctx = await self.bot.get_context(message)
        if ctx.valid:
            await self.bot.invoke(ctx)
            return

        if not self.router.is_managed_channel(message.channel.id):
            return
        if self.lifecycle.shutting_down:
            return

        self.relay.clear_last_sender(message.channel.id)

        if is_system_message(message):
            await self.relay.handle_system_message(message)
            return

        await self.relay.forward_message(message)

    @safe_handler
    async def on_raw_message_delete(self, payload):
        if not self.router.is_managed_channel(payload.channel_id):
            return
        await self.relay.delete_message(payload.message_id, payload.channel_id)

    @safe_handler
    async def on_raw_message_edit(self, payload):
        if not self.router.is_managed_channel(payload.channel_id):
            return

        channel = await self.relay.get_channel(payload.channel_id)
        if channel is None:
            return
        try:
            new_message = await channel.fetch_message(payload.message_id)
        except discord.HTTPException as exc:
            self.logger.error(f"Failed to fetch messages for update: {exc}")
            return

        old_message = payload.cached_message
        if old_message is None or old_message.pinned != new_message.pinned:
            await self.relay.set_pinned(new_message.id, payload.channel_id, new_message.pinned)

        # Our own relayed messages change when we edit them; never send that back
        if self._is_self(new_message.author.id):
            return
        await self.relay.update_message(new_message)

    @safe_handler
    async def on_raw_reaction_add(self, payload):
        if self._is_self(payload.user_id):
            return
        if not self.router.is_managed_channel(payload.channel_id):
            return
        await self.relay.add_reaction(payload.message_id, payload.channel_id, payload.emoji)

    @safe_handler
    async def on_raw_reaction_remove(self, payload):
        if self._is_self(payload.user_id):
            return
        if not self.router.is_managed_channel(payload.channel_id):
            return
        await self.relay.remove_reaction(payload.message_id, payload.channel_id, payload.emoji)

    @safe_handler
    async def on_voice_state_update(self, member, before, after):
        before_id = before.channel.id if before.channel is not None else None
        after_id = after.channel.id if after.channel is not None else None
        if before_id == after_id:
            return

        if self.router.is_managed_channel(before_id):
            self.call_watcher.member_left(before_id, member.id)
        if self.router.is_managed_channel(after_id):
            self.call_watcher.member_joined(after_id, member.id)
