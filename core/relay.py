# Relays messages and message events between the two bridged channels
import re
from typing import Any, List, Optional, Set, Tuple

import discord

from core.classifier import MessageKind, SystemEventKind, classify_message, classify_system
from core.models import BridgeContext

HEADER_PATTERN = re.compile(r"^-# .+? said:\n?")
MIB = 1024 * 1024


def display_name(user: Any) -> str:
    return getattr(user, "display_name", None) or getattr(user, "name", None) or "Unknown"


def emoji_key(emoji: Any) -> Optional[str]:
    if isinstance(emoji, str):
        return emoji
    if getattr(emoji, "id", None):
        return str(emoji.id)
    return getattr(emoji, "name", None)


class RelayEngine:
    def __init__(self, bot, router, store, logger):
        self.bot = bot
        self.router = router
        self.store = store
        self.logger = logger
        # Counterparts this engine is deleting right now; their delete events are our own echo
        self._deleting: Set[int] = set()

    async def get_channel(self, channel_id: int) -> Optional[discord.abc.Messageable]:
        channel = self.bot.get_channel(channel_id)
        if channel is None:
            try:
                channel = await self.bot.fetch_channel(channel_id)
            except discord.Forbidden:
                self.logger.debug(f"No access to channel {channel_id}")
                return None
            except discord.HTTPException as exc:
                self.logger.error(f"Failed to fetch channel {channel_id}: {exc}")
                return None
        if not isinstance(channel, discord.abc.Messageable):
            return None
        return channel

    @staticmethod
    def header_for(author: Any) -> str:
        return f"-# {display_name(author)} ({author.mention}) said:"

    def should_show_header(self, target_channel_id: int, author_id: int) -> bool:
        return self.store.get_last_sender(target_channel_id) != author_id

    def clear_last_sender(self, channel_id: int):
        self.store.clear_last_sender(channel_id)

    def reply_reference(self, message: Any, context: BridgeContext) -> Optional[discord.MessageReference]:
        reference = getattr(message, "reference", None)
        if reference is None or not reference.message_id:
            return None
        mapping = self.store.get_mapping(reference.message_id)
        target_id = mapping.get(context.target_side) if mapping else None
        if target_id is None:
            return None
        return discord.MessageReference(
            message_id=target_id,
            channel_id=context.target_channel_id,
            fail_if_not_exists=False,
        )

    def split_attachments(self, attachments) -> Tuple[list, List[str]]:
        limit = self.router.max_attachment_bytes()
        valid, links = [], []
        for attachment in attachments:
            if attachment.size > limit:
                links.append(f"[Attachment too large ({attachment.size / MIB:.2f} MB)]: {attachment.url}")
            else:
                valid.append(attachment)
        return valid, links

    @staticmethod
    async def _to_files(attachments) -> List[discord.File]:
        return [await attachment.to_file() for attachment in attachments]

    # --- message creation ---

    async def forward_message(self, message: Any):
        context = self.router.resolve(message.channel.id)
        if context is None:
            return
        target = await self.get_channel(context.target_channel_id)
        if target is None:
            return

        kind = classify_message(message)
        try:
            if kind is MessageKind.FORWARDED:
                await self._relay_forwarded(message, target, context)
            elif kind is MessageKind.POLL:
                await self._relay_poll(message, target, context)
            elif kind is MessageKind.VOICE:
                await self._relay_voice(message, target, context)
            else:
                await self._relay_regular(message, target, context)
        except Exception as exc:
            self.logger.error(f"Failed to forward message {message.id}: {exc}", exc_info=True)

    async def _relay_forwarded(self, message, target, context: BridgeContext):
        actor = f"{display_name(message.author)} ({message.author.mention})"
        try:
            reference = message.reference
            if not reference.channel_id or not reference.message_id:
                raise ValueError("Missing reference data")

            source_channel = await self.get_channel(reference.channel_id)
            if source_channel is None:
                await target.send(f"[SYSTEM] {actor} forwarded a message from an inaccessible channel")
                return

            referenced = await source_channel.fetch_message(reference.message_id)
            lines = [f"-# {actor} forwarded a message from {display_name(referenced.author)}:"]
            if referenced.content:
                lines.append(referenced.content)
            valid, links = self.split_attachments(referenced.attachments)
            lines.extend(links)

            options = {"content": "\n".join(lines)}
            if valid:
                options["files"] = await self._to_files(valid)
            if referenced.embeds:
                options["embeds"] = referenced.embeds
            if referenced.stickers:
                options["stickers"] = referenced.stickers

            sent = await target.send(**options)
            self.store.save_mapping(message.id, sent.id, context.source_side, context.target_side)
            self.store.set_last_sender(context.target_channel_id, message.author.id)
        except Exception as exc:
            self.logger.error(f"Unexpected error relaying forwarded message {message.id}: {exc}", exc_info=True)
            await target.send(f"[SYSTEM] {actor} forwarded a message (error occurred)")

    async def _relay_poll(self, message, target, context: BridgeContext):
        # Live polls cannot be recreated, so the other side gets a notice
        options = {
            "content": f"[SYSTEM] {display_name(message.author)} ({message.author.mention}) created a poll in the other GC"
        }
        reference = self.reply_reference(message, context)
        if reference is not None:
            options["reference"] = reference

        sent = await target.send(**options)
        self.store.save_mapping(message.id, sent.id, context.source_side, context.target_side)

    async def _relay_voice(self, message, target, context: BridgeContext):
        reference = self.reply_reference(message, context)
        if self.should_show_header(context.target_channel_id, message.author.id):
            options = {"content": self.header_for(message.author)}
            if reference is not None:
                options["reference"] = reference
            await target.send(**options)

        sent = await target.send(files=await self._to_files(message.attachments))
        self.store.save_mapping(message.id, sent.id, context.source_side, context.target_side)
        self.store.set_last_sender(context.target_channel_id, message.author.id)

    async def _relay_regular(self, message, target, context: BridgeContext):
        lines = []
        if self.should_show_header(context.target_channel_id, message.author.id):
            lines.append(self.header_for(message.author))
        if message.content:
            lines.append(message.content)
        valid, links = self.split_attachments(message.attachments)
        lines.extend(links)

        options = {}
        content = "\n".join(lines)
        if content:
            options["content"] = content
        if valid:
            options["files"] = await self._to_files(valid)
        if message.embeds:
            options["embeds"] = message.embeds
        if message.stickers:
            options["stickers"] = message.stickers

        if not options:
            self.logger.warning(f"Skipping empty message {message.id}")
            return

        reference = self.reply_reference(message, context)
        if reference is not None:
            options["reference"] = reference

        sent = await target.send(**options)
        self.store.save_mapping(message.id, sent.id, context.source_side, context.target_side)
        self.store.set_last_sender(context.target_channel_id, message.author.id)

    # --- operations on already relayed messages ---

    async def _counterpart(self, message_id: int, channel_id: int):
        context = self.router.resolve(channel_id)
        if context is None:
            return None
        mapping = self.store.get_mapping(message_id)
        if mapping is None:
            return None
        target_id = mapping.get(context.target_side)
        if target_id is None:
            return None
        target = await self.get_channel(context.target_channel_id)
        if target is None:
            return None
        return target, target_id

    async def delete_message(self, message_id: int, channel_id: int):
        if message_id in self._deleting:
            return
        counterpart = await self._counterpart(message_id, channel_id)
        if counterpart is None:
            return
        target, target_id = counterpart

        self._deleting.add(target_id)
        try:
            remote = await target.fetch_message(target_id)
            await remote.delete()
        except discord.NotFound:
            self.logger.debug(f"Forwarded message {target_id} was already deleted")
        except discord.Forbidden:
            self.logger.debug(f"No permission to delete forwarded message {target_id}")
            return
        except Exception as exc:
            self.logger.error(f"Failed to delete forwarded message {target_id}: {exc}", exc_info=True)
            return
        finally:
            self._deleting.discard(target_id)
        self.store.delete_mapping(message_id)

    async def update_message(self, message: Any):
        counterpart = await self._counterpart(message.id, message.channel.id)
        if counterpart is None:
            return
        target, target_id = counterpart

        try:
            remote = await target.fetch_message(target_id)
            original = remote.content or ""
            body = message.content or ""

            if original.startswith("-#"):
                match = HEADER_PATTERN.match(original)
                if match:
                    header = match.group(0)
                    if body and not header.endswith("\n"):
                        header += "\n"
                    new_content = header + body
                else:
                    new_content = f"{self.header_for(message.author)}\n{body}"
            else:
                new_content = body

            _, links = self.split_attachments(message.attachments)
            if links:
                new_content = "\n".join([new_content] + links) if new_content else "\n".join(links)

            # Discord refuses an edit to an entirely empty message
            await remote.edit(content=new_content or " ")
        except discord.Forbidden:
            self.logger.debug(f"No permission to edit forwarded message {target_id}")
        except Exception as exc:
            self.logger.error(f"Failed to update forwarded message {target_id}: {exc}", exc_info=True)

    async def set_pinned(self, message_id: int, channel_id: int, pinned: bool):
        counterpart = await self._counterpart(message_id, channel_id)
        if counterpart is None:
            return
        target, target_id = counterpart

        try:
            remote = await target.fetch_message(target_id)
            if pinned and not remote.pinned:
                await remote.pin()
            elif not pinned and remote.pinned:
                await remote.unpin()
        except discord.Forbidden:
            self.logger.debug(f"No permission to {'pin' if pinned else 'unpin'} message {target_id}")
        except Exception as exc:
            self.logger.error(f"Failed to {'pin' if pinned else 'unpin'} message {target_id}: {exc}", exc_info=True)

    async def pin_message(self, message_id: int, channel_id: int):
        await self.set_pinned(message_id, channel_id, True)

    async def unpin_message(self, message_id: int, channel_id: int):
        await self.set_pinned(message_id, channel_id, False)

    async def add_reaction(self, message_id: int, channel_id: int, emoji):
        counterpart = await self._counterpart(message_id, channel_id)
        if counterpart is None:
            return
        target, target_id = counterpart

        try:
            remote = await target.fetch_message(target_id)
            await remote.add_reaction(emoji)
        except discord.Forbidden:
            self.logger.debug(f"No permission to react to {target_id}")
        except Exception as exc:
            self.logger.error(f"Failed to add reaction to {target_id}: {exc}", exc_info=True)

    async def remove_reaction(self, message_id: int, channel_id: int, emoji):
        counterpart = await self._counterpart(message_id, channel_id)
        if counterpart is None:
            return
        target, target_id = counterpart

        try:
            remote = await target.fetch_message(target_id)
            key = emoji_key(emoji)
            reaction = discord.utils.find(lambda r: emoji_key(r.emoji) == key, remote.reactions)
            if reaction is not None and self.bot.user is not None:
                await reaction.remove(self.bot.user)
        except discord.Forbidden:
            self.logger.debug(f"No permission to remove reaction from {target_id}")
        except Exception as exc:
            self.logger.error(f"Failed to remove reaction from {target_id}: {exc}", exc_info=True)

    # --- system notices and calls ---

    def system_notice(self, message: Any, kind: SystemEventKind) -> Optional[str]:
        actor = f"{display_name(message.author)} ({message.author.mention})"
        member = message.mentions[0] if message.mentions else None

        if kind is SystemEventKind.NAME_CHANGE:
            if message.content:
                return f"[SYSTEM] {actor} changed the other GC title to: {message.content}"
        elif kind is SystemEventKind.ICON_CHANGE:
            return f"[SYSTEM] {actor} changed the other GC icon"
        elif kind is SystemEventKind.MEMBER_ADD:
            if member is not None:
                return f"[SYSTEM] {actor} added {display_name(member)} ({member.mention}) to the other GC"
        elif kind is SystemEventKind.MEMBER_REMOVE:
            if member is not None:
                if member.id == message.author.id:
                    return f"[SYSTEM] {actor} left the other GC"
                return f"[SYSTEM] {actor} removed {display_name(member)} ({member.mention}) from the other GC"
        elif kind is SystemEventKind.CALL_START:
            return f"[SYSTEM] {actor} started a VC"
        return None

    async def handle_system_message(self, message: Any):
        context = self.router.resolve(message.channel.id)
        if context is None:
            return
        kind = classify_system(message)
        if kind is None:
            return
        text = self.system_notice(message, kind)
        if not text:
            return

        try:
            target = await self.get_channel(context.target_channel_id)
            if target is None:
                return
            sent = await target.send(text)
            if kind is SystemEventKind.CALL_START:
                self.store.set_active_call(context.source_channel_id, sent.id)
        except Exception as exc:
            self.logger.error(f"Failed to handle system message {message.id}: {exc}", exc_info=True)

    async def handle_call_end(self, channel_id: int):
        context = self.router.resolve(channel_id)
        if context is None:
            return
        call_message_id = self.store.get_active_call(channel_id)
        if call_message_id is None:
            return

        try:
            target = await self.get_channel(context.target_channel_id)
            if target is None:
                return
            await target.send(
                "[SYSTEM] VC has ended",
                reference=discord.MessageReference(
                    message_id=call_message_id,
                    channel_id=context.target_channel_id,
                    fail_if_not_exists=False,
                ),
            )
            self.store.clear_active_call(channel_id)
        except Exception as exc:
            self.logger.error(f"Failed to send VC ended message: {exc}", exc_info=True)

    # --- broadcast helpers ---

    async def send_to_all_channels(self, content: str):
        for channel_id in self.router.managed_channel_ids():
            try:
                channel = await self.get_channel(channel_id)
                if channel is not None:
                    await channel.send(content)
            except Exception as exc:
                self.logger.error(f"Failed to send to channel {channel_id}: {exc}", exc_info=True)

    async def send_to_other_channel(self, source_channel_id: int, content: str):
        context = self.router.resolve(source_channel_id)
        if context is None:
            return None
        try:
            target = await self.get_channel(context.target_channel_id)
            if target is None:
                return None
            return await target.send(content)
        except Exception as exc:
            self.logger.error(f"Failed to send to other channel: {exc}", exc_info=True)
            return None
