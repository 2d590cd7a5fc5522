# Classifies inbound Discord messages into relay paths
from enum import Enum
from typing import Any, Optional

import discord

VOICE_CONTENT_TYPE = "audio/ogg"


class MessageKind(Enum):
    FORWARDED = "forwarded"
    POLL = "poll"
    VOICE = "voice"
    REGULAR = "regular"


class SystemEventKind(Enum):
    NAME_CHANGE = "name_change"
    ICON_CHANGE = "icon_change"
    MEMBER_ADD = "member_add"
    MEMBER_REMOVE = "member_remove"
    CALL_START = "call_start"


RELAYABLE_TYPES = (discord.MessageType.default, discord.MessageType.reply)

SYSTEM_EVENT_TYPES = {
    discord.MessageType.channel_name_change: SystemEventKind.NAME_CHANGE,
    discord.MessageType.channel_icon_change: SystemEventKind.ICON_CHANGE,
    discord.MessageType.recipient_add: SystemEventKind.MEMBER_ADD,
    discord.MessageType.recipient_remove: SystemEventKind.MEMBER_REMOVE,
    discord.MessageType.call: SystemEventKind.CALL_START,
}


def is_forwarded_message(message: Any) -> bool:
    # Native forwards arrive as a bare reference with nothing else attached
    reference = getattr(message, "reference", None)
    return bool(
        reference is not None
        and reference.message_id
        and not message.content
        and not message.attachments
        and not message.embeds
        and not message.stickers
    )


def is_poll(message: Any) -> bool:
    return getattr(message, "poll", None) is not None


def is_voice_message(message: Any) -> bool:
    # Only the first attachment is inspected; an ordinary .ogg upload matches too
    if not message.attachments:
        return False
    content_type = message.attachments[0].content_type or ""
    return VOICE_CONTENT_TYPE in content_type


def classify_message(message: Any) -> MessageKind:
    if is_forwarded_message(message):
        return MessageKind.FORWARDED
    if is_poll(message):
        return MessageKind.POLL
    if is_voice_message(message):
        return MessageKind.VOICE
    return MessageKind.REGULAR


def is_system_message(message: Any) -> bool:
    return message.type not in RELAYABLE_TYPES


def classify_system(message: Any) -> Optional[SystemEventKind]:
    return SYSTEM_EVENT_TYPES.get(message.type)
