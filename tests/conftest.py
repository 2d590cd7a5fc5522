import itertools
import logging
from types import SimpleNamespace
from typing import Any, Dict, List, Optional

import discord
import pytest

from core.config import ChannelPairConfig
from core.relay import RelayEngine
from core.routing import RoutingResolver
from storage.mapping_store import MappingStore

CHANNEL_1 = 100
CHANNEL_2 = 200
BOT_ID = 999

_ids = itertools.count(10_000)


def http_error(cls, status: int, code: int):
    response = SimpleNamespace(status=status, reason="error")
    return cls(response, {"code": code, "message": "error"})


class FakeUser:
    def __init__(self, user_id: int, name: str, display_name: Optional[str] = None):
        self.id = user_id
        self.name = name
        self.display_name = display_name or name
        self.sent: List[str] = []

    @property
    def mention(self) -> str:
        return f"<@{self.id}>"

    async def send(self, content):
        self.sent.append(content)


class FakeAttachment:
    def __init__(self, filename="file.png", size=1024, content_type="image/png", url=None):
        self.filename = filename
        self.size = size
        self.content_type = content_type
        self.url = url or f"https://cdn.example/{filename}"

    async def to_file(self):
        return f"file:{self.filename}"


class FakeReaction:
    def __init__(self, emoji):
        self.emoji = emoji
        self.removed_users: List[Any] = []

    async def remove(self, user):
        self.removed_users.append(user)


class FakeMessage:
    def __init__(
        self,
        channel,
        author,
        content: str = "",
        message_id: Optional[int] = None,
        attachments=None,
        embeds=None,
        stickers=None,
        reference=None,
        poll=None,
        type=discord.MessageType.default,
        mentions=None,
        pinned: bool = False,
        **extra,
    ):
        self.id = message_id if message_id is not None else next(_ids)
        self.channel = channel
        self.author = author
        self.content = content
        self.attachments = attachments or []
        self.embeds = embeds or []
        self.stickers = stickers or []
        self.reference = reference
        self.poll = poll
        self.type = type
        self.mentions = mentions or []
        self.pinned = pinned
        self.reactions: List[FakeReaction] = []
        self.kwargs = extra
        self.deleted = False
        self.pin_calls = 0
        self.unpin_calls = 0
        self.added_reactions: List[Any] = []
        self.edits: List[str] = []

    async def edit(self, content=None, **kwargs):
        self.content = content
        self.edits.append(content)
        return self

    async def delete(self):
        self.deleted = True
        self.channel.messages.pop(self.id, None)

    async def pin(self):
        self.pinned = True
        self.pin_calls += 1

    async def unpin(self):
        self.pinned = False
        self.unpin_calls += 1

    async def add_reaction(self, emoji):
        self.added_reactions.append(emoji)


class FakeChannel(discord.abc.Messageable):
    def __init__(self, channel_id: int, author=None):
        self.id = channel_id
        self.author = author or FakeUser(BOT_ID, "bridge")
        self.messages: Dict[int, FakeMessage] = {}
        self.sent: List[FakeMessage] = []
        self.fail_send: Optional[Exception] = None

    async def send(self, content=None, **kwargs):
        if self.fail_send is not None:
            raise self.fail_send
        message = FakeMessage(self, self.author, content=content or "", **kwargs)
        self.messages[message.id] = message
        self.sent.append(message)
        return message

    async def fetch_message(self, message_id):
        try:
            return self.messages[message_id]
        except KeyError:
            raise http_error(discord.NotFound, 404, 10008) from None

    def add(self, message: FakeMessage) -> FakeMessage:
        self.messages[message.id] = message
        return message


class FakeBot:
    def __init__(self, *channels):
        self.channels = {channel.id: channel for channel in channels}
        self.user = FakeUser(BOT_ID, "bridge")
        self.latency = 0.042
        self.closed = False
        self.users: Dict[int, FakeUser] = {}

    def get_channel(self, channel_id):
        return self.channels.get(channel_id)

    async def fetch_channel(self, channel_id):
        raise http_error(discord.Forbidden, 403, 50001)

    def get_user(self, user_id):
        return self.users.get(user_id)

    async def fetch_user(self, user_id):
        raise http_error(discord.NotFound, 404, 10013)

    async def close(self):
        self.closed = True


@pytest.fixture
def logger():
    return logging.getLogger("GCBridge.Test")


@pytest.fixture
def alice():
    return FakeUser(1, "alice", "Alice")


@pytest.fixture
def bob():
    return FakeUser(2, "bob", "Bob")


@pytest.fixture
def channel_1():
    return FakeChannel(CHANNEL_1)


@pytest.fixture
def channel_2():
    return FakeChannel(CHANNEL_2)


@pytest.fixture
def bot(channel_1, channel_2):
    return FakeBot(channel_1, channel_2)


@pytest.fixture
def router():
    return RoutingResolver(ChannelPairConfig(side_1=CHANNEL_1, side_2=CHANNEL_2))


@pytest.fixture
def store(logger):
    return MappingStore(logger)


@pytest.fixture
def relay(bot, router, store, logger):
    return RelayEngine(bot, router, store, logger)
