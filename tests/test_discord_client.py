import logging
from types import SimpleNamespace

import discord
import pytest

from conftest import BOT_ID, CHANNEL_1, CHANNEL_2, FakeBot, FakeChannel, FakeMessage
from core.relay import RelayEngine
from services.lifecycle import STARTUP_NOTICE, Lifecycle
from transports.discord_client import DiscordClient


class GatewayBot(FakeBot):
    def __init__(self, *channels):
        super().__init__(*channels)
        self.commands = set()
        self.invoked = []

    def event(self, coro):
        setattr(self, coro.__name__, coro)
        return coro

    async def get_context(self, message):
        name = message.content[len("!gc "):].split(" ")[0] if message.content.startswith("!gc ") else None
        return SimpleNamespace(valid=name in self.commands, message=message)

    async def invoke(self, ctx):
        self.invoked.append(ctx.message)


class RecordingWatcher:
    def __init__(self):
        self.left = []
        self.joined = []

    def member_left(self, channel_id, member_id):
        self.left.append((channel_id, member_id))

    def member_joined(self, channel_id, member_id):
        self.joined.append((channel_id, member_id))

    def cancel_all(self):
        pass


@pytest.fixture
def gateway_bot(channel_1, channel_2):
    return GatewayBot(channel_1, channel_2)


@pytest.fixture
def gateway(gateway_bot, router, store, logger):
    relay = RelayEngine(gateway_bot, router, store, logger)
    watcher = RecordingWatcher()
    lifecycle = Lifecycle(gateway_bot, store, relay, logger, watcher)
    return DiscordClient(gateway_bot, relay, router, watcher, lifecycle, logger)


def voice(channel_id):
    return SimpleNamespace(channel=SimpleNamespace(id=channel_id) if channel_id else None)


@pytest.mark.asyncio
async def test_handlers_are_registered(gateway, gateway_bot):
    assert gateway_bot.on_message == gateway.on_message
    assert gateway_bot.on_raw_reaction_add == gateway.on_raw_reaction_add


@pytest.mark.asyncio
async def test_own_messages_are_not_relayed(gateway, gateway_bot, channel_1, channel_2):
    await gateway.on_message(FakeMessage(channel_1, gateway_bot.user, "echo"))
    assert channel_2.sent == []


@pytest.mark.asyncio
async def test_commands_are_not_relayed(gateway, gateway_bot, channel_1, channel_2, alice):
    gateway_bot.commands.add("ping")
    command = FakeMessage(channel_1, alice, "!gc ping")
    unknown = FakeMessage(channel_1, alice, "!gc dance")

    await gateway.on_message(command)
    await gateway.on_message(unknown)

    assert gateway_bot.invoked == [command]
    assert [message.content for message in channel_2.sent] == ["-# Alice (<@1>) said:\n!gc dance"]


@pytest.mark.asyncio
async def test_header_resets_after_activity_on_other_side(gateway, channel_1, channel_2, alice, bob):
    await gateway.on_message(FakeMessage(channel_1, alice, "one"))
    await gateway.on_message(FakeMessage(channel_1, alice, "two"))
    await gateway.on_message(FakeMessage(channel_2, bob, "interjection"))
    await gateway.on_message(FakeMessage(channel_1, alice, "three"))

    assert [message.content for message in channel_2.sent] == [
        "-# Alice (<@1>) said:\none",
        "two",
        "-# Alice (<@1>) said:\nthree",
    ]


@pytest.mark.asyncio
async def test_system_messages_become_notices(gateway, store, channel_1, channel_2, alice):
    await gateway.on_message(FakeMessage(channel_1, alice, type=discord.MessageType.call))

    assert channel_2.sent[0].content == "[SYSTEM] Alice (<@1>) started a VC"
    assert store.get_active_call(CHANNEL_1) == channel_2.sent[0].id


@pytest.mark.asyncio
async def test_nothing_is_relayed_while_shutting_down(gateway, channel_1, channel_2, alice):
    gateway.lifecycle.shutting_down = True
    await gateway.on_message(FakeMessage(channel_1, alice, "late"))
    assert channel_2.sent == []


@pytest.mark.asyncio
async def test_raw_delete(gateway, store, channel_1, channel_2, alice):
    source = FakeMessage(channel_1, alice, "hi")
    await gateway.on_message(source)

    await gateway.on_raw_message_delete(SimpleNamespace(message_id=source.id, channel_id=CHANNEL_1))

    assert channel_2.sent[0].deleted
    assert store.get_mapping(source.id) is None


@pytest.mark.asyncio
async def test_raw_edit_updates_content_and_pin(gateway, channel_1, channel_2, alice):
    source = channel_1.add(FakeMessage(channel_1, alice, "hi"))
    await gateway.on_message(source)
    relayed = channel_2.sent[0]

    source.content = "edited"
    source.pinned = True
    await gateway.on_raw_message_edit(SimpleNamespace(message_id=source.id, channel_id=CHANNEL_1, cached_message=None))

    assert relayed.content == "-# Alice (<@1>) said:\nedited"
    assert relayed.pinned


@pytest.mark.asyncio
async def test_edits_to_own_messages_only_sync_pins(gateway, channel_1, channel_2, alice):
    source = channel_1.add(FakeMessage(channel_1, alice, "hi"))
    await gateway.on_message(source)
    relayed = channel_2.sent[0]

    relayed.pinned = True
    before = SimpleNamespace(pinned=False)
    await gateway.on_raw_message_edit(SimpleNamespace(message_id=relayed.id, channel_id=CHANNEL_2, cached_message=before))

    assert source.pinned
    assert source.content == "hi"


@pytest.mark.asyncio
async def test_raw_edit_of_missing_message_is_dropped(gateway, channel_2):
    await gateway.on_raw_message_edit(SimpleNamespace(message_id=1, channel_id=CHANNEL_1, cached_message=None))
    assert channel_2.sent == []


@pytest.mark.asyncio
async def test_reactions_skip_own_user(gateway, channel_1, channel_2, alice):
    source = FakeMessage(channel_1, alice, "hi")
    await gateway.on_message(source)
    relayed = channel_2.sent[0]
    emoji = discord.PartialEmoji(name="\N{FIRE}")

    await gateway.on_raw_reaction_add(SimpleNamespace(message_id=source.id, channel_id=CHANNEL_1, user_id=BOT_ID, emoji=emoji))
    await gateway.on_raw_reaction_add(SimpleNamespace(message_id=source.id, channel_id=CHANNEL_1, user_id=alice.id, emoji=emoji))

    assert relayed.added_reactions == [emoji]


@pytest.mark.asyncio
async def test_voice_state_changes(gateway, alice):
    await gateway.on_voice_state_update(alice, voice(CHANNEL_1), voice(None))
    await gateway.on_voice_state_update(alice, voice(None), voice(CHANNEL_1))
    await gateway.on_voice_state_update(alice, voice(300), voice(None))
    await gateway.on_voice_state_update(alice, voice(CHANNEL_1), voice(CHANNEL_1))

    assert gateway.call_watcher.left == [(CHANNEL_1, alice.id)]
    assert gateway.call_watcher.joined == [(CHANNEL_1, alice.id)]


@pytest.mark.asyncio
async def test_ready_sends_startup_notice_once(gateway, channel_1, channel_2):
    await gateway.on_ready()
    await gateway.on_ready()

    assert [message.content for message in channel_1.sent] == [STARTUP_NOTICE]
    assert [message.content for message in channel_2.sent] == [STARTUP_NOTICE]


@pytest.mark.asyncio
async def test_handler_errors_are_contained(gateway, channel_1, alice, caplog):
    async def explode(message):
        raise RuntimeError("boom")

    gateway.relay.forward_message = explode
    with caplog.at_level(logging.ERROR):
        await gateway.on_message(FakeMessage(channel_1, alice, "hi"))

    assert "Error in on_message: boom" in caplog.text
