"""
Tests for Discord Bot Module

Uses mocking to avoid actual Discord API calls.
"""

from datetime import datetime, timedelta

import pytest
from unittest.mock import AsyncMock, Mock, PropertyMock, patch

import discord

from ferrebot.discord_bot import DiscordBot, DiscordMessenger, build_card_embed, build_view, create_bot
from ferrebot.exceptions import MessagingError
from ferrebot.messaging import Button, Card, QuickReply


@pytest.fixture
def bot(settings):
    with patch("ferrebot.discord_bot.get_settings", return_value=settings):
        yield DiscordBot()


@pytest.fixture
def assistant():
    assistant = Mock()
    assistant.orchestrator.process_message = AsyncMock()
    assistant.orchestrator.process_postback = AsyncMock()
    return assistant


def http_error(message="boom"):
    return discord.HTTPException(Mock(status=500, reason="Internal Server Error"), message)


class TestDiscordBot:
    """Tests for DiscordBot class."""

    def test_initialization(self, bot):
        assert bot._assistant is None  # Lazy initialization
        assert bot._is_ready is False
        assert bot._rate_limit_seconds == 1
        assert bot._stats["messages_handled"] == 0
        assert bot.messenger.client is bot

    def test_initialization_with_prefix(self, settings):
        with patch("ferrebot.discord_bot.get_settings", return_value=settings):
            bot = create_bot(command_prefix="?")
        assert bot.command_prefix == "?"

    def test_assistant_gets_the_discord_messenger(self, settings, assistant):
        assistant.orchestrator.messenger = None
        with patch("ferrebot.discord_bot.get_settings", return_value=settings):
            bot = DiscordBot(assistant=assistant)

        assert bot.assistant is assistant
        assistant.attach_messenger.assert_called_once_with(bot.messenger)

    def test_rate_limit_first_request(self, bot):
        assert bot._check_rate_limit(123456) is True

    def test_rate_limit_blocks_rapid_requests(self, bot):
        assert bot._check_rate_limit(123456) is True
        assert bot._check_rate_limit(123456) is False

    def test_rate_limit_different_users(self, bot):
        assert bot._check_rate_limit(123456) is True
        assert bot._check_rate_limit(789012) is True

    def test_rate_limit_entries_expire(self, bot):
        bot._rate_limits[111] = datetime.now() - timedelta(seconds=5)
        bot._rate_limits[222] = datetime.now() - timedelta(seconds=5)

        assert bot._check_rate_limit(333) is True

        assert set(bot._rate_limits) == {333}

    def test_run_bot_without_token(self, bot, monkeypatch):
        monkeypatch.delenv("DISCORD_BOT_TOKEN", raising=False)
        with pytest.raises(ValueError, match="token not provided"):
            bot.run_bot()


class TestMessageRouting:
    @pytest.mark.asyncio
    async def test_direct_message(self, bot, assistant):
        bot._assistant = assistant
        bot.process_commands = AsyncMock()
        message = Mock()
        message.author.bot = False
        message.author.id = 7
        message.mentions = []
        message.channel = Mock(spec=discord.DMChannel)
        message.content = "Cemento x 3"

        await bot.on_message(message)

        assistant.orchestrator.process_message.assert_awaited_once_with("7", "Cemento x 3")
        assert bot.messenger._routes["7"] is message.channel
        assert bot._stats["messages_handled"] == 1

    @pytest.mark.asyncio
    async def test_empty_mention_is_a_greeting(self, bot, assistant):
        bot._assistant = assistant
        bot.process_commands = AsyncMock()
        me = Mock(id=99)
        message = Mock()
        message.author.bot = False
        message.author.id = 7
        message.mentions = [me]
        message.content = "<@99>"

        with patch.object(DiscordBot, "user", new_callable=PropertyMock, return_value=me):
            await bot.on_message(message)

        assistant.orchestrator.process_message.assert_awaited_once_with("7", "hola")

    @pytest.mark.asyncio
    async def test_bot_messages_ignored(self, bot, assistant):
        bot._assistant = assistant
        message = Mock()
        message.author.bot = True

        await bot.on_message(message)

        assistant.orchestrator.process_message.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_rate_limited_user_is_told_to_wait(self, bot, assistant):
        bot._assistant = assistant
        channel = Mock()
        channel.send = AsyncMock()
        bot._check_rate_limit(7)

        await bot._handle_text(7, channel, "hola")

        channel.send.assert_awaited_once()
        assistant.orchestrator.process_message.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_button_click_becomes_postback(self, bot, assistant):
        bot._assistant = assistant
        interaction = Mock()
        interaction.type = discord.InteractionType.component
        interaction.data = {"custom_id": "ADD_PRODUCT_4"}
        interaction.user.id = 42
        interaction.response.defer = AsyncMock()

        await bot.on_interaction(interaction)

        interaction.response.defer.assert_awaited_once()
        assistant.orchestrator.process_postback.assert_awaited_once_with("42", "ADD_PRODUCT_4")
        assert bot.messenger._routes["42"] is interaction.channel
        assert bot._stats["postbacks_handled"] == 1

    @pytest.mark.asyncio
    async def test_slash_commands_are_not_postbacks(self, bot, assistant):
        bot._assistant = assistant
        interaction = Mock()
        interaction.type = discord.InteractionType.application_command

        await bot.on_interaction(interaction)

        assistant.orchestrator.process_postback.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_postback_failure_counted(self, bot, assistant):
        assistant.orchestrator.process_postback.side_effect = RuntimeError("boom")
        bot._assistant = assistant
        interaction = Mock()
        interaction.type = discord.InteractionType.component
        interaction.data = {"custom_id": "VIEW_SUMMARY"}
        interaction.user.id = 42
        interaction.response.defer = AsyncMock()

        await bot.on_interaction(interaction)

        assert bot._stats["errors"] == 1


class TestComponents:
    def test_card_embed(self):
        card = Card(
            title="Pintura Látex Blanca 1 galón",
            subtitle="S/ 45.00 - Stock: 60 Galón",
            image_url="https://example.com/images/pintura.jpg",
        )

        embed = build_card_embed(card)

        assert embed.title == "Pintura Látex Blanca 1 galón"
        assert embed.description == "S/ 45.00 - Stock: 60 Galón"
        assert embed.thumbnail.url == "https://example.com/images/pintura.jpg"

    @pytest.mark.asyncio
    async def test_view_uses_payloads_as_custom_ids(self):
        view = build_view([
            QuickReply("✅ Sí, confirmar", "CONFIRM_ORDER"),
            QuickReply("x" * 120, "CANCEL_ORDER"),
        ], style=discord.ButtonStyle.secondary)

        assert [item.custom_id for item in view.children] == ["CONFIRM_ORDER", "CANCEL_ORDER"]
        assert len(view.children[1].label) == 80
        assert view.children[0].style == discord.ButtonStyle.secondary


class TestDiscordMessenger:
    @pytest.mark.asyncio
    async def test_long_text_is_split(self):
        messenger = DiscordMessenger(Mock())
        channel = Mock()
        channel.send = AsyncMock()
        messenger.register("7", channel)

        await messenger.send_text("7", "a" * 4500)

        assert channel.send.await_count == 3

    @pytest.mark.asyncio
    async def test_buttons_attach_a_view(self):
        messenger = DiscordMessenger(Mock())
        channel = Mock()
        channel.send = AsyncMock()
        messenger.register("7", channel)

        await messenger.send_buttons("7", "¡Hola!", [Button("🛠️ Ver Productos", "VIEW_PRODUCTS")])

        args, kwargs = channel.send.call_args
        assert args == ("¡Hola!",)
        assert kwargs["view"].children[0].custom_id == "VIEW_PRODUCTS"

    @pytest.mark.asyncio
    async def test_falls_back_to_direct_message(self):
        user = Mock()
        user.send = AsyncMock()
        client = Mock()
        client.get_user.return_value = None
        client.fetch_user = AsyncMock(return_value=user)
        messenger = DiscordMessenger(client)

        await messenger.send_text("42", "Pedido cancelado.")

        client.fetch_user.assert_awaited_once_with(42)
        user.send.assert_awaited_once_with("Pedido cancelado.")

    @pytest.mark.asyncio
    async def test_unknown_destination(self):
        messenger = DiscordMessenger(Mock())
        with pytest.raises(MessagingError):
            await messenger.send_text("not-a-user", "hola")

    @pytest.mark.asyncio
    async def test_rejected_send(self):
        messenger = DiscordMessenger(Mock())
        channel = Mock()
        channel.send = AsyncMock(side_effect=http_error())
        messenger.register("7", channel)

        with pytest.raises(MessagingError):
            await messenger.send_text("7", "hola")

    @pytest.mark.asyncio
    async def test_typing_only_when_turned_on(self):
        messenger = DiscordMessenger(Mock())
        channel = Mock()
        channel.typing = AsyncMock()
        messenger.register("7", channel)

        await messenger.set_typing("7", True)
        await messenger.set_typing("7", False)

        channel.typing.assert_awaited_once()
