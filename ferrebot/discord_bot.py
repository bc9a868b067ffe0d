"""
Discord Bot Module

Discord transport for the store assistant.

Features:
- DMs and mentions are routed to the dialogue orchestrator
- Buttons, quick replies and product cards become Discord components;
  a click comes back as a postback with the button's payload
- Slash commands for help, status and resetting the conversation
- Simple per-user rate limiting

Every Discord user has one conversation, keyed by their user id, whichever
channel they write from. Replies go to the channel of their last message.

Usage:
    python -m ferrebot.discord_bot

    Or:
    from ferrebot.discord_bot import create_bot
    bot = create_bot()
    bot.run_bot()
"""

import asyncio
import logging
import os
from datetime import datetime
from typing import Dict, List, Optional

import discord
from discord import app_commands
from discord.ext import commands

from config.settings import get_settings
from ferrebot.assistant import Assistant, build_assistant
from ferrebot.exceptions import MessagingError
from ferrebot.messaging import Button, Card, Messenger, QuickReply

logger = logging.getLogger(__name__)

# Discord limits
MAX_MESSAGE_LENGTH = 2000
MAX_LABEL_LENGTH = 80
MAX_COMPONENTS = 25


def build_view(options, style: discord.ButtonStyle = discord.ButtonStyle.primary) -> discord.ui.View:
    """
    Turn Button/QuickReply items into a view whose custom_ids are the payloads.
    """
    view = discord.ui.View()
    for option in options[:MAX_COMPONENTS]:
        view.add_item(
            discord.ui.Button(
                label=option.title[:MAX_LABEL_LENGTH],
                custom_id=option.payload,
                style=style,
            )
        )
    return view


def build_card_embed(card: Card, color: Optional[discord.Color] = None) -> discord.Embed:
    embed = discord.Embed(
        title=card.title[:256],
        description=card.subtitle[:4000] or None,
        color=color or discord.Color.orange(),
    )
    if card.image_url:
        embed.set_thumbnail(url=card.image_url)
    return embed


class DiscordMessenger(Messenger):
    """
    Messenger backed by a discord.py client.

    The orchestrator addresses users by id; register() remembers which
    channel each user last wrote from so replies land there.
    """

    def __init__(self, client: discord.Client):
        self.client = client
        self._routes: Dict[str, discord.abc.Messageable] = {}

    def register(self, channel_id: str, destination: discord.abc.Messageable) -> None:
        self._routes[channel_id] = destination

    def forget(self, channel_id: str) -> None:
        self._routes.pop(channel_id, None)

    async def _destination(self, channel_id: str) -> discord.abc.Messageable:
        destination = self._routes.get(channel_id)
        if destination is not None:
            return destination

        # No inbound message seen yet (e.g. after a restart): fall back to a DM
        try:
            user = self.client.get_user(int(channel_id)) or await self.client.fetch_user(int(channel_id))
        except (ValueError, discord.HTTPException) as e:
            raise MessagingError(f"No Discord destination for {channel_id}", details=str(e)) from e

        self._routes[channel_id] = user
        return user

    async def _send(self, channel_id: str, content: Optional[str] = None, **kwargs) -> None:
        destination = await self._destination(channel_id)
        try:
            await destination.send(content, **kwargs)
        except discord.HTTPException as e:
            raise MessagingError(f"Discord rejected a message for {channel_id}", details=str(e)) from e

    async def send_text(self, channel_id: str, text: str) -> None:
        for start in range(0, max(len(text), 1), MAX_MESSAGE_LENGTH):
            await self._send(channel_id, text[start:start + MAX_MESSAGE_LENGTH])

    async def send_buttons(self, channel_id: str, text: str, buttons: List[Button]) -> None:
        await self._send(channel_id, text[:MAX_MESSAGE_LENGTH], view=build_view(buttons))

    async def send_quick_replies(self, channel_id: str, text: str, replies: List[QuickReply]) -> None:
        await self._send(
            channel_id,
            text[:MAX_MESSAGE_LENGTH],
            view=build_view(replies, style=discord.ButtonStyle.secondary),
        )

    async def send_cards(self, channel_id: str, cards: List[Card]) -> None:
        for card in cards:
            if card.buttons:
                view = build_view(card.buttons, style=discord.ButtonStyle.success)
                await self._send(channel_id, embed=build_card_embed(card), view=view)
            else:
                await self._send(channel_id, embed=build_card_embed(card))

    async def set_typing(self, channel_id: str, on: bool) -> None:
        # Discord clears the indicator by itself once a message is sent
        if not on:
            return
        destination = self._routes.get(channel_id)
        if destination is not None and hasattr(destination, "typing"):
            await destination.typing()


class DiscordBot(commands.Bot):
    """
    Discord Bot for the hardware store assistant.

    Features:
    - Natural language ordering and FAQ answers
    - Conversation state per user
    - Interactive buttons and product cards
    - Slash commands
    """

    def __init__(
        self,
        command_prefix: str = "!",
        assistant: Optional[Assistant] = None,
        **kwargs
    ):
        """
        Initialize the Discord Bot.

        Args:
            command_prefix: Prefix for text commands (default: "!")
            assistant: Optional pre-configured assistant
            **kwargs: Additional arguments for commands.Bot
        """
        # MESSAGE_CONTENT is a privileged intent; enable it in the Developer Portal
        intents = discord.Intents.default()
        intents.message_content = True
        intents.guilds = True

        super().__init__(
            command_prefix=command_prefix,
            intents=intents,
            **kwargs
        )

        self._assistant = assistant
        self.messenger = DiscordMessenger(self)
        self._is_ready = False

        # Rate limiting (simple in-memory)
        self._rate_limits: Dict[int, datetime] = {}
        self._rate_limit_seconds = 1

        self._stats = {
            "messages_handled": 0,
            "postbacks_handled": 0,
            "errors": 0,
            "start_time": None,
        }

        self.settings = get_settings()

        logger.info("DiscordBot initialized")

    @property
    def assistant(self) -> Assistant:
        """Get the assistant, building it on first use."""
        if self._assistant is None:
            logger.info("Building assistant...")
            self._assistant = build_assistant(self.settings)
        if self._assistant.orchestrator.messenger is not self.messenger:
            self._assistant.attach_messenger(self.messenger)
        return self._assistant

    async def setup_hook(self):
        """Called when the bot is starting up."""
        await self._register_commands()
        logger.info("Slash commands registered")

    async def _register_commands(self):
        """Register slash commands with Discord."""

        @self.tree.command(name="help", description="Cómo usar el asistente de la ferretería")
        async def help_command(interaction: discord.Interaction):
            await self._send_help(interaction)

        @self.tree.command(name="status", description="Estado del bot y estadísticas")
        async def status_command(interaction: discord.Interaction):
            await self._send_status(interaction)

        @self.tree.command(name="reset", description="Reinicia tu conversación y descarta el pedido en curso")
        async def reset_command(interaction: discord.Interaction):
            await self._reset_conversation(interaction)

        @self.tree.command(name="pedido", description="Escribe lo que necesitas, por ejemplo: Cemento x 3")
        @app_commands.describe(mensaje="Tu consulta o lista de productos")
        async def order_command(interaction: discord.Interaction, mensaje: str):
            await self._handle_slash_message(interaction, mensaje)

        try:
            synced = await self.tree.sync()
            logger.info(f"Synced {len(synced)} slash commands")
        except Exception as e:
            logger.error(f"Failed to sync commands: {e}")

    async def on_ready(self):
        """Called when the bot is ready and connected."""
        self._is_ready = True
        self._stats["start_time"] = datetime.now()

        logger.info(f"Bot is ready! Logged in as {self.user}")
        logger.info(f"Connected to {len(self.guilds)} guild(s)")

        activity = discord.Activity(
            type=discord.ActivityType.listening,
            name="tus pedidos | /help"
        )
        await self.change_presence(activity=activity)

        await self.assistant.start()

    async def close(self):
        if self._assistant is not None:
            await self._assistant.stop()
        await super().close()

    async def on_message(self, message: discord.Message):
        """Handle incoming messages."""
        if message.author == self.user or message.author.bot:
            return

        is_mentioned = self.user in message.mentions
        is_dm = isinstance(message.channel, discord.DMChannel)

        if is_mentioned or is_dm:
            content = message.content
            if is_mentioned:
                content = content.replace(f"<@{self.user.id}>", "").strip()
                content = content.replace(f"<@!{self.user.id}>", "").strip()

            if not content:
                # Mentioned without text: behave like a greeting
                content = "hola"

            await self._handle_text(message.author.id, message.channel, content)

        await self.process_commands(message)

    async def on_interaction(self, interaction: discord.Interaction):
        """Route component clicks to the orchestrator as postbacks."""
        if interaction.type != discord.InteractionType.component:
            return

        payload = (interaction.data or {}).get("custom_id")
        if not payload:
            return

        try:
            await interaction.response.defer()
        except discord.HTTPException as e:
            logger.warning(f"Could not acknowledge interaction: {e}")

        channel_id = str(interaction.user.id)
        if interaction.channel is not None:
            self.messenger.register(channel_id, interaction.channel)

        try:
            await self.assistant.orchestrator.process_postback(channel_id, payload)
            self._stats["postbacks_handled"] += 1
        except Exception as e:
            logger.error(f"Error handling postback {payload}: {e}")
            self._stats["errors"] += 1

    async def _handle_text(self, user_id: int, channel: discord.abc.Messageable, content: str):
        if not self._check_rate_limit(user_id):
            await channel.send("⏳ Un momento por favor, sigo procesando tu mensaje anterior.", delete_after=5)
            return

        channel_id = str(user_id)
        self.messenger.register(channel_id, channel)

        try:
            await self.assistant.orchestrator.process_message(channel_id, content)
            self._stats["messages_handled"] += 1
        except Exception as e:
            logger.error(f"Error handling message: {e}")
            self._stats["errors"] += 1

    async def _handle_slash_message(self, interaction: discord.Interaction, content: str):
        await interaction.response.send_message(f"> {content[:1900]}")
        if interaction.channel is not None:
            await self._handle_text(interaction.user.id, interaction.channel, content)

    async def _send_help(self, interaction: discord.Interaction):
        """Send help information."""
        embed = discord.Embed(
            title=f"🤖 {self.settings.bot.store_name} - Ayuda",
            description="Puedo ayudarte a consultar productos, cotizar y hacer pedidos.",
            color=discord.Color.blue()
        )

        embed.add_field(
            name="💬 Cómo hablarme",
            value=(
                "**Opción 1:** Envíame un mensaje directo\n"
                "**Opción 2:** Menciónanos en un canal\n"
                "**Opción 3:** Usa `/pedido`"
            ),
            inline=False
        )

        embed.add_field(
            name="📝 Ejemplos",
            value=(
                "• ¿Cuál es el horario de atención?\n"
                "• ¿Tienen pintura látex?\n"
                "• Quiero hacer un pedido\n"
                "• Cemento x 3"
            ),
            inline=False
        )

        embed.add_field(
            name="⚡ Comandos",
            value=(
                "`/pedido` - Enviar un mensaje al asistente\n"
                "`/help` - Mostrar esta ayuda\n"
                "`/status` - Estado del bot\n"
                "`/reset` - Reiniciar la conversación"
            ),
            inline=False
        )

        await interaction.response.send_message(embed=embed)

    async def _send_status(self, interaction: discord.Interaction):
        """Send bot status information."""
        uptime = "N/A"
        if self._stats["start_time"]:
            delta = datetime.now() - self._stats["start_time"]
            hours, remainder = divmod(int(delta.total_seconds()), 3600)
            minutes, seconds = divmod(remainder, 60)
            uptime = f"{hours}h {minutes}m {seconds}s"

        stats = self.assistant.get_stats()
        dialogue = stats.get("dialogue", {})

        embed = discord.Embed(
            title="📊 Estado del bot",
            color=discord.Color.green() if self._is_ready else discord.Color.red()
        )
        embed.add_field(name="🟢 Estado", value="En línea" if self._is_ready else "Iniciando...", inline=True)
        embed.add_field(name="⏱️ Uptime", value=uptime, inline=True)
        embed.add_field(name="💬 Mensajes", value=str(dialogue.get("turns", 0)), inline=True)
        embed.add_field(name="📦 Pedidos", value=str(dialogue.get("orders_created", 0)), inline=True)
        embed.add_field(
            name="📚 FAQ",
            value=f"{stats.get('knowledge_base', {}).get('documents', 0)} entradas",
            inline=True
        )
        embed.add_field(name="🤖 LLM", value=self.settings.llm.provider.capitalize(), inline=True)
        embed.set_footer(text=f"Latency: {round(self.latency * 1000)}ms")

        await interaction.response.send_message(embed=embed)

    async def _reset_conversation(self, interaction: discord.Interaction):
        """Return the user's conversation to the initial state."""
        channel_id = str(interaction.user.id)

        try:
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, self.assistant.reset_conversation, channel_id)
            await interaction.response.send_message("✅ Conversación reiniciada.", ephemeral=True)
        except Exception as e:
            logger.error(f"Error resetting conversation: {e}")
            await interaction.response.send_message(
                "❌ No pude reiniciar la conversación.",
                ephemeral=True
            )

    def _check_rate_limit(self, user_id: int) -> bool:
        """Check if user is rate limited."""
        now = datetime.now()

        # Entries past the window no longer limit anyone
        expired = [
            uid for uid, last in self._rate_limits.items()
            if (now - last).total_seconds() >= self._rate_limit_seconds
        ]
        for uid in expired:
            del self._rate_limits[uid]

        if user_id in self._rate_limits:
            elapsed = (now - self._rate_limits[user_id]).total_seconds()
            if elapsed < self._rate_limit_seconds:
                return False

        self._rate_limits[user_id] = now
        return True

    def run_bot(self, token: Optional[str] = None):
        """
        Run the bot with the given token.

        Args:
            token: Discord bot token (or from environment)
        """
        token = token or self.settings.bot.discord_token or os.getenv("DISCORD_BOT_TOKEN")

        if not token:
            raise ValueError(
                "Discord bot token not provided. "
                "Set DISCORD_BOT_TOKEN environment variable or pass token directly."
            )

        logger.info("Starting Discord bot...")
        self.run(token.strip('"').strip("'"))


def create_bot(**kwargs) -> DiscordBot:
    """
    Factory function to create a configured Discord bot.

    Args:
        **kwargs: Arguments to pass to DiscordBot

    Returns:
        Configured DiscordBot instance
    """
    return DiscordBot(**kwargs)


if __name__ == "__main__":
    import sys

    logging.basicConfig(
        level=getattr(logging, get_settings().log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler("discord_bot.log"),
        ]
    )

    bot = create_bot()
    bot.run_bot()
