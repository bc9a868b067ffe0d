"""
Run Discord Bot - Direct launch script
"""
import sys
import logging
import os

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from dotenv import load_dotenv
load_dotenv()

from config.settings import get_settings

settings = get_settings()

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[
        logging.StreamHandler(sys.stdout),
    ]
)

print("=" * 60)
print(f"  🤖 {settings.bot.store_name} - Asistente de ventas")
print("=" * 60)

from ferrebot.discord_bot import create_bot

print("""
Bot Commands:
  /pedido <mensaje> - Send a message to the assistant
  /help             - Show help information
  /status           - Show bot status
  /reset            - Reset your conversation

You can also mention the bot or DM it.

Press Ctrl+C to stop the bot.
""")

if not settings.bot.discord_token:
    print("❌ DISCORD_BOT_TOKEN not set in .env!")
    sys.exit(1)

bot = create_bot()
bot.run_bot(settings.bot.discord_token)
