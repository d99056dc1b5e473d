"""
Guestcord
=========

A Discord bot that grants time-boxed guest access to a server, warns guests
before their access ends and removes them automatically once it expires.
Grants are stored in SQLite, so a restart picks up where the last run left off.
"""

import os
import sys
from pathlib import Path

def resolve_base_dir() -> Path:
    """Determine the base directory of the project.

    Resolution order:
    1. GUESTCORD_HOME environment variable, if set.
    2. If running in a frozen/compiled context, the executable's directory.
    3. Otherwise the repository root (two levels above this package).
    """
    if env_home := os.getenv("GUESTCORD_HOME"):
        return Path(env_home).resolve()

    if getattr(sys, "frozen", False) or getattr(sys, "compiled", False):
        return Path(sys.argv[0]).resolve().parent

    return Path(__file__).resolve().parents[2]

BASE_DIR = resolve_base_dir()
os.chdir(BASE_DIR)

import asyncio
import discord
from dotenv import load_dotenv

from guestcord.cog import guest_access_cog
from guestcord.configuration.app_configuration import app_config
from guestcord.database.db_connection import db_connection
from guestcord.repositories.guest_record_store import GuestRecordStore
from guestcord.services.guest_access_service import GuestAccessComponents, build_guest_access
from guestcord.util.discord.guest_gateway import DiscordGuestGateway
from guestcord.util.logger import get_logger, handle_exception


logger = get_logger("main")


def load_environment() -> str:
    """Load environment variables and return the Discord bot token.

    Raises
    ------
    SystemExit
        If the required ``DISCORD_BOT_TOKEN`` variable is missing.
    """
    load_dotenv(dotenv_path=BASE_DIR / ".env")
    token = os.getenv("DISCORD_BOT_TOKEN")
    if not token:
        logger.critical("'DISCORD_BOT_TOKEN' environment variable not set. Bot cannot start.")
        sys.exit(1)
    return token


def build_intents() -> discord.Intents:
    """Intents for guild and member lookups; members is privileged and must be enabled."""
    intents = discord.Intents.default()
    intents.guilds = True
    intents.members = True
    return intents


def create_bot() -> tuple[discord.Bot, GuestAccessComponents]:
    """Instantiate the Discord bot, wire the guest access components and register the cog."""
    bot = discord.Bot(intents=build_intents())
    gateway = DiscordGuestGateway(bot, timeout_seconds=app_config.guest_access.api_timeout_seconds)
    components = build_guest_access(gateway, GuestRecordStore(db_connection), app_config)
    guest_access_cog.setup(bot, components)
    logger.info("All cogs loaded successfully.")
    return bot, components


async def shutdown_runtime(bot: discord.Bot | None, components: GuestAccessComponents | None) -> None:
    """Stop the scheduler, close the Discord client and the database."""
    if components is not None:
        try:
            await components.scheduler.shutdown()
        except Exception as exc:
            logger.exception("Error during guest scheduler shutdown: %s", exc)

    if bot is not None and not bot.is_closed():
        try:
            await bot.close()
        except Exception as exc:
            logger.exception("Error while closing the Discord client: %s", exc)

    try:
        await db_connection.close()
    except Exception as exc:
        logger.exception("Error during database shutdown: %s", exc)

    logger.info("Shutdown complete.")


async def async_main() -> int:
    """Open the database, start the bot and return a process exit code."""
    token = load_environment()

    try:
        logger.info("Initializing database…")
        await db_connection.open(app_config.database_path)
    except Exception as exc:
        logger.critical("Failed to initialize database: %s", exc)
        return 1

    bot: discord.Bot | None = None
    components: GuestAccessComponents | None = None
    exit_code = 0
    try:
        bot, components = create_bot()
        logger.info("Attempting to connect to Discord…")
        await bot.start(token)
    except asyncio.CancelledError:
        logger.info("Discord bot start cancelled; shutting down")
    except Exception as exc:
        logger.critical("Discord bot runtime error: %s", exc)
        exit_code = 1
    finally:
        await shutdown_runtime(bot, components)

    return exit_code


def main() -> int:
    """Entrypoint that runs the async runtime and returns the process exit code."""
    sys.excepthook = handle_exception
    logger.info("Starting Guestcord…")
    try:
        return asyncio.run(async_main())
    except KeyboardInterrupt:
        logger.info("Shutdown requested by user.")
        return 0
    except SystemExit as exit_exc:
        code = exit_exc.code
        if isinstance(code, int):
            return code
        return 0 if code is None else 1
    except Exception as exc:
        logger.critical("An unexpected error occurred while running the bot: %s", exc)
        return 1


if __name__ == "__main__":
    sys.exit(main())
