"""
kaisanbot Discord Bot

Maintains the Discord connection, wires the kaisan stores, scheduler and
command cog together, and provides the chat-client methods the scheduler
and dispatcher call (send, disconnect, permission and voice lookups).
"""

import asyncio
import os
from typing import Optional

import asyncpg
import discord
from discord.ext import commands
from dotenv import load_dotenv

import analytics
from commands.kaisan_commands import setup as setup_kaisan_commands
from kaisan import (
    GuildSettingsStore,
    KaisanConfig,
    KaisanDispatcher,
    KaisanScheduler,
    KaisanTaskManager,
    ensure_schema,
)
from kaisan.messages import split_message

load_dotenv()

import logging

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger("kaisanbot")


class KaisanBot(commands.Bot):
    """Discord bot that schedules voice channel disbands."""

    def __init__(self, config: Optional[KaisanConfig] = None):
        intents = discord.Intents.default()
        intents.message_content = True
        intents.guilds = True
        intents.messages = True
        intents.voice_states = True

        self.config = config or KaisanConfig.from_env()
        super().__init__(command_prefix=self.config.command_prefix, intents=intents, help_command=None)

        self.db_pool: Optional[asyncpg.Pool] = None
        self.settings_store: Optional[GuildSettingsStore] = None
        self.task_manager: Optional[KaisanTaskManager] = None
        self.scheduler: Optional[KaisanScheduler] = None

    async def setup_hook(self):
        """Called when the bot is starting up."""
        database_url = os.getenv("DATABASE_URL")
        logger.info(f"Setup: DATABASE_URL={'set' if database_url else 'missing'}")
        logger.info(f"Setup: default timezone={self.config.default_timezone}")
        if not database_url:
            raise RuntimeError("DATABASE_URL environment variable not set")

        self.db_pool = await asyncpg.create_pool(database_url)
        # A schema failure is fatal; everything else degrades per command
        await ensure_schema(self.db_pool)

        self.settings_store = GuildSettingsStore(self.db_pool, self.config.default_timezone)
        self.task_manager = KaisanTaskManager(self.db_pool)
        self.scheduler = KaisanScheduler(
            self, self.task_manager, KaisanDispatcher(self), self.config
        )

        await setup_kaisan_commands(self, self.settings_store, self.scheduler, self.config)
        self.scheduler.start()
        logger.info("Kaisan system initialized successfully")

    async def on_ready(self):
        """Called when the bot has connected to Discord."""
        logger.info(f"Logged in as {self.user} (ID: {self.user.id})")
        logger.info(f"Connected to {len(self.guilds)} guild(s)")

    async def on_message(self, message: discord.Message):
        """Commands are parsed by the KaisanCommands listener, not the prefix command system."""
        return

    async def close(self):
        """Clean up resources on shutdown."""
        if self.scheduler:
            self.scheduler.stop()
        await analytics.shutdown()
        if self.db_pool:
            await self.db_pool.close()
        await super().close()

    # --- Chat client methods (used by the kaisan scheduler and dispatcher) ---

    async def _resolve_guild(self, guild_id: int) -> discord.Guild:
        guild = self.get_guild(guild_id)
        if guild is None:
            guild = await self.fetch_guild(guild_id)
        return guild

    async def _resolve_member(self, guild_id: int, user_id: int) -> discord.Member:
        guild = await self._resolve_guild(guild_id)
        member = guild.get_member(user_id)
        if member is None:
            member = await guild.fetch_member(user_id)
        return member

    async def send_message(self, channel_id: int, content: str) -> discord.Message:
        """Send a message to a channel, split to fit Discord's length limit."""
        channel = self.get_channel(channel_id)
        if channel is None:
            channel = await self.fetch_channel(channel_id)

        last_msg = None
        for chunk in split_message(content):
            last_msg = await channel.send(chunk)
        return last_msg

    async def disconnect_member(self, guild_id: int, member_id: int) -> None:
        """Disconnect a member from voice. A member not in voice is left alone."""
        member = await self._resolve_member(guild_id, member_id)
        if member.voice is None or member.voice.channel is None:
            logger.debug(f"Member {member_id} is not in voice in guild {guild_id}")
            return
        await member.move_to(None, reason="Scheduled disband")

    async def get_permissions(self, guild_id: int, user_id: int) -> discord.Permissions:
        """Get a member's guild-wide permissions."""
        member = await self._resolve_member(guild_id, user_id)
        return member.guild_permissions

    async def list_voice_members(self, guild_id: int, channel_id: int) -> set[int]:
        """IDs of members currently connected to a voice channel."""
        channel = self.get_channel(channel_id)
        if channel is None:
            channel = await self.fetch_channel(channel_id)
        if not isinstance(channel, (discord.VoiceChannel, discord.StageChannel)):
            logger.warning(f"Channel {channel_id} in guild {guild_id} is not a voice channel")
            return set()
        return {member.id for member in channel.members}

    async def get_voice_channel(self, guild_id: int, user_id: int) -> Optional[int]:
        """The voice channel a member is connected to, or None."""
        guild = self.get_guild(guild_id)
        member = guild.get_member(user_id) if guild else None
        if member is None or member.voice is None or member.voice.channel is None:
            return None
        return member.voice.channel.id


async def main():
    """Run the bot."""
    token = os.getenv("DISCORD_BOT_TOKEN")
    if not token:
        print("Error: DISCORD_BOT_TOKEN environment variable not set")
        print("Please set it in your .env file")
        return

    bot = KaisanBot(KaisanConfig.from_env())
    async with bot:
        await bot.start(token)


def run():
    """Console script entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
