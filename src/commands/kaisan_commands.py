# kaisanbot - Discord Voice Channel Disband Bot
# Copyright (c) 2025-2026 Slash Daemon slashdaemon@protonmail.com
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published by
# the Free Software Foundation, version 3 of the License.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE. See the
# GNU Affero General Public License for more details.
#
# You should have received a copy of the GNU Affero General Public License
# along with this program. If not, see <https://www.gnu.org/licenses/>.
#
# Commercial licensing: [slashdaemon@protonmail.com]

"""
Kaisan Text Commands

Message listener for `!kaisan ...` and `@bot ...` commands: permission
checks, scheduling and replies.
"""

import logging
import random
from datetime import datetime
from typing import Optional

import discord
import pytz
from discord.ext import commands

from analytics import track
from kaisan import messages
from kaisan.command_parser import extract_command, parse_command
from kaisan.config import KaisanConfig
from kaisan.errors import KaisanError, NotInVoiceChannelError, ParseError, PermissionDeniedError, StoreError
from kaisan.models import (
    CONFIG_COMMANDS,
    AddReminderCommand,
    CancelCommand,
    HelpCommand,
    KaisanCommand,
    ListTasksCommand,
    ParsedCommand,
    RemoveReminderCommand,
    SetRemindRandomCommand,
    SetRequirePermissionCommand,
    SetTimezoneCommand,
    ShowSettingCommand,
)
from kaisan.resolver import resolve
from kaisan.scheduler import KaisanScheduler
from kaisan.settings import GuildSettingsStore

logger = logging.getLogger("kaisanbot.commands.kaisan")

GENERIC_ERROR_REPLY = "Something went wrong on my side. Please try again in a moment."


class KaisanCommands(commands.Cog):
    """
    Text commands for scheduling disbands.

    Commands:
    - kaisan <time> [target] - Schedule a disband of the author's voice channel
    - list / cancel <id> - Inspect and cancel scheduled disbands
    - help / show-setting - Usage and current guild settings
    - timezone, require-permission, add-reminder, remove-reminder,
      remind-random - Guild settings (Manage Server)
    """

    def __init__(
        self,
        bot: commands.Bot,
        settings_store: GuildSettingsStore,
        scheduler: KaisanScheduler,
        config: Optional[KaisanConfig] = None,
        rng: Optional[random.Random] = None,
    ):
        self.bot = bot
        self.settings = settings_store
        self.scheduler = scheduler
        self.config = config or KaisanConfig()
        self.rng = rng or random.Random()

    @commands.Cog.listener()
    async def on_message(self, message: discord.Message):
        """Run kaisan commands found in guild messages."""
        if message.author.bot or message.guild is None or self.bot.user is None:
            return

        text = extract_command(message.content, self.bot.user.id, self.config.command_prefix)
        if text is None:
            return

        reply = await self.handle(
            text,
            guild_id=message.guild.id,
            channel_id=message.channel.id,
            author_id=message.author.id,
        )

        try:
            for chunk in messages.split_message(reply):
                await message.reply(chunk, mention_author=False)
        except discord.HTTPException as e:
            logger.warning(f"Failed to reply in channel {message.channel.id}: {e}")

    async def handle(
        self,
        text: str,
        guild_id: int,
        channel_id: int,
        author_id: int,
        now: Optional[datetime] = None,
    ) -> str:
        """
        Parse and run one command.

        Args:
            text: Command text with the trigger removed
            guild_id: Guild the message was sent in
            channel_id: Text channel the message was sent in
            author_id: Message author
            now: Current time (defaults to the clock)

        Returns:
            Reply text; user errors are reported here rather than raised
        """
        try:
            command = parse_command(text)
        except ParseError as e:
            return f"Could not parse command: {e}\nTry `help` for examples."

        # Analytics: Track command usage
        track(
            "command_used",
            "command",
            user_id=author_id,
            channel_id=channel_id,
            guild_id=guild_id,
            properties={"command_name": "kaisan", "subcommand": type(command).__name__},
        )

        try:
            return await self.execute(
                command, guild_id, channel_id, author_id, now or datetime.now(pytz.UTC)
            )
        except StoreError as e:
            logger.error(f"Store error handling {text!r} in guild {guild_id}: {e}", exc_info=True)
            return GENERIC_ERROR_REPLY
        except discord.HTTPException as e:
            logger.warning(f"Discord error handling {text!r} in guild {guild_id}: {e}")
            return GENERIC_ERROR_REPLY
        except KaisanError as e:
            return str(e)

    async def execute(
        self,
        command: ParsedCommand,
        guild_id: int,
        channel_id: int,
        author_id: int,
        now: datetime,
    ) -> str:
        """
        Run a parsed command.

        Raises:
            KaisanError: For user-facing failures (permissions, past times,
                unknown tasks) and store failures
        """
        if isinstance(command, HelpCommand):
            return messages.HELP_TEXT

        if isinstance(command, ShowSettingCommand):
            return messages.format_settings(await self.settings.get(guild_id))

        if isinstance(command, ListTasksCommand):
            return messages.format_task_list(await self.scheduler.manager.list_tasks(guild_id))

        if isinstance(command, CancelCommand):
            await self.scheduler.cancel(command.task_id, guild_id, author_id)
            return f"Canceled disband #{command.task_id}."

        if isinstance(command, CONFIG_COMMANDS):
            permissions = await self.bot.get_permissions(guild_id, author_id)
            if not permissions.manage_guild:
                raise PermissionDeniedError("Manage Server")
            return await self._configure(command, guild_id)

        return await self._schedule(command, guild_id, channel_id, author_id, now)

    async def _configure(self, command: ParsedCommand, guild_id: int) -> str:
        if isinstance(command, SetTimezoneCommand):
            await self.settings.set_timezone(guild_id, command.timezone)
            return f"Timezone set to `{command.timezone}`."

        if isinstance(command, SetRequirePermissionCommand):
            await self.settings.set_require_permission(guild_id, command.value)
            return f"require-permission set to `{str(command.value).lower()}`."

        if isinstance(command, SetRemindRandomCommand):
            await self.settings.set_remind_random(guild_id, command.value)
            return f"remind-random set to `{str(command.value).lower()}`."

        minutes = messages.format_minutes(command.minutes)
        if isinstance(command, AddReminderCommand):
            if await self.settings.add_reminder_offset(guild_id, command.minutes):
                return f"Added a reminder {minutes} before each disband."
            return f"A reminder {minutes} before is already set."

        if isinstance(command, RemoveReminderCommand):
            if await self.settings.remove_reminder_offset(guild_id, command.minutes):
                return f"Removed the reminder {minutes} before each disband."
            return f"There is no reminder {minutes} before."

        raise TypeError(f"Unhandled setting command: {command!r}")

    async def _schedule(
        self,
        command: KaisanCommand,
        guild_id: int,
        channel_id: int,
        author_id: int,
        now: datetime,
    ) -> str:
        settings = await self.settings.get(guild_id)

        voice_channel_id = await self.bot.get_voice_channel(guild_id, author_id)
        if voice_channel_id is None:
            raise NotInVoiceChannelError()

        if settings.require_permission and command.target.may_include_others(author_id):
            permissions = await self.bot.get_permissions(guild_id, author_id)
            if not permissions.move_members:
                raise PermissionDeniedError("Move Members")

        schedule = resolve(command, settings, now, self.rng)
        task_id = await self.scheduler.schedule(
            guild_id, voice_channel_id, channel_id, author_id, command.target, schedule
        )
        return messages.format_scheduled(task_id, command.target, schedule)


async def setup(
    bot: commands.Bot,
    settings_store: GuildSettingsStore,
    scheduler: KaisanScheduler,
    config: Optional[KaisanConfig] = None,
):
    """Register the kaisan commands cog."""
    await bot.add_cog(KaisanCommands(bot, settings_store, scheduler, config))
