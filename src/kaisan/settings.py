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
Guild Settings Store

Per-guild configuration: timezone, permission requirement, reminder
offsets and whether reminders apply to randomized disbands. Each write is
a single upsert, so it is idempotent and durable once it returns.
"""

import logging

import asyncpg

from .command_parser import validate_timezone
from .db import store_errors
from .models import GuildSettings

logger = logging.getLogger("kaisanbot.kaisan.settings")


class GuildSettingsStore:
    """
    Reads and writes kaisan_guild_settings rows.

    Guilds without a row read as defaults; a row is created by the first
    configuration command.
    """

    def __init__(self, db_pool: asyncpg.Pool, default_timezone: str = "Asia/Tokyo"):
        """
        Initialize the settings store.

        Args:
            db_pool: asyncpg connection pool
            default_timezone: Timezone for guilds without a row
        """
        self.db = db_pool
        self.default_timezone = default_timezone

    def defaults(self) -> GuildSettings:
        return GuildSettings(timezone=self.default_timezone)

    async def get(self, guild_id: int) -> GuildSettings:
        """
        Get a guild's settings.

        Args:
            guild_id: Discord guild ID

        Returns:
            Stored settings, or defaults if the guild has none
        """
        with store_errors("load guild settings"):
            row = await self.db.fetchrow(
                """
                SELECT timezone, require_permission, reminder_offsets, remind_random
                FROM kaisan_guild_settings
                WHERE guild_id = $1
                """,
                guild_id,
            )

        return GuildSettings.from_row(row) if row else self.defaults()

    async def set_timezone(self, guild_id: int, timezone: str) -> bool:
        """
        Set a guild's timezone.

        Args:
            guild_id: Discord guild ID
            timezone: IANA timezone name

        Returns:
            True if set successfully, False if invalid timezone
        """
        if not validate_timezone(timezone):
            return False

        with store_errors("save the timezone"):
            await self.db.execute(
                """
                INSERT INTO kaisan_guild_settings (guild_id, timezone, updated_at)
                VALUES ($1, $2, NOW())
                ON CONFLICT (guild_id)
                DO UPDATE SET timezone = $2, updated_at = NOW()
                """,
                guild_id,
                timezone,
            )

        logger.info(f"Set timezone for guild {guild_id}: {timezone}")
        return True

    async def set_require_permission(self, guild_id: int, value: bool) -> None:
        with store_errors("save require-permission"):
            await self.db.execute(
                """
                INSERT INTO kaisan_guild_settings (guild_id, timezone, require_permission, updated_at)
                VALUES ($1, $2, $3, NOW())
                ON CONFLICT (guild_id)
                DO UPDATE SET require_permission = $3, updated_at = NOW()
                """,
                guild_id,
                self.default_timezone,
                value,
            )
        logger.info(f"Set require_permission for guild {guild_id}: {value}")

    async def set_remind_random(self, guild_id: int, value: bool) -> None:
        with store_errors("save remind-random"):
            await self.db.execute(
                """
                INSERT INTO kaisan_guild_settings (guild_id, timezone, remind_random, updated_at)
                VALUES ($1, $2, $3, NOW())
                ON CONFLICT (guild_id)
                DO UPDATE SET remind_random = $3, updated_at = NOW()
                """,
                guild_id,
                self.default_timezone,
                value,
            )
        logger.info(f"Set remind_random for guild {guild_id}: {value}")

    async def add_reminder_offset(self, guild_id: int, minutes: int) -> bool:
        """
        Add a reminder N minutes before each disband.

        Returns:
            True if added, False if the guild already had it
        """
        with store_errors("add the reminder"):
            row = await self.db.fetchrow(
                """
                INSERT INTO kaisan_guild_settings (guild_id, timezone, reminder_offsets, updated_at)
                VALUES ($1, $2, ARRAY[$3::integer], NOW())
                ON CONFLICT (guild_id)
                DO UPDATE SET
                    reminder_offsets = array_append(kaisan_guild_settings.reminder_offsets, $3::integer),
                    updated_at = NOW()
                WHERE NOT ($3::integer = ANY(kaisan_guild_settings.reminder_offsets))
                RETURNING guild_id
                """,
                guild_id,
                self.default_timezone,
                minutes,
            )

        added = row is not None
        if added:
            logger.info(f"Added {minutes}-minute reminder for guild {guild_id}")
        return added

    async def remove_reminder_offset(self, guild_id: int, minutes: int) -> bool:
        """
        Remove a reminder offset.

        Returns:
            True if removed, False if the guild did not have it
        """
        with store_errors("remove the reminder"):
            result = await self.db.execute(
                """
                UPDATE kaisan_guild_settings
                SET reminder_offsets = array_remove(reminder_offsets, $2::integer),
                    updated_at = NOW()
                WHERE guild_id = $1 AND $2::integer = ANY(reminder_offsets)
                """,
                guild_id,
                minutes,
            )

        removed = result == "UPDATE 1"
        if removed:
            logger.info(f"Removed {minutes}-minute reminder for guild {guild_id}")
        return removed
