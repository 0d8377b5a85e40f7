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
Kaisan Task Manager

Handles database operations for scheduled disband tasks. The kaisan_tasks
table is the only schedule; nothing is held in memory between polls.

Task lifecycle:
    pending -> firing    claim_task, right before dispatch
    firing  -> pending   release_task, after a retryable failure
    firing  -> (deleted) complete_task, the commit point of a disband
    pending -> (deleted) cancel_task
"""

import logging
from datetime import datetime
from typing import Optional

import asyncpg

from .db import store_errors
from .models import ReminderEntry, ResolvedSchedule, ScheduledTask, Target

logger = logging.getLogger("kaisanbot.kaisan.manager")

TASK_COLUMNS = """
    id, guild_id, voice_channel_id, text_channel_id, author_id,
    target_kind, target_users, fire_at, deadline, is_random,
    reminder_minutes, sent_reminders, state, attempts, created_at
"""


class KaisanTaskManager:
    """
    Manages database operations for disband tasks.

    Every method is a single statement, so concurrent schedulers and
    command handlers never observe a half-applied change.
    """

    def __init__(self, db_pool: asyncpg.Pool):
        """
        Initialize the task manager.

        Args:
            db_pool: asyncpg connection pool
        """
        self.db = db_pool

    async def create_task(
        self,
        guild_id: int,
        voice_channel_id: int,
        text_channel_id: int,
        author_id: int,
        target: Target,
        schedule: ResolvedSchedule,
    ) -> int:
        """
        Persist a new disband task.

        Args:
            guild_id: Discord guild ID
            voice_channel_id: Voice channel to disband
            text_channel_id: Channel for reminders and the disband notice
            author_id: User who scheduled the task
            target: Who gets disconnected
            schedule: Resolved fire time, bound and reminders

        Returns:
            The ID of the created task
        """
        with store_errors("save the disband task"):
            task_id = await self.db.fetchval(
                """
                INSERT INTO kaisan_tasks (
                    guild_id, voice_channel_id, text_channel_id, author_id,
                    target_kind, target_users, fire_at, deadline, is_random,
                    reminder_minutes
                ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10)
                RETURNING id
                """,
                guild_id,
                voice_channel_id,
                text_channel_id,
                author_id,
                target.kind.value,
                list(target.user_ids),
                schedule.fire_at,
                schedule.deadline,
                schedule.is_random,
                [entry.minutes for entry in schedule.reminders],
            )

        logger.info(
            f"Created kaisan task {task_id} in guild {guild_id}: "
            f"fire_at={schedule.fire_at}, random={schedule.is_random}, "
            f"reminders={len(schedule.reminders)}"
        )
        return task_id

    async def get_task(self, task_id: int) -> Optional[ScheduledTask]:
        """
        Get a task by ID.

        Returns:
            The task, or None if it fired, was canceled or never existed
        """
        with store_errors("load the disband task"):
            row = await self.db.fetchrow(
                f"SELECT {TASK_COLUMNS} FROM kaisan_tasks WHERE id = $1",
                task_id,
            )

        return ScheduledTask.from_row(row) if row else None

    async def list_tasks(self, guild_id: int) -> list[ScheduledTask]:
        """List a guild's outstanding tasks, soonest first."""
        with store_errors("list disband tasks"):
            rows = await self.db.fetch(
                f"""
                SELECT {TASK_COLUMNS} FROM kaisan_tasks
                WHERE guild_id = $1
                ORDER BY fire_at ASC, created_at ASC, id ASC
                """,
                guild_id,
            )

        return [ScheduledTask.from_row(row) for row in rows]

    # =========================================================================
    # Scheduler-facing methods
    # =========================================================================

    async def get_due_tasks(self, now: datetime, limit: int = 100) -> list[ScheduledTask]:
        """
        Get tasks whose fire time has come.

        Rows still in 'firing' were claimed by a process that stopped before
        committing; they are returned again so the disband is redone.

        Args:
            now: Current UTC time
            limit: Maximum tasks per pass

        Returns:
            Due tasks ordered by (fire_at, created_at, id)
        """
        with store_errors("load due disband tasks"):
            rows = await self.db.fetch(
                f"""
                SELECT {TASK_COLUMNS} FROM kaisan_tasks
                WHERE state IN ('pending', 'firing') AND fire_at <= $1
                ORDER BY fire_at ASC, created_at ASC, id ASC
                LIMIT $2
                """,
                now,
                limit,
            )

        return [ScheduledTask.from_row(row) for row in rows]

    async def get_due_reminders(
        self, now: datetime, limit: int = 100
    ) -> list[tuple[ScheduledTask, ReminderEntry]]:
        """
        Get unsent reminders whose time has come.

        Args:
            now: Current UTC time
            limit: Maximum tasks to inspect per pass

        Returns:
            (task, reminder) pairs; a task may appear once per due reminder
        """
        with store_errors("load due reminders"):
            rows = await self.db.fetch(
                f"""
                SELECT {TASK_COLUMNS} FROM kaisan_tasks
                WHERE state = 'pending'
                  AND EXISTS (
                      SELECT 1 FROM unnest(reminder_minutes) AS m
                      WHERE NOT (m = ANY(sent_reminders))
                        AND fire_at - make_interval(mins => m) <= $1
                  )
                ORDER BY fire_at ASC, created_at ASC, id ASC
                LIMIT $2
                """,
                now,
                limit,
            )

        due = []
        for row in rows:
            task = ScheduledTask.from_row(row)
            due.extend((task, entry) for entry in task.due_reminders(now))
        return due

    async def claim_task(self, task_id: int) -> bool:
        """
        Mark a task as firing.

        Returns:
            True if claimed, False if the task was canceled meanwhile
        """
        with store_errors("claim the disband task"):
            result = await self.db.execute(
                """
                UPDATE kaisan_tasks
                SET state = 'firing'
                WHERE id = $1 AND state IN ('pending', 'firing')
                """,
                task_id,
            )

        return result == "UPDATE 1"

    async def release_task(self, task_id: int, error_message: str) -> Optional[int]:
        """
        Put a firing task back to pending after a retryable failure.

        Args:
            task_id: Task ID
            error_message: Failure reason, kept for inspection

        Returns:
            The new attempt count, or None if the task is gone
        """
        with store_errors("release the disband task"):
            attempts = await self.db.fetchval(
                """
                UPDATE kaisan_tasks
                SET state = 'pending', attempts = attempts + 1, last_error = $2
                WHERE id = $1
                RETURNING attempts
                """,
                task_id,
                error_message[:500],
            )

        if attempts is not None:
            logger.info(f"Released kaisan task {task_id} after attempt {attempts}")
        return attempts

    async def complete_task(self, task_id: int) -> bool:
        """Delete a fired task. Returns False if it was already gone."""
        with store_errors("complete the disband task"):
            result = await self.db.execute(
                "DELETE FROM kaisan_tasks WHERE id = $1",
                task_id,
            )

        return result == "DELETE 1"

    async def cancel_task(self, task_id: int, guild_id: int) -> bool:
        """
        Cancel (delete) a task that has not started firing.

        Args:
            task_id: Task ID
            guild_id: Guild the caller is in

        Returns:
            True if deleted, False if not found, in another guild, or firing
        """
        with store_errors("cancel the disband task"):
            result = await self.db.execute(
                """
                DELETE FROM kaisan_tasks
                WHERE id = $1 AND guild_id = $2 AND state = 'pending'
                """,
                task_id,
                guild_id,
            )

        deleted = result == "DELETE 1"
        if deleted:
            logger.info(f"Canceled kaisan task {task_id} in guild {guild_id}")
        return deleted

    async def mark_reminder_sent(self, task_id: int, minutes: int) -> bool:
        """
        Record that the reminder `minutes` before the disband went out.

        Returns:
            True if recorded, False if already recorded or the task is gone
        """
        with store_errors("record the reminder"):
            result = await self.db.execute(
                """
                UPDATE kaisan_tasks
                SET sent_reminders = array_append(sent_reminders, $2::integer)
                WHERE id = $1 AND NOT ($2::integer = ANY(sent_reminders))
                """,
                task_id,
                minutes,
            )

        return result == "UPDATE 1"
