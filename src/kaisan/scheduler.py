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
Kaisan Scheduler Module

Background task loop that fires due disbands and reminders.
Uses discord.ext.tasks for reliable scheduling.

All schedule state lives in kaisan_tasks, so a restart needs no
reconciliation: the first pass after startup picks up whatever came due
while the process was down, including tasks that were mid-fire.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Optional

import pytz
from discord.ext import tasks

from analytics import track

from .config import KaisanConfig
from .dispatcher import KaisanDispatcher
from .errors import CancelError, CancelErrorKind, DispatchError, StoreError
from .manager import KaisanTaskManager
from .models import ReminderEntry, ResolvedSchedule, ScheduledTask, Target

if TYPE_CHECKING:
    from discord_bot import KaisanBot

logger = logging.getLogger("kaisanbot.kaisan.scheduler")


@dataclass
class _DueItem:
    """A disband (reminder=None) or a reminder that is due in this pass."""

    due_at: datetime
    task: ScheduledTask
    reminder: Optional[ReminderEntry] = None

    @property
    def sort_key(self) -> tuple:
        return (self.due_at, self.task.created_at, self.task.id, self.reminder is None)


class KaisanScheduler:
    """
    Background scheduler for disband tasks.

    Polls the task table every few seconds and fires whatever is due, in
    due-time order. Each item gets its own timeout so one slow Discord call
    cannot hold up the rest of the pass.
    """

    def __init__(
        self,
        bot: "KaisanBot",
        manager: KaisanTaskManager,
        dispatcher: KaisanDispatcher,
        config: Optional[KaisanConfig] = None,
    ):
        """
        Initialize the kaisan scheduler.

        Args:
            bot: Discord bot instance (permission lookups, readiness)
            manager: Durable task set
            dispatcher: Executes disbands and reminders
            config: Loop settings (defaults if None)
        """
        self.bot = bot
        self.manager = manager
        self.dispatcher = dispatcher
        self.config = config or KaisanConfig()
        self._started = False
        self._poll.change_interval(seconds=self.config.poll_interval_seconds)

    def start(self) -> None:
        """Start the scheduler loop."""
        if not self._started:
            self._poll.start()
            self._started = True
            logger.info(
                f"Kaisan scheduler started (every {self.config.poll_interval_seconds}s)"
            )

    def stop(self) -> None:
        """Stop the scheduler loop after the pass in progress, if any, finishes."""
        if self._started:
            self._poll.stop()
            self._started = False
            logger.info("Kaisan scheduler stopped")

    # =========================================================================
    # Command-facing methods
    # =========================================================================

    async def schedule(
        self,
        guild_id: int,
        voice_channel_id: int,
        text_channel_id: int,
        author_id: int,
        target: Target,
        schedule: ResolvedSchedule,
    ) -> int:
        """
        Persist a resolved disband.

        Returns:
            The new task ID
        """
        task_id = await self.manager.create_task(
            guild_id, voice_channel_id, text_channel_id, author_id, target, schedule
        )

        track(
            "kaisan_scheduled",
            "kaisan",
            user_id=author_id,
            channel_id=text_channel_id,
            guild_id=guild_id,
            properties={
                "task_id": task_id,
                "target": target.kind.value,
                "is_random": schedule.is_random,
                "reminder_count": len(schedule.reminders),
            },
        )
        return task_id

    async def cancel(self, task_id: int, guild_id: int, user_id: int) -> None:
        """
        Cancel a pending task.

        The author may always cancel; anyone else needs Move Members or
        Manage Server.

        Raises:
            CancelError: NOT_FOUND if the task is gone, in another guild or
                already firing; FORBIDDEN if the user may not cancel it
        """
        task = await self.manager.get_task(task_id)
        if task is None or task.guild_id != guild_id or task.state != "pending":
            raise CancelError(CancelErrorKind.NOT_FOUND, task_id)

        if user_id != task.author_id:
            permissions = await self.bot.get_permissions(guild_id, user_id)
            if not (permissions.move_members or permissions.manage_guild):
                raise CancelError(CancelErrorKind.FORBIDDEN, task_id)

        # Fails if the task was claimed for firing since get_task
        if not await self.manager.cancel_task(task_id, guild_id):
            raise CancelError(CancelErrorKind.NOT_FOUND, task_id)

        track(
            "kaisan_canceled",
            "kaisan",
            user_id=user_id,
            guild_id=guild_id,
            properties={"task_id": task_id, "by_author": user_id == task.author_id},
        )

    # =========================================================================
    # Poll loop
    # =========================================================================

    @tasks.loop(seconds=10)
    async def _poll(self) -> None:
        """Check for due tasks and reminders and fire them."""
        try:
            await self.process_due(datetime.now(pytz.UTC))
        except StoreError as e:
            logger.warning(f"Skipping kaisan pass, store unavailable: {e}")
        except Exception as e:
            logger.error(f"Error in kaisan scheduler loop: {e}", exc_info=True)
            track(
                "scheduler_error",
                "error",
                properties={
                    "error_type": type(e).__name__,
                    "error_message": str(e)[:200],
                },
            )

    @_poll.before_loop
    async def _before_poll(self) -> None:
        """Wait for the bot to be ready before starting the loop."""
        await self.bot.wait_until_ready()
        logger.info("Kaisan scheduler ready, starting loop")

    async def process_due(self, now: datetime) -> int:
        """
        Run one scheduling pass.

        Reminders of a task whose own fire time has passed are skipped,
        even when the task did not fit in this pass's batch.

        Args:
            now: Current UTC time

        Returns:
            Number of disbands and reminders handled

        Raises:
            StoreError: If the store fails; the pass stops and the next one
                picks up where it left off
        """
        limit = self.config.due_batch_limit
        due_tasks = await self.manager.get_due_tasks(now, limit)
        due_reminders = await self.manager.get_due_reminders(now, limit)

        items = [_DueItem(task.fire_at, task) for task in due_tasks]
        for task, entry in due_reminders:
            if task.fire_at <= now:
                logger.debug(f"Skipping {entry.minutes}-minute reminder of task {task.id}: task is due")
                continue
            items.append(_DueItem(entry.remind_at, task, entry))

        if not items:
            return 0

        items.sort(key=lambda item: item.sort_key)
        logger.info(f"Processing {len(items)} due kaisan item(s)")

        handled = 0
        for item in items:
            if item.reminder is None:
                done = await self._fire_task(item.task)
            else:
                done = await self._send_reminder(item.task, item.reminder)
            if done:
                handled += 1
        return handled

    async def _fire_task(self, task: ScheduledTask) -> bool:
        """
        Claim, dispatch and commit one disband.

        Returns:
            True if the task was fired and deleted
        """
        if not await self.manager.claim_task(task.id):
            logger.info(f"Task {task.id} was canceled before it fired")
            return False

        timeout = self.config.dispatch_timeout_seconds
        try:
            disconnected = await asyncio.wait_for(self.dispatcher.fire_disband(task), timeout)
        except asyncio.TimeoutError:
            await self._handle_failure(task, DispatchError(f"Disband timed out after {timeout}s"))
            return False
        except DispatchError as e:
            await self._handle_failure(task, e)
            return False
        except StoreError:
            raise
        except Exception as e:
            logger.error(f"Unexpected error firing task {task.id}: {e}", exc_info=True)
            await self._handle_failure(task, DispatchError(str(e)))
            return False

        await self.manager.complete_task(task.id)
        logger.info(f"Fired kaisan task {task.id} ({len(disconnected)} disconnected)")

        track(
            "kaisan_fired",
            "kaisan",
            user_id=task.author_id,
            channel_id=task.voice_channel_id,
            guild_id=task.guild_id,
            properties={
                "task_id": task.id,
                "target": task.target.kind.value,
                "is_random": task.is_random,
                "disconnected_count": len(disconnected),
                "attempt": task.attempts + 1,
            },
        )
        return True

    async def _handle_failure(self, task: ScheduledTask, error: DispatchError) -> None:
        # Any dispatch failure keeps the task due; only the attempt cap ends it
        attempt = task.attempts + 1
        if attempt < self.config.max_fire_attempts:
            await self.manager.release_task(task.id, str(error))
            logger.warning(f"Task {task.id} attempt {attempt} failed, will retry: {error}")
        else:
            await self.manager.complete_task(task.id)
            logger.error(f"Giving up on task {task.id} after {attempt} attempt(s): {error}")

        track(
            "kaisan_dispatch_error",
            "error",
            user_id=task.author_id,
            guild_id=task.guild_id,
            properties={
                "task_id": task.id,
                "attempt": attempt,
                "retryable": error.retryable,
                "error_message": str(error)[:200],
            },
        )

    async def _send_reminder(self, task: ScheduledTask, entry: ReminderEntry) -> bool:
        """
        Deliver one reminder and record it.

        A failure leaves the reminder unsent so the next pass tries again.
        Once the task's fire time passes the reminder is no longer picked up.

        Returns:
            True if the reminder was handled (posted or nobody present)
        """
        timeout = self.config.dispatch_timeout_seconds
        try:
            await asyncio.wait_for(self.dispatcher.send_reminder(task, entry.minutes), timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Reminder of task {task.id} timed out after {timeout}s")
            return False
        except DispatchError as e:
            logger.warning(f"Failed to send {entry.minutes}-minute reminder of task {task.id}: {e}")
            track(
                "kaisan_dispatch_error",
                "error",
                user_id=task.author_id,
                guild_id=task.guild_id,
                properties={
                    "task_id": task.id,
                    "reminder_minutes": entry.minutes,
                    "retryable": e.retryable,
                    "error_message": str(e)[:200],
                },
            )
            return False
        except StoreError:
            raise
        except Exception as e:
            logger.error(f"Unexpected error sending reminder of task {task.id}: {e}", exc_info=True)
            return False

        await self.manager.mark_reminder_sent(task.id, entry.minutes)
        track(
            "kaisan_reminder_sent",
            "kaisan",
            guild_id=task.guild_id,
            channel_id=task.text_channel_id,
            properties={"task_id": task.id, "minutes": entry.minutes},
        )
        return True
