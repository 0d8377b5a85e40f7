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
Action Dispatcher

Turns due tasks and reminders into Discord calls: list who is in the voice
channel, disconnect the targets, post the notice. Discord failures are
mapped to DispatchError so the scheduler can decide between retry and drop.
"""

import logging
from typing import TYPE_CHECKING, Awaitable, TypeVar

import discord

from . import messages
from .errors import DispatchError
from .models import ScheduledTask

if TYPE_CHECKING:
    from discord_bot import KaisanBot

logger = logging.getLogger("kaisanbot.kaisan.dispatcher")

T = TypeVar("T")


class KaisanDispatcher:
    """
    Executes disbands and reminders against the chat client.

    The client must provide list_voice_members, disconnect_member and
    send_message (see KaisanBot).
    """

    def __init__(self, client: "KaisanBot"):
        self.client = client

    async def _call(self, action: str, awaitable: Awaitable[T]) -> T:
        """Await a Discord call, translating its failures into DispatchError."""
        try:
            return await awaitable
        except discord.Forbidden as e:
            raise DispatchError(f"No permission to {action}: {e.text}", retryable=False) from e
        except discord.NotFound:
            raise
        except discord.HTTPException as e:
            raise DispatchError(f"Discord error while trying to {action}: {e}") from e

    async def _present_targets(self, task: ScheduledTask) -> list[int]:
        try:
            present = await self._call(
                "list voice channel members",
                self.client.list_voice_members(task.guild_id, task.voice_channel_id),
            )
        except discord.NotFound:
            logger.info(f"Voice channel {task.voice_channel_id} of task {task.id} no longer exists")
            return []
        return task.target.select(task.author_id, present)

    async def fire_disband(self, task: ScheduledTask) -> list[int]:
        """
        Disconnect the task's targets from its voice channel.

        Members who already left count as disconnected. Safe to repeat:
        a second run only sees whoever is still connected.

        Args:
            task: The due task

        Returns:
            IDs of members that were disconnected

        Raises:
            DispatchError: If Discord refused or failed a call
        """
        targets = await self._present_targets(task)

        disconnected = []
        for member_id in targets:
            try:
                await self._call(
                    f"disconnect member {member_id}",
                    self.client.disconnect_member(task.guild_id, member_id),
                )
            except discord.NotFound:
                logger.debug(f"Member {member_id} left before task {task.id} fired")
                continue
            disconnected.append(member_id)

        if not disconnected:
            logger.info(f"Task {task.id} fired with nobody to disconnect")
            return disconnected

        logger.info(f"Task {task.id} disconnected {len(disconnected)} member(s)")
        try:
            await self._call(
                "post the disband notice",
                self.client.send_message(task.text_channel_id, messages.format_disbanded(disconnected)),
            )
        except (DispatchError, discord.NotFound) as e:
            # Members are already out; the notice is not retried
            logger.warning(f"Failed to post disband notice for task {task.id}: {e}")
        return disconnected

    async def send_reminder(self, task: ScheduledTask, minutes: int) -> bool:
        """
        Remind the task's targets that the disband is `minutes` away.

        Returns:
            True if a reminder was posted, False if nobody was present

        Raises:
            DispatchError: If Discord refused or failed a call
        """
        targets = await self._present_targets(task)
        if not targets:
            logger.debug(f"Skipping {minutes}-minute reminder of task {task.id}: nobody present")
            return False

        content = messages.format_reminder(targets, minutes, task.fire_at)
        try:
            await self._call(
                "post the reminder",
                self.client.send_message(task.text_channel_id, content),
            )
        except discord.NotFound as e:
            raise DispatchError(f"Text channel {task.text_channel_id} not found", retryable=False) from e

        logger.info(f"Sent {minutes}-minute reminder of task {task.id}")
        return True
