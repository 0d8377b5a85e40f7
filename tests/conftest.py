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

"""Shared fixtures for kaisan tests."""

import sys
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional
from unittest.mock import patch

import pytest
import pytz

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from kaisan.models import ResolvedSchedule, ScheduledTask, Target

NOW = datetime(2024, 1, 1, 12, 0, tzinfo=pytz.UTC)


def make_task(**overrides) -> ScheduledTask:
    """Build a ScheduledTask with sensible defaults."""
    fields = {
        "id": 1,
        "guild_id": 100,
        "voice_channel_id": 200,
        "text_channel_id": 300,
        "author_id": 1000,
        "target": Target.everyone(),
        "fire_at": NOW,
        "deadline": NOW,
        "is_random": False,
        "created_at": NOW - timedelta(hours=1),
    }
    fields.update(overrides)
    return ScheduledTask(**fields)


class FakeTaskManager:
    """In-memory stand-in for KaisanTaskManager with the same semantics."""

    def __init__(self, clock: datetime = NOW - timedelta(hours=1)):
        self.tasks: dict[int, ScheduledTask] = {}
        self.clock = clock
        self._next_id = 1

    def add(self, **overrides) -> ScheduledTask:
        overrides.setdefault("id", self._next_id)
        task = make_task(**overrides)
        self.tasks[task.id] = task
        self._next_id = max(self._next_id, task.id) + 1
        return task

    async def create_task(
        self,
        guild_id: int,
        voice_channel_id: int,
        text_channel_id: int,
        author_id: int,
        target: Target,
        schedule: ResolvedSchedule,
    ) -> int:
        task = self.add(
            guild_id=guild_id,
            voice_channel_id=voice_channel_id,
            text_channel_id=text_channel_id,
            author_id=author_id,
            target=target,
            fire_at=schedule.fire_at,
            deadline=schedule.deadline,
            is_random=schedule.is_random,
            created_at=self.clock,
            reminders=tuple(entry.minutes for entry in schedule.reminders),
        )
        return task.id

    async def get_task(self, task_id: int) -> Optional[ScheduledTask]:
        return self.tasks.get(task_id)

    async def list_tasks(self, guild_id: int) -> list[ScheduledTask]:
        return sorted(
            (t for t in self.tasks.values() if t.guild_id == guild_id),
            key=lambda t: (t.fire_at, t.created_at, t.id),
        )

    async def get_due_tasks(self, now: datetime, limit: int = 100) -> list[ScheduledTask]:
        due = [t for t in self.tasks.values() if t.fire_at <= now]
        return sorted(due, key=lambda t: (t.fire_at, t.created_at, t.id))[:limit]

    async def get_due_reminders(self, now: datetime, limit: int = 100):
        due = []
        for task in sorted(self.tasks.values(), key=lambda t: (t.fire_at, t.created_at, t.id)):
            if task.state == "pending":
                due.extend((task, entry) for entry in task.due_reminders(now))
        return due

    async def claim_task(self, task_id: int) -> bool:
        task = self.tasks.get(task_id)
        if task is None:
            return False
        task.state = "firing"
        return True

    async def release_task(self, task_id: int, error_message: str) -> Optional[int]:
        task = self.tasks.get(task_id)
        if task is None:
            return None
        task.state = "pending"
        task.attempts += 1
        return task.attempts

    async def complete_task(self, task_id: int) -> bool:
        return self.tasks.pop(task_id, None) is not None

    async def cancel_task(self, task_id: int, guild_id: int) -> bool:
        task = self.tasks.get(task_id)
        if task is None or task.guild_id != guild_id or task.state != "pending":
            return False
        del self.tasks[task_id]
        return True

    async def mark_reminder_sent(self, task_id: int, minutes: int) -> bool:
        task = self.tasks.get(task_id)
        if task is None or minutes in task.sent_reminders:
            return False
        task.sent_reminders = task.sent_reminders | {minutes}
        return True


@pytest.fixture
def fake_manager():
    return FakeTaskManager()


@pytest.fixture(autouse=True)
def no_analytics():
    """Keep analytics from opening a pool during tests."""
    with patch.dict("os.environ", {"ANALYTICS_ENABLED": "false"}), \
         patch("analytics._enabled", False):
        yield
