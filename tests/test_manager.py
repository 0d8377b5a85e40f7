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

"""Tests for the durable task set."""

import sys
from datetime import timedelta
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from conftest import NOW
from kaisan.errors import StoreError
from kaisan.manager import KaisanTaskManager
from kaisan.models import ReminderEntry, ResolvedSchedule, Target, TargetKind


def task_row(**overrides) -> dict:
    row = {
        "id": 7,
        "guild_id": 100,
        "voice_channel_id": 200,
        "text_channel_id": 300,
        "author_id": 1000,
        "target_kind": "users",
        "target_users": [1, 2],
        "fire_at": NOW + timedelta(minutes=30),
        "deadline": NOW + timedelta(minutes=30),
        "is_random": False,
        "reminder_minutes": [10, 40],
        "sent_reminders": [],
        "state": "pending",
        "attempts": 0,
        "created_at": NOW - timedelta(minutes=5),
    }
    row.update(overrides)
    return row


@pytest.fixture
def mock_pool():
    pool = MagicMock()
    pool.fetch = AsyncMock(return_value=[])
    pool.fetchrow = AsyncMock(return_value=None)
    pool.fetchval = AsyncMock(return_value=None)
    pool.execute = AsyncMock(return_value="UPDATE 1")
    return pool


class TestCreateAndRead:
    """Test task persistence."""

    @pytest.mark.asyncio
    async def test_create_task(self, mock_pool):
        mock_pool.fetchval = AsyncMock(return_value=7)
        manager = KaisanTaskManager(mock_pool)
        schedule = ResolvedSchedule(
            fire_at=NOW + timedelta(minutes=30),
            deadline=NOW + timedelta(minutes=45),
            is_random=True,
            reminders=(ReminderEntry(10, NOW + timedelta(minutes=20)),),
        )

        task_id = await manager.create_task(100, 200, 300, 1000, Target.users([1, 2]), schedule)

        assert task_id == 7
        args = mock_pool.fetchval.call_args[0]
        assert "INSERT INTO kaisan_tasks" in args[0]
        assert args[1:] == (
            100, 200, 300, 1000, "users", [1, 2],
            schedule.fire_at, schedule.deadline, True, [10],
        )

    @pytest.mark.asyncio
    async def test_get_task(self, mock_pool):
        mock_pool.fetchrow = AsyncMock(return_value=task_row(sent_reminders=[40]))
        manager = KaisanTaskManager(mock_pool)

        task = await manager.get_task(7)

        assert task.id == 7
        assert task.target == Target(TargetKind.USERS, (1, 2))
        assert task.reminders == (10, 40)
        assert task.sent_reminders == frozenset({40})

    @pytest.mark.asyncio
    async def test_get_missing_task(self, mock_pool):
        manager = KaisanTaskManager(mock_pool)
        assert await manager.get_task(7) is None

    @pytest.mark.asyncio
    async def test_list_tasks_is_guild_scoped(self, mock_pool):
        mock_pool.fetch = AsyncMock(return_value=[task_row(), task_row(id=8)])
        manager = KaisanTaskManager(mock_pool)

        tasks = await manager.list_tasks(100)

        assert [t.id for t in tasks] == [7, 8]
        sql, guild_id = mock_pool.fetch.call_args[0]
        assert "WHERE guild_id = $1" in sql
        assert guild_id == 100

    @pytest.mark.asyncio
    async def test_store_failure(self, mock_pool):
        mock_pool.fetchval = AsyncMock(side_effect=ConnectionResetError("gone"))
        manager = KaisanTaskManager(mock_pool)
        schedule = ResolvedSchedule(fire_at=NOW, deadline=NOW, is_random=False)

        with pytest.raises(StoreError):
            await manager.create_task(100, 200, 300, 1000, Target.everyone(), schedule)


class TestSchedulerQueries:
    """Test the queries the scheduler relies on."""

    @pytest.mark.asyncio
    async def test_due_tasks_include_interrupted_fires(self, mock_pool):
        mock_pool.fetch = AsyncMock(return_value=[task_row(state="firing")])
        manager = KaisanTaskManager(mock_pool)

        tasks = await manager.get_due_tasks(NOW, limit=25)

        assert tasks[0].state == "firing"
        sql, now, limit = mock_pool.fetch.call_args[0]
        assert "state IN ('pending', 'firing')" in sql
        assert "ORDER BY fire_at ASC, created_at ASC, id ASC" in sql
        assert (now, limit) == (NOW, 25)

    @pytest.mark.asyncio
    async def test_due_reminders_expands_unsent_entries(self, mock_pool):
        # fire_at is NOW+30m, so the 40-minute reminder is due and the 10-minute one is not
        mock_pool.fetch = AsyncMock(return_value=[task_row()])
        manager = KaisanTaskManager(mock_pool)

        due = await manager.get_due_reminders(NOW)

        assert len(due) == 1
        task, entry = due[0]
        assert task.id == 7
        assert entry == ReminderEntry(40, NOW - timedelta(minutes=10))

    @pytest.mark.asyncio
    async def test_due_reminders_skip_sent(self, mock_pool):
        mock_pool.fetch = AsyncMock(return_value=[task_row(sent_reminders=[40])])
        manager = KaisanTaskManager(mock_pool)

        assert await manager.get_due_reminders(NOW) == []

    @pytest.mark.asyncio
    async def test_claim(self, mock_pool):
        manager = KaisanTaskManager(mock_pool)
        assert await manager.claim_task(7) is True
        assert "SET state = 'firing'" in mock_pool.execute.call_args[0][0]

    @pytest.mark.asyncio
    async def test_claim_after_cancel(self, mock_pool):
        mock_pool.execute = AsyncMock(return_value="UPDATE 0")
        manager = KaisanTaskManager(mock_pool)
        assert await manager.claim_task(7) is False

    @pytest.mark.asyncio
    async def test_release_counts_attempts(self, mock_pool):
        mock_pool.fetchval = AsyncMock(return_value=2)
        manager = KaisanTaskManager(mock_pool)

        assert await manager.release_task(7, "Discord error") == 2
        sql, task_id, error = mock_pool.fetchval.call_args[0]
        assert "attempts = attempts + 1" in sql
        assert (task_id, error) == (7, "Discord error")

    @pytest.mark.asyncio
    async def test_complete(self, mock_pool):
        mock_pool.execute = AsyncMock(return_value="DELETE 1")
        manager = KaisanTaskManager(mock_pool)
        assert await manager.complete_task(7) is True

    @pytest.mark.asyncio
    async def test_cancel_only_pending(self, mock_pool):
        mock_pool.execute = AsyncMock(return_value="DELETE 1")
        manager = KaisanTaskManager(mock_pool)

        assert await manager.cancel_task(7, 100) is True
        sql, task_id, guild_id = mock_pool.execute.call_args[0]
        assert "state = 'pending'" in sql
        assert (task_id, guild_id) == (7, 100)

    @pytest.mark.asyncio
    async def test_cancel_loses_to_fire(self, mock_pool):
        mock_pool.execute = AsyncMock(return_value="DELETE 0")
        manager = KaisanTaskManager(mock_pool)
        assert await manager.cancel_task(7, 100) is False

    @pytest.mark.asyncio
    async def test_mark_reminder_sent(self, mock_pool):
        manager = KaisanTaskManager(mock_pool)

        assert await manager.mark_reminder_sent(7, 10) is True
        sql, task_id, minutes = mock_pool.execute.call_args[0]
        assert "array_append(sent_reminders" in sql
        assert (task_id, minutes) == (7, 10)
