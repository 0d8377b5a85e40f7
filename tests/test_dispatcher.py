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

"""Tests for disband and reminder dispatch."""

import sys
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import discord
import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from conftest import make_task
from kaisan.dispatcher import KaisanDispatcher
from kaisan.errors import DispatchError
from kaisan.models import Target

# Discord timestamp markup for conftest.NOW, the default fire time
AT_NOW = "<t:1704110400:f> (<t:1704110400:R>)"


def http_error(cls, status: int, reason: str):
    return cls(MagicMock(status=status, reason=reason), "error")


@pytest.fixture
def client():
    client = MagicMock()
    client.list_voice_members = AsyncMock(return_value={1000, 1001, 1002})
    client.disconnect_member = AsyncMock(return_value=None)
    client.send_message = AsyncMock(return_value=MagicMock())
    return client


@pytest.fixture
def dispatcher(client):
    return KaisanDispatcher(client)


class TestFireDisband:
    """Test disconnecting targets."""

    @pytest.mark.asyncio
    async def test_everyone(self, dispatcher, client):
        task = make_task(target=Target.everyone())

        disconnected = await dispatcher.fire_disband(task)

        assert disconnected == [1000, 1001, 1002]
        assert client.disconnect_member.await_count == 3
        client.list_voice_members.assert_awaited_once_with(100, 200)
        client.send_message.assert_awaited_once_with(
            300, "<@1000> <@1001> <@1002> disbanded!"
        )

    @pytest.mark.asyncio
    async def test_me(self, dispatcher, client):
        task = make_task(target=Target.me(), author_id=1001)

        assert await dispatcher.fire_disband(task) == [1001]
        client.disconnect_member.assert_awaited_once_with(100, 1001)

    @pytest.mark.asyncio
    async def test_listed_users_only_if_present(self, dispatcher, client):
        task = make_task(target=Target.users([1002, 5555]))

        assert await dispatcher.fire_disband(task) == [1002]
        client.disconnect_member.assert_awaited_once_with(100, 1002)

    @pytest.mark.asyncio
    async def test_nobody_present(self, dispatcher, client):
        client.list_voice_members = AsyncMock(return_value=set())

        assert await dispatcher.fire_disband(make_task()) == []
        client.disconnect_member.assert_not_called()
        client.send_message.assert_not_called()

    @pytest.mark.asyncio
    async def test_voice_channel_deleted(self, dispatcher, client):
        client.list_voice_members = AsyncMock(
            side_effect=http_error(discord.NotFound, 404, "Not Found")
        )

        assert await dispatcher.fire_disband(make_task()) == []
        client.send_message.assert_not_called()

    @pytest.mark.asyncio
    async def test_member_already_left(self, dispatcher, client):
        async def disconnect(guild_id, member_id):
            if member_id == 1001:
                raise http_error(discord.NotFound, 404, "Not Found")

        client.disconnect_member = AsyncMock(side_effect=disconnect)

        assert await dispatcher.fire_disband(make_task()) == [1000, 1002]

    @pytest.mark.asyncio
    async def test_forbidden_is_permanent(self, dispatcher, client):
        client.disconnect_member = AsyncMock(
            side_effect=http_error(discord.Forbidden, 403, "Forbidden")
        )

        with pytest.raises(DispatchError) as exc_info:
            await dispatcher.fire_disband(make_task())
        assert exc_info.value.retryable is False

    @pytest.mark.asyncio
    async def test_server_error_is_retryable(self, dispatcher, client):
        client.list_voice_members = AsyncMock(
            side_effect=http_error(discord.HTTPException, 503, "Service Unavailable")
        )

        with pytest.raises(DispatchError) as exc_info:
            await dispatcher.fire_disband(make_task())
        assert exc_info.value.retryable is True

    @pytest.mark.asyncio
    async def test_notice_failure_is_ignored(self, dispatcher, client):
        client.send_message = AsyncMock(
            side_effect=http_error(discord.Forbidden, 403, "Forbidden")
        )

        assert await dispatcher.fire_disband(make_task()) == [1000, 1001, 1002]


class TestSendReminder:
    """Test reminder posts."""

    @pytest.mark.asyncio
    async def test_mentions_present_targets(self, dispatcher, client):
        task = make_task(target=Target.users([1000, 7777]))

        assert await dispatcher.send_reminder(task, 5) is True
        client.send_message.assert_awaited_once_with(300, f"<@1000> disband in 5 minutes at {AT_NOW}")

    @pytest.mark.asyncio
    async def test_singular_minute(self, dispatcher, client):
        await dispatcher.send_reminder(make_task(target=Target.me()), 1)

        client.send_message.assert_awaited_once_with(300, f"<@1000> disband in 1 minute at {AT_NOW}")

    @pytest.mark.asyncio
    async def test_nobody_present(self, dispatcher, client):
        client.list_voice_members = AsyncMock(return_value={4242})

        assert await dispatcher.send_reminder(make_task(target=Target.me()), 5) is False
        client.send_message.assert_not_called()

    @pytest.mark.asyncio
    async def test_text_channel_gone(self, dispatcher, client):
        client.send_message = AsyncMock(
            side_effect=http_error(discord.NotFound, 404, "Not Found")
        )

        with pytest.raises(DispatchError) as exc_info:
            await dispatcher.send_reminder(make_task(), 5)
        assert exc_info.value.retryable is False

    @pytest.mark.asyncio
    async def test_rate_limited_is_retryable(self, dispatcher, client):
        client.send_message = AsyncMock(
            side_effect=http_error(discord.HTTPException, 429, "Too Many Requests")
        )

        with pytest.raises(DispatchError) as exc_info:
            await dispatcher.send_reminder(make_task(), 5)
        assert exc_info.value.retryable is True
