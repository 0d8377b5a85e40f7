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
Lightweight analytics tracking for kaisanbot.

Events land in the analytics_events table (created by kaisan.db) through a
small pool of their own, so tracking never competes with the scheduler for
connections. Set ANALYTICS_ENABLED=false to turn it off.

Usage:
    from analytics import track

    # Fire-and-forget from the scheduler or a command handler
    track("kaisan_fired", "kaisan", guild_id=123, properties={"task_id": 42})
"""

import asyncio
import json
import logging
import os
from typing import Any, Optional

import asyncpg

logger = logging.getLogger("kaisanbot.analytics")

# Module-level connection pool (initialized lazily)
_pool: Optional[asyncpg.Pool] = None
_enabled: bool = os.getenv("ANALYTICS_ENABLED", "true").lower() == "true"
# Background inserts still running; held so they are not garbage collected
_pending: set[asyncio.Task] = set()


def is_enabled() -> bool:
    return _enabled and bool(os.getenv("DATABASE_URL"))


async def _get_pool() -> Optional[asyncpg.Pool]:
    """Get or create the analytics pool. None if disabled or unreachable."""
    global _pool
    if _pool is None and is_enabled():
        try:
            _pool = await asyncpg.create_pool(os.getenv("DATABASE_URL"), min_size=1, max_size=2)
        except (asyncpg.PostgresError, OSError) as e:
            logger.warning(f"Analytics pool creation failed: {e}")
            return None
    return _pool


async def track_async(
    event_name: str,
    event_category: str,
    user_id: Optional[int] = None,
    channel_id: Optional[int] = None,
    guild_id: Optional[int] = None,
    properties: Optional[dict[str, Any]] = None,
) -> bool:
    """
    Record one event.

    Args:
        event_name: Specific event identifier (e.g., "kaisan_scheduled")
        event_category: One of: kaisan, command, error
        user_id: Discord user ID (optional)
        channel_id: Discord channel ID (optional)
        guild_id: Discord guild ID (optional)
        properties: Additional event data, stored as JSONB

    Returns:
        True if the event was stored, False otherwise
    """
    pool = await _get_pool()
    if pool is None:
        return False

    try:
        await pool.execute(
            """
            INSERT INTO analytics_events
                (event_name, event_category, user_id, channel_id, guild_id, properties)
            VALUES ($1, $2, $3, $4, $5, $6::jsonb)
            """,
            event_name,
            event_category,
            user_id,
            channel_id,
            guild_id,
            json.dumps(properties or {}, default=str),
        )
    except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as e:
        logger.debug(f"Analytics event {event_name} dropped: {e}")
        return False
    return True


def track(
    event_name: str,
    event_category: str,
    user_id: Optional[int] = None,
    channel_id: Optional[int] = None,
    guild_id: Optional[int] = None,
    properties: Optional[dict[str, Any]] = None,
) -> None:
    """
    Record an event in the background (fire-and-forget).

    Never raises and never blocks the caller. Outside a running event loop
    the event is dropped.
    """
    if not is_enabled():
        return

    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        return

    task = loop.create_task(
        track_async(event_name, event_category, user_id, channel_id, guild_id, properties)
    )
    _pending.add(task)
    task.add_done_callback(_pending.discard)


async def shutdown() -> None:
    """Wait for in-flight events, then close the pool. Call on bot shutdown."""
    global _pool
    if _pending:
        await asyncio.gather(*_pending, return_exceptions=True)
    if _pool is not None:
        await _pool.close()
        _pool = None
