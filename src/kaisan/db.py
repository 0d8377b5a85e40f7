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
Database Helpers

Schema for the tables owned by the kaisan bot, and error translation for
store calls. The schema is applied idempotently at startup; a failure
here is the only error that stops the process.
"""

import logging
from contextlib import contextmanager
from typing import Iterator

import asyncpg

from .errors import StoreError

logger = logging.getLogger("kaisanbot.kaisan.db")

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS kaisan_guild_settings (
    guild_id BIGINT PRIMARY KEY,
    timezone TEXT NOT NULL,
    require_permission BOOLEAN NOT NULL DEFAULT FALSE,
    reminder_offsets INTEGER[] NOT NULL DEFAULT '{}',
    remind_random BOOLEAN NOT NULL DEFAULT FALSE,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS kaisan_tasks (
    id BIGSERIAL PRIMARY KEY,
    guild_id BIGINT NOT NULL,
    voice_channel_id BIGINT NOT NULL,
    text_channel_id BIGINT NOT NULL,
    author_id BIGINT NOT NULL,
    target_kind TEXT NOT NULL CHECK (target_kind IN ('me', 'all', 'users')),
    target_users BIGINT[] NOT NULL DEFAULT '{}',
    fire_at TIMESTAMPTZ NOT NULL,
    deadline TIMESTAMPTZ NOT NULL,
    is_random BOOLEAN NOT NULL DEFAULT FALSE,
    reminder_minutes INTEGER[] NOT NULL DEFAULT '{}',
    sent_reminders INTEGER[] NOT NULL DEFAULT '{}',
    state TEXT NOT NULL DEFAULT 'pending' CHECK (state IN ('pending', 'firing')),
    attempts INTEGER NOT NULL DEFAULT 0,
    last_error TEXT,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_kaisan_tasks_fire_at ON kaisan_tasks (fire_at);
CREATE INDEX IF NOT EXISTS idx_kaisan_tasks_guild_id ON kaisan_tasks (guild_id);

CREATE TABLE IF NOT EXISTS analytics_events (
    id BIGSERIAL PRIMARY KEY,
    event_name TEXT NOT NULL,
    event_category TEXT NOT NULL,
    user_id BIGINT,
    channel_id BIGINT,
    guild_id BIGINT,
    properties JSONB NOT NULL DEFAULT '{}',
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
"""


async def ensure_schema(pool: asyncpg.Pool) -> None:
    """
    Create the kaisan tables if they do not exist.

    Raises:
        StoreError: If the schema cannot be applied
    """
    with store_errors("apply the kaisan schema"):
        async with pool.acquire() as conn:
            await conn.execute(SCHEMA_SQL)
    logger.info("Kaisan schema is up to date")


@contextmanager
def store_errors(action: str) -> Iterator[None]:
    """Translate driver and connection errors into StoreError."""
    try:
        yield
    except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as e:
        logger.error(f"Store error while trying to {action}: {e}")
        raise StoreError(f"Failed to {action}") from e
