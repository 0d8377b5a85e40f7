"""
Kaisan Inspector CLI

Debug tool for inspecting scheduled disbands and guild settings.

Usage:
    # List outstanding disband tasks
    python scripts/kaisan_inspector.py tasks

    # Only one guild, with full details
    python scripts/kaisan_inspector.py tasks --guild-id 123456789 --verbose

    # Inspect a specific task
    python scripts/kaisan_inspector.py inspect --task-id 42

    # Show a guild's settings
    python scripts/kaisan_inspector.py settings --guild-id 123456789

    # Show task statistics
    python scripts/kaisan_inspector.py stats

    # Drop a pending task (same rule as the cancel command: not while firing)
    python scripts/kaisan_inspector.py cancel --task-id 42
"""

import argparse
import asyncio
import logging
import os
import sys
from datetime import datetime

import asyncpg

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(message)s",
)
logger = logging.getLogger(__name__)


def format_datetime(dt: datetime) -> str:
    """Format datetime for display."""
    if dt is None:
        return "Never"
    return dt.strftime("%Y-%m-%d %H:%M:%S %Z")


def format_target(row) -> str:
    if row["target_kind"] == "users":
        return "users " + ", ".join(str(user_id) for user_id in row["target_users"])
    return row["target_kind"]


async def list_tasks(
    conn: asyncpg.Connection,
    guild_id: int = None,
    verbose: bool = False,
    limit: int = 50,
):
    """List outstanding tasks, soonest first."""
    if guild_id:
        where_clause = "guild_id = $1"
        params = [guild_id, limit]
    else:
        where_clause = "1=1"
        params = [limit]

    rows = await conn.fetch(
        f"""
        SELECT id, guild_id, voice_channel_id, text_channel_id, author_id,
               target_kind, target_users, fire_at, deadline, is_random,
               reminder_minutes, sent_reminders, state, attempts, last_error,
               created_at
        FROM kaisan_tasks
        WHERE {where_clause}
        ORDER BY fire_at ASC, created_at ASC, id ASC
        LIMIT ${len(params)}
        """,
        *params,
    )

    if not rows:
        logger.info("No disband tasks found.")
        return

    logger.info(f"\n{'='*80}")
    logger.info(f"Found {len(rows)} task(s)")
    logger.info(f"{'='*80}\n")

    for row in rows:
        random_flag = " RANDOM" if row["is_random"] else ""
        logger.info(f"[{row['id']}] {row['state'].upper()}{random_flag} | fires {format_datetime(row['fire_at'])}")
        logger.info(f"    Guild: {row['guild_id']} | Voice: {row['voice_channel_id']}")
        logger.info(f"    Target: {format_target(row)}")

        if verbose:
            logger.info(f"    Author: {row['author_id']} | Text: {row['text_channel_id']}")
            logger.info(f"    Deadline: {format_datetime(row['deadline'])}")
            logger.info(f"    Reminders: {list(row['reminder_minutes'])} (sent {list(row['sent_reminders'])})")
            logger.info(f"    Attempts: {row['attempts']} | Last error: {row['last_error'] or '-'}")
            logger.info(f"    Created: {format_datetime(row['created_at'])}")

        logger.info("")


async def inspect_task(conn: asyncpg.Connection, task_id: int):
    """Show every column of one task."""
    row = await conn.fetchrow("SELECT * FROM kaisan_tasks WHERE id = $1", task_id)
    if not row:
        logger.info(f"Task {task_id} not found (fired, canceled or never existed).")
        return

    logger.info(f"\n{'='*80}")
    logger.info(f"Task {task_id}")
    logger.info(f"{'='*80}")
    for key, value in row.items():
        if isinstance(value, datetime):
            value = format_datetime(value)
        logger.info(f"  {key:18} {value}")


async def show_settings(conn: asyncpg.Connection, guild_id: int):
    """Show a guild's settings row."""
    row = await conn.fetchrow(
        """
        SELECT timezone, require_permission, reminder_offsets, remind_random, updated_at
        FROM kaisan_guild_settings
        WHERE guild_id = $1
        """,
        guild_id,
    )
    if not row:
        logger.info(f"Guild {guild_id} has no settings row (defaults apply).")
        return

    logger.info(f"Guild {guild_id}")
    logger.info(f"  timezone:           {row['timezone']}")
    logger.info(f"  require-permission: {row['require_permission']}")
    logger.info(f"  reminders:          {sorted(row['reminder_offsets'], reverse=True)}")
    logger.info(f"  remind-random:      {row['remind_random']}")
    logger.info(f"  updated:            {format_datetime(row['updated_at'])}")


async def show_stats(conn: asyncpg.Connection):
    """Show task counts."""
    totals = await conn.fetchrow(
        """
        SELECT COUNT(*) AS total,
               COUNT(*) FILTER (WHERE state = 'pending') AS pending,
               COUNT(*) FILTER (WHERE state = 'firing') AS firing,
               COUNT(*) FILTER (WHERE is_random) AS random,
               COUNT(*) FILTER (WHERE attempts > 0) AS retried,
               COUNT(*) FILTER (WHERE fire_at <= NOW()) AS overdue,
               COUNT(DISTINCT guild_id) AS guilds
        FROM kaisan_tasks
        """
    )
    configured = await conn.fetchval("SELECT COUNT(*) FROM kaisan_guild_settings")

    logger.info(f"\n{'='*40}")
    logger.info("Kaisan statistics")
    logger.info(f"{'='*40}")
    logger.info(f"  Tasks:            {totals['total']}")
    logger.info(f"    pending:        {totals['pending']}")
    logger.info(f"    firing:         {totals['firing']}")
    logger.info(f"    random:         {totals['random']}")
    logger.info(f"    retried:        {totals['retried']}")
    logger.info(f"    overdue:        {totals['overdue']}")
    logger.info(f"  Guilds w/ tasks:  {totals['guilds']}")
    logger.info(f"  Configured guilds: {configured}")


async def cancel_task(conn: asyncpg.Connection, task_id: int):
    """Delete a pending task."""
    result = await conn.execute(
        "DELETE FROM kaisan_tasks WHERE id = $1 AND state = 'pending'",
        task_id,
    )
    if result == "DELETE 1":
        logger.info(f"Canceled task {task_id}.")
    else:
        logger.info(f"Task {task_id} not found or already firing.")


async def main_async(args):
    """Async main function."""
    db_url = os.environ.get("DATABASE_URL")
    if not db_url:
        logger.error("DATABASE_URL environment variable required")
        sys.exit(1)

    conn = await asyncpg.connect(db_url)

    try:
        if args.command == "tasks":
            await list_tasks(conn, guild_id=args.guild_id, verbose=args.verbose, limit=args.limit)
        elif args.command == "inspect":
            await inspect_task(conn, args.task_id)
        elif args.command == "settings":
            await show_settings(conn, args.guild_id)
        elif args.command == "stats":
            await show_stats(conn)
        elif args.command == "cancel":
            await cancel_task(conn, args.task_id)
    finally:
        await conn.close()


def main():
    parser = argparse.ArgumentParser(
        description="Kaisan Inspector CLI - Query scheduled disbands and guild settings"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    tasks_parser = subparsers.add_parser("tasks", help="List disband tasks")
    tasks_parser.add_argument("--guild-id", type=int, help="Filter by guild ID")
    tasks_parser.add_argument(
        "--verbose", "-v", action="store_true", help="Show full details"
    )
    tasks_parser.add_argument(
        "--limit", type=int, default=50, help="Max results (default: 50)"
    )

    inspect_parser = subparsers.add_parser("inspect", help="Inspect a specific task")
    inspect_parser.add_argument("--task-id", type=int, required=True, help="Task ID")

    settings_parser = subparsers.add_parser("settings", help="Show a guild's settings")
    settings_parser.add_argument("--guild-id", type=int, required=True, help="Guild ID")

    subparsers.add_parser("stats", help="Show task statistics")

    cancel_parser = subparsers.add_parser("cancel", help="Cancel a pending task")
    cancel_parser.add_argument("--task-id", type=int, required=True, help="Task ID")

    args = parser.parse_args()
    asyncio.run(main_async(args))


if __name__ == "__main__":
    main()
