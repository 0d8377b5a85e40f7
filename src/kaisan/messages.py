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
Reply Formatting

Plain-text replies posted by the bot. Times use Discord timestamp markup
(<t:epoch:f>) so every reader sees them in their own locale.
"""

from datetime import datetime
from typing import Iterable, Optional

from .models import GuildSettings, ResolvedSchedule, ScheduledTask, Target, TargetKind

# Discord message length limit
DISCORD_MAX_LENGTH = 2000

HELP_TEXT = """\
**kaisan** schedules a voice channel disband. Mention me or start with `!kaisan`.

**Disband**
`kaisan at 23:30` / `kaisan 23時半` - at a wall-clock time
`kaisan after 1h30m` / `kaisan 30分後` - after a delay
`kaisan by 1:00 am` / `kaisan 1時まで` - at a random time until then
`kaisan within 45m` / `kaisan 45分以内` - at a random time within the delay
`kaisan now` - right away
Add `me`, `all` or mentions to choose who gets disconnected (default: all).
Add `remind 10,5` or `no-remind` to override reminders for one disband.

**Tasks**
`list` - scheduled disbands in this server
`cancel <id>` - cancel a scheduled disband

**Settings** (Manage Server)
`show-setting`
`timezone <IANA name>`
`require-permission <true|false>` - require Move Members to disband others
`add-reminder <minutes>` / `remove-reminder <minutes>`
`remind-random <true|false>` - send reminders for random disbands"""


def mention(user_id: int) -> str:
    return f"<@{user_id}>"


def format_mentions(user_ids: Iterable[int]) -> str:
    return " ".join(mention(user_id) for user_id in user_ids)


def format_minutes(minutes: int) -> str:
    return "1 minute" if minutes == 1 else f"{minutes} minutes"


def format_timestamp(when: datetime) -> str:
    """Absolute plus relative Discord timestamp, e.g. "<t:..:f> (<t:..:R>)"."""
    epoch = int(when.timestamp())
    return f"<t:{epoch}:f> (<t:{epoch}:R>)"


def format_target(target: Target, author_id: Optional[int] = None) -> str:
    if target.kind is TargetKind.ME:
        return mention(author_id) if author_id is not None else "you"
    if target.kind is TargetKind.ALL:
        return "everyone"
    return format_mentions(target.user_ids)


def format_scheduled(task_id: int, target: Target, schedule: ResolvedSchedule) -> str:
    if schedule.is_random:
        when = f"at a random time by {format_timestamp(schedule.deadline)}"
    else:
        when = f"at {format_timestamp(schedule.fire_at)}"

    lines = [f"Disband #{task_id} scheduled for {format_target(target)} {when}."]
    if schedule.reminders:
        offsets = ", ".join(str(entry.minutes) for entry in schedule.reminders)
        lines.append(f"Reminders: {offsets} minutes before.")
    return "\n".join(lines)


def format_disbanded(user_ids: Iterable[int]) -> str:
    return f"{format_mentions(user_ids)} disbanded!"


def format_reminder(user_ids: Iterable[int], minutes: int, fire_at: datetime) -> str:
    return f"{format_mentions(user_ids)} disband in {format_minutes(minutes)} at {format_timestamp(fire_at)}"


def format_settings(settings: GuildSettings) -> str:
    if settings.reminder_offsets:
        reminders = ", ".join(str(m) for m in sorted(settings.reminder_offsets, reverse=True))
        reminders = f"{reminders} minutes before"
    else:
        reminders = "none"
    return "\n".join(
        [
            f"timezone: `{settings.timezone}`",
            f"require-permission: `{str(settings.require_permission).lower()}`",
            f"reminders: {reminders}",
            f"remind-random: `{str(settings.remind_random).lower()}`",
        ]
    )


def format_task_list(tasks: list[ScheduledTask]) -> str:
    if not tasks:
        return "No disbands scheduled."

    lines = []
    for task in tasks:
        if task.is_random:
            when = f"random, by {format_timestamp(task.deadline)}"
        else:
            when = format_timestamp(task.fire_at)
        line = f"#{task.id} {when} in <#{task.voice_channel_id}>: {format_target(task.target, task.author_id)} (by {mention(task.author_id)})"
        if task.state == "firing":
            line += " [firing]"
        lines.append(line)
    return "\n".join(lines)


def split_message(content: str, limit: int = DISCORD_MAX_LENGTH) -> list[str]:
    """Split a reply on line breaks into chunks that fit Discord's length limit."""
    if len(content) <= limit:
        return [content]

    chunks = []
    current = ""
    for line in content.split("\n"):
        while len(line) > limit:
            if current:
                chunks.append(current)
                current = ""
            chunks.append(line[:limit])
            line = line[limit:]
        candidate = f"{current}\n{line}" if current else line
        if len(candidate) > limit:
            chunks.append(current)
            current = line
        else:
            current = candidate
    if current:
        chunks.append(current)
    return chunks
