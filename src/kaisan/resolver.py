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
Time Resolver Module

Turns a parsed KaisanCommand into concrete UTC instants using the guild's
timezone. Randomized ranges ("by", "within") are drawn once here and never
re-rolled afterwards.
"""

import logging
import random
from datetime import date, datetime, time, timedelta
from typing import Optional

import pytz

from .errors import ResolutionError, ResolutionErrorKind
from .models import (
    ClockTime,
    Delay,
    GuildSettings,
    Instant,
    KaisanCommand,
    Now,
    ReminderEntry,
    ResolvedSchedule,
    TimePoint,
)

logger = logging.getLogger("kaisanbot.kaisan.resolver")


def _localize(tz: pytz.BaseTzInfo, day: date, hour: int, minute: int) -> datetime:
    return tz.normalize(tz.localize(datetime.combine(day, time(hour, minute))))


def resolve_clock_time(clock: ClockTime, now: datetime, tz: pytz.BaseTzInfo) -> datetime:
    """
    Resolve a wall-clock time to the next matching UTC instant.

    A time that has already passed today rolls over to tomorrow; a bare
    minute ("45分") that has passed this hour rolls over to the next hour.
    "tomorrow" always means the next calendar day and never rolls further.

    Args:
        clock: Parsed wall-clock time
        now: Current time (UTC, aware)
        tz: Guild timezone

    Returns:
        Aware UTC datetime
    """
    local_now = now.astimezone(tz)
    today = local_now.date()

    if clock.hour is None:
        candidate = local_now.replace(minute=clock.minute, second=0, microsecond=0)
        result = candidate.astimezone(pytz.UTC)
        if result <= now:
            result += timedelta(hours=1)
        return result

    minute = clock.minute or 0
    if clock.tomorrow:
        return _localize(tz, today + timedelta(days=1), clock.hour, minute).astimezone(pytz.UTC)

    result = _localize(tz, today, clock.hour, minute).astimezone(pytz.UTC)
    if result <= now:
        result = _localize(tz, today + timedelta(days=1), clock.hour, minute).astimezone(pytz.UTC)
    return result


def resolve_point(point: TimePoint, now: datetime, tz: pytz.BaseTzInfo) -> datetime:
    """Resolve any time point to an aware UTC datetime."""
    if isinstance(point, Now):
        return now
    if isinstance(point, Delay):
        return now + point.as_timedelta()
    if isinstance(point, Instant):
        return point.value.astimezone(pytz.UTC)
    return resolve_clock_time(point, now, tz)


def draw_random_instant(now: datetime, bound: datetime, rng: random.Random) -> datetime:
    """Draw a whole-second instant uniformly from [now, bound]."""
    span = int((bound - now).total_seconds())
    return now + timedelta(seconds=rng.randint(0, max(span, 0)))


def resolve_reminders(
    offsets: frozenset[int], fire_at: datetime, now: datetime
) -> tuple[ReminderEntry, ...]:
    """Compute reminder instants, dropping those that would already be in the past."""
    entries = []
    for minutes in sorted(offsets, reverse=True):
        remind_at = fire_at - timedelta(minutes=minutes)
        if remind_at <= now:
            logger.debug(f"Dropping {minutes}-minute reminder: {remind_at} is not after {now}")
            continue
        entries.append(ReminderEntry(minutes, remind_at))
    return tuple(entries)


def resolve(
    command: KaisanCommand,
    settings: GuildSettings,
    now: datetime,
    rng: Optional[random.Random] = None,
) -> ResolvedSchedule:
    """
    Resolve a disband command into a concrete schedule.

    Args:
        command: Parsed disband command
        settings: Settings of the guild the command was issued in
        now: Current time (aware; converted to UTC)
        rng: Random source for "by"/"within" (a fresh Random() if None)

    Returns:
        ResolvedSchedule with fire_at, deadline and reminders in UTC

    Raises:
        ResolutionError: If the requested time is not after now
    """
    now = now.astimezone(pytz.UTC)
    tz = pytz.timezone(settings.timezone)
    time_range = command.time_range

    deadline = resolve_point(time_range.point, now, tz)
    if deadline <= now and not isinstance(time_range.point, Now):
        raise ResolutionError(ResolutionErrorKind.PAST_TIME, deadline.astimezone(tz), now.astimezone(tz))

    if time_range.randomized:
        fire_at = draw_random_instant(now, deadline, rng or random.Random())
    else:
        fire_at = deadline

    offsets = (
        command.reminder_override
        if command.reminder_override is not None
        else settings.reminder_offsets
    )
    if time_range.randomized and not settings.remind_random:
        # Reminders for random disbands are opt-in (remind-random)
        reminders: tuple[ReminderEntry, ...] = ()
    else:
        reminders = resolve_reminders(offsets, fire_at, now)

    logger.debug(
        f"Resolved {time_range.form} for tz={settings.timezone}: "
        f"fire_at={fire_at}, deadline={deadline}, reminders={[r.minutes for r in reminders]}"
    )
    return ResolvedSchedule(
        fire_at=fire_at,
        deadline=deadline,
        is_random=time_range.randomized,
        reminders=reminders,
    )
