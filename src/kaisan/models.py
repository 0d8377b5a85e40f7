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
Kaisan Data Model

Typed values flowing between the parser, resolver, stores and scheduler.
Parser outputs are frozen dataclasses so that parsing the same text twice
yields equal values.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Iterable, Optional, Union


class TargetKind(str, Enum):
    ME = "me"
    ALL = "all"
    USERS = "users"


@dataclass(frozen=True)
class Target:
    """Who gets disconnected: the author, everyone in the channel, or listed users."""

    kind: TargetKind = TargetKind.ALL
    user_ids: tuple[int, ...] = ()

    @classmethod
    def me(cls) -> "Target":
        return cls(TargetKind.ME)

    @classmethod
    def everyone(cls) -> "Target":
        return cls(TargetKind.ALL)

    @classmethod
    def users(cls, user_ids: Iterable[int]) -> "Target":
        # Keep first-seen order, drop duplicate mentions
        return cls(TargetKind.USERS, tuple(dict.fromkeys(user_ids)))

    def may_include_others(self, author_id: int) -> bool:
        """True if disbanding this target could disconnect someone besides the author."""
        if self.kind is TargetKind.ME:
            return False
        if self.kind is TargetKind.ALL:
            return True
        return self.user_ids != (author_id,)

    def select(self, author_id: int, present: Iterable[int]) -> list[int]:
        """
        Pick the members to act on among those currently in the voice channel.

        Args:
            author_id: User who scheduled the task
            present: Member IDs currently connected to the channel

        Returns:
            Member IDs in a stable order
        """
        present = set(present)
        if self.kind is TargetKind.ME:
            return [author_id] if author_id in present else []
        if self.kind is TargetKind.ALL:
            return sorted(present)
        return [user_id for user_id in self.user_ids if user_id in present]


# =========================================================================
# Time specifications
# =========================================================================


@dataclass(frozen=True)
class ClockTime:
    """
    A wall-clock time in the guild's timezone, without a date.

    hour=None means "minute M of the current hour" (e.g. "45分").
    minute=None means "on the hour".
    """

    hour: Optional[int] = None
    minute: Optional[int] = None
    tomorrow: bool = False


@dataclass(frozen=True)
class Delay:
    """A relative duration such as "1h30m"."""

    hours: int = 0
    minutes: int = 0
    seconds: int = 0

    def as_timedelta(self) -> timedelta:
        return timedelta(hours=self.hours, minutes=self.minutes, seconds=self.seconds)


@dataclass(frozen=True)
class Instant:
    """An absolute, offset-aware timestamp (RFC 3339 input)."""

    value: datetime


@dataclass(frozen=True)
class Now:
    """Fire immediately."""

    pass


TimePoint = Union[ClockTime, Delay, Instant, Now]


@dataclass(frozen=True)
class TimeRange:
    """
    When to disband.

    randomized=False: exactly at the point ("at" / "after").
    randomized=True: at a random instant between now and the point ("by" / "within").
    """

    point: TimePoint
    randomized: bool = False

    @property
    def form(self) -> str:
        if isinstance(self.point, Now):
            return "now"
        if isinstance(self.point, Delay):
            return "within" if self.randomized else "after"
        return "by" if self.randomized else "at"


# =========================================================================
# Parsed commands
# =========================================================================


@dataclass(frozen=True)
class HelpCommand:
    pass


@dataclass(frozen=True)
class ShowSettingCommand:
    pass


@dataclass(frozen=True)
class ListTasksCommand:
    pass


@dataclass(frozen=True)
class SetTimezoneCommand:
    timezone: str


@dataclass(frozen=True)
class SetRequirePermissionCommand:
    value: bool


@dataclass(frozen=True)
class AddReminderCommand:
    minutes: int


@dataclass(frozen=True)
class RemoveReminderCommand:
    minutes: int


@dataclass(frozen=True)
class SetRemindRandomCommand:
    value: bool


@dataclass(frozen=True)
class CancelCommand:
    task_id: int


@dataclass(frozen=True)
class KaisanCommand:
    """
    A disband request.

    reminder_override replaces the guild's reminder offsets for this task
    only; an empty frozenset disables reminders.
    """

    time_range: TimeRange
    target: Target = Target()
    reminder_override: Optional[frozenset[int]] = None


ParsedCommand = Union[
    HelpCommand,
    ShowSettingCommand,
    ListTasksCommand,
    SetTimezoneCommand,
    SetRequirePermissionCommand,
    AddReminderCommand,
    RemoveReminderCommand,
    SetRemindRandomCommand,
    CancelCommand,
    KaisanCommand,
]

CONFIG_COMMANDS = (
    SetTimezoneCommand,
    SetRequirePermissionCommand,
    AddReminderCommand,
    RemoveReminderCommand,
    SetRemindRandomCommand,
)


# =========================================================================
# Persisted state
# =========================================================================


@dataclass(frozen=True)
class GuildSettings:
    """Per-guild configuration. Absent guilds read as defaults."""

    timezone: str
    require_permission: bool = False
    reminder_offsets: frozenset[int] = frozenset()
    remind_random: bool = False

    @classmethod
    def from_row(cls, row) -> "GuildSettings":
        return cls(
            timezone=row["timezone"],
            require_permission=row["require_permission"],
            reminder_offsets=frozenset(row["reminder_offsets"] or ()),
            remind_random=row["remind_random"],
        )


@dataclass(frozen=True)
class ReminderEntry:
    """A reminder sent `minutes` before the disband, due at `remind_at`."""

    minutes: int
    remind_at: datetime


@dataclass(frozen=True)
class ResolvedSchedule:
    """Concrete UTC instants computed from a KaisanCommand."""

    fire_at: datetime
    deadline: datetime
    is_random: bool
    reminders: tuple[ReminderEntry, ...] = ()


@dataclass
class ScheduledTask:
    """A persisted disband task, as read back from the store."""

    id: int
    guild_id: int
    voice_channel_id: int
    text_channel_id: int
    author_id: int
    target: Target
    fire_at: datetime
    deadline: datetime
    is_random: bool
    created_at: datetime
    reminders: tuple[int, ...] = ()
    sent_reminders: frozenset[int] = field(default_factory=frozenset)
    state: str = "pending"
    attempts: int = 0

    @classmethod
    def from_row(cls, row) -> "ScheduledTask":
        kind = TargetKind(row["target_kind"])
        return cls(
            id=row["id"],
            guild_id=row["guild_id"],
            voice_channel_id=row["voice_channel_id"],
            text_channel_id=row["text_channel_id"],
            author_id=row["author_id"],
            target=Target(kind, tuple(row["target_users"] or ())),
            fire_at=row["fire_at"],
            deadline=row["deadline"],
            is_random=row["is_random"],
            created_at=row["created_at"],
            reminders=tuple(row["reminder_minutes"] or ()),
            sent_reminders=frozenset(row["sent_reminders"] or ()),
            state=row["state"],
            attempts=row["attempts"],
        )

    def reminder_entries(self) -> list[ReminderEntry]:
        """All reminders of this task, earliest first."""
        entries = [
            ReminderEntry(minutes, self.fire_at - timedelta(minutes=minutes))
            for minutes in self.reminders
        ]
        return sorted(entries, key=lambda e: e.remind_at)

    def due_reminders(self, now: datetime) -> list[ReminderEntry]:
        """Unsent reminders whose time has come."""
        return [
            entry
            for entry in self.reminder_entries()
            if entry.minutes not in self.sent_reminders and entry.remind_at <= now
        ]
