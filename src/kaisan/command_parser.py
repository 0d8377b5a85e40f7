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
Command Parser Module

Parses kaisan command text into typed commands. Supports English and
Japanese surface forms, in any order:

- "me after 10min", "after 1h30m me", "<@123> at 23:00 tomorrow"
- "by 18:00", "within 2 hours remind 10,5"
- "10分後 私", "全員を一分後", "明日の一時まで", "1時間30分以内に解散"
- "help", "show-setting", "timezone Asia/Tokyo", "add-reminder 10", ...

Parsing is pure: the same text always yields an equal command, and nothing
is resolved against the clock here.
"""

import logging
import re
from datetime import datetime
from typing import Optional

import pytz

from .errors import ParseError, ParseErrorKind
from .models import (
    AddReminderCommand,
    CancelCommand,
    ClockTime,
    Delay,
    HelpCommand,
    Instant,
    KaisanCommand,
    ListTasksCommand,
    Now,
    ParsedCommand,
    RemoveReminderCommand,
    SetRemindRandomCommand,
    SetRequirePermissionCommand,
    SetTimezoneCommand,
    ShowSettingCommand,
    Target,
    TimePoint,
    TimeRange,
)

logger = logging.getLogger("kaisanbot.kaisan.command_parser")

MAX_REMINDER_MINUTES = 24 * 60

_WS = re.compile(r"[ \t　]*")
_WORD = re.compile(r"[a-z]+", re.IGNORECASE)

_SUBCOMMAND = re.compile(
    r"(help|show-setting|list|timezone|require-permission|add-reminder"
    r"|remove-reminder|remind-random|cancel)(?![\w-])",
    re.IGNORECASE,
)
_KEYWORD = re.compile(r"(?:kaisan|disband)(?![a-z])|解散", re.IGNORECASE)
_ME = re.compile(r"me(?![a-z])|私|わたし|俺|おれ|オレ|僕|ぼく|ボク", re.IGNORECASE)
_ALL = re.compile(r"(?:all|everyone)(?![a-z])|全員|皆|みんな", re.IGNORECASE)
_MENTIONS = re.compile(r"(?:<@!?\d+>[ \t　]*)+")
_MENTION_ID = re.compile(r"<@!?(\d+)>")
_PARTICLE_WO = re.compile(r"を")
_PARTICLE_NI = re.compile(r"に")
_REMIND = re.compile(r"remind[ \t]+", re.IGNORECASE)
_NO_REMIND = re.compile(r"no-remind(?:ers?)?(?![\w-])", re.IGNORECASE)
_LIST_SEP = re.compile(r"[ \t]*,[ \t]*")

_NOW = re.compile(r"now(?![a-z])|今すぐ", re.IGNORECASE)
_AT_BY = re.compile(r"(at|by)(?:[ \t]+|$)", re.IGNORECASE)
_AFTER_WITHIN = re.compile(r"(after|within)(?:[ \t]+|$)", re.IGNORECASE)
_DURATION_SUFFIX = re.compile(r"後まで|後|以内")
_MADE = re.compile(r"まで")

_NUMBER = re.compile(r"\d{1,4}|[一二三四五六七八九十百]+")
_UNIT = re.compile(
    r"[ \t]*(hours|hour|hrs|hr|h|時間|minutes|minute|mins|min|m|分|seconds|second|secs|sec|s|秒)"
    r"(?![a-z])",
    re.IGNORECASE,
)
_CLOCK_COLON = re.compile(r":(\d{1,2})")
_MERIDIEM = re.compile(r"[ \t]*(am|pm)(?![a-z])", re.IGNORECASE)
_TOMORROW = re.compile(r"[ \t]*tomorrow(?![a-z])", re.IGNORECASE)
_JA_HOUR = re.compile(r"[ \t]*時")
_JA_MINUTE = re.compile(r"[ \t]*分")
_JA_HALF = re.compile(r"[ \t]*半")
_JA_TOMORROW = re.compile(r"明日の?")
_RFC3339 = re.compile(r"rfc3339[ \t]+([0-9TZtz:+\-.]+)", re.IGNORECASE)

_UNIT_NAMES = {
    "hours": "hours", "hour": "hours", "hrs": "hours", "hr": "hours", "h": "hours", "時間": "hours",
    "minutes": "minutes", "minute": "minutes", "mins": "minutes", "min": "minutes", "m": "minutes",
    "分": "minutes",
    "seconds": "seconds", "second": "seconds", "secs": "seconds", "sec": "seconds", "s": "seconds",
    "秒": "seconds",
}

# Words that may legitimately follow a bare number without being a unit
_NON_UNIT_WORDS = {"am", "pm", "tomorrow"}

_BOOLEANS = {
    "true": True, "yes": True, "on": True, "はい": True,
    "false": False, "no": False, "off": False, "いいえ": False,
}

_KANJI_DIGITS = {
    "一": 1, "二": 2, "三": 3, "四": 4, "五": 5, "六": 6, "七": 7, "八": 8, "九": 9,
}
_KANJI_MULTIPLIERS = {"十": 10, "百": 100}


def validate_timezone(tz_name: str) -> bool:
    """
    Validate that a timezone name is valid.

    Args:
        tz_name: IANA timezone name (e.g., "Asia/Tokyo")

    Returns:
        True if valid, False otherwise
    """
    try:
        pytz.timezone(tz_name)
        return True
    except pytz.UnknownTimeZoneError:
        return False


def kanji_to_int(text: str) -> int:
    """
    Convert a kanji numeral such as "二十五" or "百二十" to an int.

    Raises:
        ValueError: If the numeral is not well formed
    """
    total = 0
    current = 0
    last_multiplier = None
    for ch in text:
        if ch in _KANJI_DIGITS:
            if current:
                raise ValueError(f"invalid kanji number: {text}")
            current = _KANJI_DIGITS[ch]
        elif ch in _KANJI_MULTIPLIERS:
            multiplier = _KANJI_MULTIPLIERS[ch]
            if last_multiplier is not None and multiplier >= last_multiplier:
                raise ValueError(f"invalid kanji number: {text}")
            total += (current or 1) * multiplier
            current = 0
            last_multiplier = multiplier
        else:
            raise ValueError(f"invalid kanji number: {text}")
    return total + current


def extract_command(content: str, bot_id: int, prefix: str = "!kaisan") -> Optional[str]:
    """
    Strip the trigger from a message.

    A message is a command if it starts with the prefix, or starts or ends
    with a mention of the bot.

    Returns:
        The command text, or None if the message is not addressed to the bot
    """
    content = content.strip()
    for mention in (f"<@{bot_id}>", f"<@!{bot_id}>"):
        if content.startswith(mention):
            return content[len(mention):].strip()
        if content.endswith(mention):
            return content[: -len(mention)].strip()
    if content.lower().startswith(prefix.lower()):
        rest = content[len(prefix):]
        # "!kaisanfoo" is not our prefix
        if rest and not rest[0].isspace():
            return None
        return rest.strip()
    return None


class _Scanner:
    """Cursor over the command text."""

    def __init__(self, text: str):
        self.text = text
        self.pos = 0

    def skip_ws(self) -> None:
        self.pos = _WS.match(self.text, self.pos).end()

    def at_end(self) -> bool:
        self.skip_ws()
        return self.pos >= len(self.text)

    def match(self, pattern: re.Pattern) -> Optional[re.Match]:
        m = pattern.match(self.text, self.pos)
        if m is not None:
            self.pos = m.end()
        return m

    def peek(self, pattern: re.Pattern) -> Optional[re.Match]:
        return pattern.match(self.text, self.pos)

    def rest(self) -> str:
        return self.text[self.pos:].strip()

    def error(self, kind: ParseErrorKind, expected: str) -> ParseError:
        got = self.rest()
        message = f"{expected} is expected"
        if got:
            message += f", but got `{got}`"
        return ParseError(kind, message, self.pos)


# =========================================================================
# Numbers and durations
# =========================================================================


def _parse_number(sc: _Scanner) -> Optional[int]:
    m = sc.match(_NUMBER)
    if m is None:
        return None
    token = m.group(0)
    if token.isdigit():
        return int(token)
    try:
        return kanji_to_int(token)
    except ValueError:
        sc.pos = m.start()
        raise sc.error(ParseErrorKind.MALFORMED, "a number")


def _parse_duration(sc: _Scanner, first: int, strict: bool) -> Optional[Delay]:
    """
    Parse "<unit> [<number> <unit> ...]" after an already consumed number.

    In strict mode (after "after"/"within") any word following a number
    must be a unit. Otherwise only a word glued to the number is checked,
    so that "10 me" is left for the caller to reject.
    """
    parts: dict[str, int] = {}
    number: Optional[int] = first
    while True:
        before_unit = sc.pos
        m = sc.match(_UNIT)
        if m is None:
            sc.skip_ws()
            glued = sc.pos == before_unit
            word = sc.peek(_WORD)
            if word and word.group(0).lower() not in _NON_UNIT_WORDS and (strict or glued):
                raise ParseError(
                    ParseErrorKind.UNKNOWN_UNIT,
                    f"unknown unit `{word.group(0)}` (use hours, minutes or seconds)",
                    sc.pos,
                )
            sc.pos = before_unit
            return None if not parts else _finish_duration(parts)

        unit = _UNIT_NAMES[m.group(1).lower()]
        if unit in parts:
            raise ParseError(
                ParseErrorKind.MALFORMED, f"{unit} specified twice in a duration", m.start(1)
            )
        parts[unit] = number

        # Another "<number> <unit>" pair may follow
        after_unit = sc.pos
        sc.skip_ws()
        number = _parse_number(sc)
        if number is None or sc.peek(_UNIT) is None:
            sc.pos = after_unit
            return _finish_duration(parts)


def _finish_duration(parts: dict[str, int]) -> Delay:
    return Delay(**parts)


# =========================================================================
# Wall-clock times
# =========================================================================


def _check_clock(sc: _Scanner, start: int, hour: Optional[int], minute: Optional[int]) -> None:
    if hour is not None and not 0 <= hour < 24:
        sc.pos = start
        raise sc.error(ParseErrorKind.MALFORMED, "an hour between 0 and 23")
    if minute is not None and not 0 <= minute < 60:
        sc.pos = start
        raise sc.error(ParseErrorKind.MALFORMED, "a minute between 0 and 59")


def _apply_meridiem(sc: _Scanner, start: int, hour: int, meridiem: str) -> int:
    """Convert a 12-hour clock hour to 24-hour."""
    if not 1 <= hour <= 12:
        sc.pos = start
        raise sc.error(ParseErrorKind.MALFORMED, "an hour between 1 and 12 before am/pm")
    is_pm = meridiem.lower() == "pm"
    if is_pm and hour != 12:
        hour += 12
    elif not is_pm and hour == 12:
        hour = 0
    return hour


def _parse_ja_minute(sc: _Scanner) -> Optional[int]:
    """Parse the "半" or "M分" that may follow "N時"."""
    if sc.match(_JA_HALF):
        return 30
    save = sc.pos
    sc.skip_ws()
    minute = _parse_number(sc)
    if minute is not None and sc.match(_JA_MINUTE):
        return minute
    sc.pos = save
    return None


def _parse_clock_tail(sc: _Scanner, start: int, number: int) -> Optional[ClockTime]:
    """Parse what follows the leading number of a wall-clock time."""
    m = sc.match(_CLOCK_COLON)
    if m is not None:
        hour, minute = number, int(m.group(1))
        meridiem = sc.match(_MERIDIEM)
        if meridiem:
            hour = _apply_meridiem(sc, start, hour, meridiem.group(1))
        _check_clock(sc, start, hour, minute)
        tomorrow = sc.match(_TOMORROW) is not None
        return ClockTime(hour, minute, tomorrow)

    meridiem = sc.match(_MERIDIEM)
    if meridiem is not None:
        hour = _apply_meridiem(sc, start, number, meridiem.group(1))
        tomorrow = sc.match(_TOMORROW) is not None
        return ClockTime(hour, 0, tomorrow)

    if sc.match(_JA_HOUR):
        minute = _parse_ja_minute(sc)
        _check_clock(sc, start, number, minute)
        return ClockTime(number, minute)

    if sc.match(_JA_MINUTE):
        _check_clock(sc, start, None, number)
        return ClockTime(None, number)

    return None


def _parse_time_point(sc: _Scanner) -> Optional[TimePoint]:
    """Parse a wall-clock time or an absolute instant."""
    start = sc.pos

    m = sc.match(_RFC3339)
    if m is not None:
        raw = m.group(1)
        if raw[-1:] in ("Z", "z"):
            raw = raw[:-1] + "+00:00"
        try:
            value = datetime.fromisoformat(raw)
        except ValueError:
            value = None
        if value is None or value.tzinfo is None:
            sc.pos = m.start(1)
            raise sc.error(ParseErrorKind.MALFORMED, "an RFC 3339 timestamp with offset")
        return Instant(value)

    if sc.match(_JA_TOMORROW):
        number_start = sc.pos
        hour = _parse_number(sc)
        if hour is None:
            raise sc.error(ParseErrorKind.MALFORMED, "an hour after 明日の")
        m = sc.match(_CLOCK_COLON)
        if m is not None:
            minute = int(m.group(1))
        elif sc.match(_JA_HOUR):
            minute = _parse_ja_minute(sc)
        else:
            sc.pos = number_start
            raise sc.error(ParseErrorKind.MALFORMED, "時 or :MM")
        _check_clock(sc, number_start, hour, minute)
        return ClockTime(hour, minute, tomorrow=True)

    if sc.match(_JA_HALF):
        return ClockTime(None, 30)

    number = _parse_number(sc)
    if number is None:
        return None
    clock = _parse_clock_tail(sc, start, number)
    if clock is None:
        sc.pos = start
    return clock


# =========================================================================
# Time ranges, targets and reminders
# =========================================================================


def _parse_time_range(sc: _Scanner) -> Optional[TimeRange]:
    if sc.match(_NOW):
        return TimeRange(Now())

    m = sc.match(_AT_BY)
    if m is not None:
        point = _parse_time_point(sc)
        if point is None:
            raise sc.error(ParseErrorKind.MALFORMED, f"a time after `{m.group(1)}`")
        return TimeRange(point, randomized=m.group(1).lower() == "by")

    m = sc.match(_AFTER_WITHIN)
    if m is not None:
        number = _parse_number(sc)
        delay = _parse_duration(sc, number, strict=True) if number is not None else None
        if delay is None:
            raise sc.error(ParseErrorKind.MALFORMED, f"a duration after `{m.group(1)}`")
        return TimeRange(delay, randomized=m.group(1).lower() == "within")

    # Japanese sugar: "10分後", "10分以内", "10分後まで"
    start = sc.pos
    number = _parse_number(sc)
    if number is not None:
        delay = _parse_duration(sc, number, strict=False)
        if delay is not None:
            suffix = sc.match(_DURATION_SUFFIX)
            if suffix is not None:
                return TimeRange(delay, randomized=suffix.group(0) != "後")
        sc.pos = start

    point = _parse_time_point(sc)
    if point is None:
        return None
    return TimeRange(point, randomized=sc.match(_MADE) is not None)


def _parse_target(sc: _Scanner) -> Optional[Target]:
    if sc.match(_ME):
        return Target.me()
    if sc.match(_ALL):
        return Target.everyone()
    m = sc.match(_MENTIONS)
    if m is not None:
        return Target.users(int(uid) for uid in _MENTION_ID.findall(m.group(0)))
    return None


def _parse_reminder_override(sc: _Scanner) -> Optional[frozenset[int]]:
    if sc.match(_NO_REMIND):
        return frozenset()
    if sc.match(_REMIND) is None:
        return None
    offsets = []
    while True:
        offsets.append(_parse_reminder_minutes(sc))
        if sc.match(_LIST_SEP) is None:
            return frozenset(offsets)


def _parse_reminder_minutes(sc: _Scanner) -> int:
    start = sc.pos
    minutes = _parse_number(sc)
    if minutes is None or not 1 <= minutes <= MAX_REMINDER_MINUTES:
        sc.pos = start
        raise sc.error(
            ParseErrorKind.MALFORMED, f"a number of minutes between 1 and {MAX_REMINDER_MINUTES}"
        )
    sc.match(_UNIT)
    return minutes


def _parse_kaisan(sc: _Scanner) -> KaisanCommand:
    target: Optional[Target] = None
    time_range: Optional[TimeRange] = None
    reminder_override: Optional[frozenset[int]] = None

    while not sc.at_end():
        start = sc.pos

        if sc.match(_KEYWORD):
            continue

        found_target = _parse_target(sc)
        if found_target is not None:
            if target is not None:
                raise ParseError(
                    ParseErrorKind.AMBIGUOUS_TARGET, "the target is specified twice", start
                )
            target = found_target
            sc.skip_ws()
            sc.match(_PARTICLE_WO)
            continue

        override = _parse_reminder_override(sc)
        if override is not None:
            if reminder_override is not None:
                raise ParseError(
                    ParseErrorKind.MALFORMED, "reminders are specified twice", start
                )
            reminder_override = override
            continue

        found_range = _parse_time_range(sc)
        if found_range is not None:
            if time_range is not None:
                raise ParseError(ParseErrorKind.MALFORMED, "the time is specified twice", start)
            time_range = found_range
            sc.skip_ws()
            sc.match(_PARTICLE_NI)
            continue

        raise sc.error(ParseErrorKind.MALFORMED, "a target, a time or `remind`")

    if time_range is None:
        raise ParseError(
            ParseErrorKind.MALFORMED,
            "a time is expected (e.g. `at 23:00`, `after 10min`, `by 18:00`, `within 1h`)",
            sc.pos,
        )
    return KaisanCommand(
        time_range=time_range,
        target=target if target is not None else Target.everyone(),
        reminder_override=reminder_override,
    )


# =========================================================================
# Subcommands
# =========================================================================


def _parse_bool(sc: _Scanner, arg: str) -> bool:
    value = _BOOLEANS.get(arg.lower())
    if value is None:
        raise sc.error(ParseErrorKind.MALFORMED, "a boolean (true/false, yes/no)")
    return value


def _parse_subcommand(sc: _Scanner, name: str) -> ParsedCommand:
    sc.skip_ws()
    arg = sc.rest()

    if name in ("help", "show-setting", "list"):
        if arg:
            raise sc.error(ParseErrorKind.MALFORMED, "end of command")
        return {
            "help": HelpCommand,
            "show-setting": ShowSettingCommand,
            "list": ListTasksCommand,
        }[name]()

    if not arg:
        raise sc.error(ParseErrorKind.MALFORMED, f"an argument to `{name}`")

    if name == "timezone":
        if " " in arg or not validate_timezone(arg):
            raise sc.error(ParseErrorKind.MALFORMED, "a timezone name such as `Asia/Tokyo`")
        return SetTimezoneCommand(pytz.timezone(arg).zone)

    if name == "require-permission":
        return SetRequirePermissionCommand(_parse_bool(sc, arg))

    if name == "remind-random":
        return SetRemindRandomCommand(_parse_bool(sc, arg))

    if name == "cancel":
        m = re.fullmatch(r"#?(\d+)", arg)
        if m is None:
            raise sc.error(ParseErrorKind.MALFORMED, "a task ID")
        return CancelCommand(int(m.group(1)))

    # add-reminder / remove-reminder
    minutes = _parse_reminder_minutes(sc)
    if not sc.at_end():
        raise sc.error(ParseErrorKind.MALFORMED, "end of command")
    if name == "add-reminder":
        return AddReminderCommand(minutes)
    return RemoveReminderCommand(minutes)


def parse_command(text: str) -> ParsedCommand:
    """
    Parse a command string.

    Args:
        text: Command text with the trigger (prefix or mention) removed

    Returns:
        One of the command dataclasses in kaisan.models

    Raises:
        ParseError: If the text is not a valid command
    """
    sc = _Scanner(text.strip())
    if sc.at_end():
        raise ParseError(ParseErrorKind.MALFORMED, "a command is expected (try `help`)", 0)

    m = sc.match(_SUBCOMMAND)
    if m is not None:
        command = _parse_subcommand(sc, m.group(1).lower())
    else:
        command = _parse_kaisan(sc)

    logger.debug(f"Parsed {text!r} as {command}")
    return command
