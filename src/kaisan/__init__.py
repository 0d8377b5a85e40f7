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
Kaisan Package

Scheduled voice channel disbands: command parsing, time resolution,
durable task storage and the firing loop.
"""

from .command_parser import (
    extract_command,
    parse_command,
    validate_timezone,
    MAX_REMINDER_MINUTES,
)
from .config import KaisanConfig
from .db import ensure_schema
from .dispatcher import KaisanDispatcher
from .errors import (
    KaisanError,
    ParseError,
    ResolutionError,
    CancelError,
    StoreError,
    DispatchError,
)
from .manager import KaisanTaskManager
from .resolver import resolve
from .scheduler import KaisanScheduler
from .settings import GuildSettingsStore

__all__ = [
    "extract_command",
    "parse_command",
    "validate_timezone",
    "MAX_REMINDER_MINUTES",
    "KaisanConfig",
    "ensure_schema",
    "KaisanDispatcher",
    "KaisanError",
    "ParseError",
    "ResolutionError",
    "CancelError",
    "StoreError",
    "DispatchError",
    "KaisanTaskManager",
    "resolve",
    "KaisanScheduler",
    "GuildSettingsStore",
]
