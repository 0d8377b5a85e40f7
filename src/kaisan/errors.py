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
Kaisan Error Types

Exception taxonomy shared by the parser, resolver, stores, scheduler and
dispatcher. Every error carries a message that is safe to show to users,
except StoreError, which the command layer replaces with a generic reply.
"""

from datetime import datetime
from enum import Enum
from typing import Optional


class KaisanError(Exception):
    """Base class for all kaisan errors."""

    pass


class ParseErrorKind(str, Enum):
    MALFORMED = "malformed"
    AMBIGUOUS_TARGET = "ambiguous_target"
    UNKNOWN_UNIT = "unknown_unit"


class ParseError(KaisanError):
    """Raised when a command string does not match the grammar."""

    def __init__(self, kind: ParseErrorKind, message: str, position: Optional[int] = None):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.position = position


class ResolutionErrorKind(str, Enum):
    PAST_TIME = "past_time"


class ResolutionError(KaisanError):
    """Raised when a parsed time cannot be turned into a future instant."""

    def __init__(self, kind: ResolutionErrorKind, specified: datetime, now: datetime):
        super().__init__(
            f"{specified:%Y-%m-%d %H:%M:%S %Z} is not in the future "
            f"(now is {now:%Y-%m-%d %H:%M:%S %Z})"
        )
        self.kind = kind
        self.specified = specified
        self.now = now


class CancelErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    FORBIDDEN = "forbidden"


class CancelError(KaisanError):
    """Raised when a scheduled task cannot be canceled."""

    def __init__(self, kind: CancelErrorKind, task_id: int):
        if kind is CancelErrorKind.NOT_FOUND:
            message = f"Task #{task_id} not found (already fired or canceled?)"
        else:
            message = f"You are not allowed to cancel task #{task_id}"
        super().__init__(message)
        self.kind = kind
        self.task_id = task_id


class StoreError(KaisanError):
    """Raised when the persistent store cannot be reached or rejects a statement."""

    pass


class DispatchError(KaisanError):
    """
    Raised when a disband or reminder could not be delivered through Discord.

    retryable=False means retrying cannot help (channel deleted, no access).
    """

    def __init__(self, message: str, retryable: bool = True):
        super().__init__(message)
        self.retryable = retryable


class PermissionDeniedError(KaisanError):
    """Raised when the command author lacks a required guild permission."""

    def __init__(self, permission: str):
        super().__init__(f"You need the {permission} permission to do this")
        self.permission = permission


class NotInVoiceChannelError(KaisanError):
    """Raised when the command author is not connected to a voice channel."""

    def __init__(self):
        super().__init__("You need to be in a voice channel to schedule a disband")
