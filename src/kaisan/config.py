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
Kaisan Configuration

Runtime parameters for command handling and the scheduler loop.
Values can be overridden via environment variables.
"""

import os
from dataclasses import dataclass


@dataclass
class KaisanConfig:
    """Configuration for the kaisan bot."""

    # Trigger prefix (mentioning the bot also works)
    command_prefix: str = "!kaisan"

    # Timezone for guilds that never ran `timezone`
    default_timezone: str = "Asia/Tokyo"

    # Scheduler loop
    poll_interval_seconds: float = 10.0
    dispatch_timeout_seconds: float = 15.0
    max_fire_attempts: int = 5
    due_batch_limit: int = 100

    @classmethod
    def from_env(cls) -> "KaisanConfig":
        """Create config from environment variables with defaults."""
        return cls(
            command_prefix=os.getenv("KAISAN_COMMAND_PREFIX", "!kaisan"),
            default_timezone=os.getenv("KAISAN_DEFAULT_TIMEZONE", "Asia/Tokyo"),
            poll_interval_seconds=float(os.getenv("KAISAN_POLL_SECONDS", "10")),
            dispatch_timeout_seconds=float(os.getenv("KAISAN_DISPATCH_TIMEOUT", "15")),
            max_fire_attempts=int(os.getenv("KAISAN_MAX_FIRE_ATTEMPTS", "5")),
            due_batch_limit=int(os.getenv("KAISAN_DUE_BATCH_LIMIT", "100")),
        )
