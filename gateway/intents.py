"""
gateway/intents.py — Gateway Intent Resolution

Maps symbolic capability names to the numeric bitmask sent in IDENTIFY.

Usage:
    resolve_intents(513)                                  # → 513
    resolve_intents(["GUILDS", "GUILD_MESSAGES"])         # → 513
    resolve_intents(["GUILDS", "BOGUS"])                  # → 1 (+ one warning)
"""

from __future__ import annotations

from enum import IntFlag
from typing import Iterable, Union

from observability.logger import get_logger

log = get_logger(__name__)


class Intent(IntFlag):
    GUILDS                        = 1 << 0
    GUILD_MEMBERS                 = 1 << 1
    GUILD_MODERATION              = 1 << 2
    GUILD_EXPRESSIONS             = 1 << 3
    GUILD_INTEGRATIONS            = 1 << 4
    GUILD_WEBHOOKS                = 1 << 5
    GUILD_INVITES                 = 1 << 6
    GUILD_VOICE_STATES            = 1 << 7
    GUILD_PRESENCES               = 1 << 8
    GUILD_MESSAGES                = 1 << 9
    GUILD_MESSAGE_REACTIONS       = 1 << 10
    GUILD_MESSAGE_TYPING          = 1 << 11
    DIRECT_MESSAGES               = 1 << 12
    DIRECT_MESSAGE_REACTIONS      = 1 << 13
    DIRECT_MESSAGE_TYPING         = 1 << 14
    MESSAGE_CONTENT               = 1 << 15
    GUILD_SCHEDULED_EVENTS        = 1 << 16
    AUTO_MODERATION_CONFIGURATION = 1 << 20
    AUTO_MODERATION_EXECUTION     = 1 << 21
    GUILD_MESSAGE_POLLS           = 1 << 24
    DIRECT_MESSAGE_POLLS          = 1 << 25

    # Aliases accepted in config files
    DIRECT_MESSAGE                = 1 << 12
    GUILD_EMOJIS_AND_STICKERS     = 1 << 3
    GUILD_BANS                    = 1 << 2


IntentSpec = Union[int, Iterable[str]]


def resolve_intents(spec: IntentSpec | None) -> int:
    """
    Resolve an intents spec to the IDENTIFY bitmask.

    A numeric spec passes through unchanged. A single name counts as a
    one-item list. Names are looked up in the Intent table; unknown names
    are skipped with a warning.
    """
    if spec is None:
        return 0
    if isinstance(spec, int):
        return spec
    if isinstance(spec, str):
        spec = [spec]

    result = 0
    for name in spec:
        member = Intent.__members__.get(str(name).upper())
        if member is None:
            log.warning("intents.unknown", name=name, action="skipped")
            continue
        result |= member.value
    return result
