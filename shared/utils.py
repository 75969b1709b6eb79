from __future__ import annotations
import re
from datetime import datetime, timezone
from typing import Optional

# ========================================
#           INPUT VALIDATION HELPERS
# ========================================
"""
Helpers the configuration layer calls to decide whether a channel name,
bot name or server address is usable before any connection is attempted.
"""

# Twitch logins are word characters only; the '#' belongs to the wire format.
_NAME_RE = re.compile(r'^\w+$')

def is_irc_name(s: str) -> bool:
    """
    returns True if the string can be used as a channel or nick name
    (one or more word characters, no '#', no whitespace).
    """
    return isinstance(s, str) and bool(_NAME_RE.fullmatch(s))

def normalize_channel(s: str) -> str:
    """Strip surrounding whitespace and a leading '#' from a channel name."""
    return s.strip().lstrip('#')

def is_valid_port(port: int) -> bool:
    return isinstance(port, int) and not isinstance(port, bool) and 0 < port <= 65535

# ========================================
#           TIMESTAMPS
# ========================================

TIMESTAMP_FORMAT = "%b %d %H:%M:%S %Z"

def format_timestamp(when: Optional[datetime] = None) -> str:
    """
    Render a timestamp for console output, e.g. "Jan 02 15:04:05 UTC".

    Naive datetimes are taken as UTC; the current time is used when omitted.
    """
    if when is None:
        when = datetime.now(timezone.utc)
    elif when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return when.strftime(TIMESTAMP_FORMAT)
