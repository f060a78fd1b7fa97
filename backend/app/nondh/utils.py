"""Shared parsing helpers for the nondh chain engine.

Kept deliberately small: everything here is a pure function over strings
and is used at ingestion or ordering boundaries only.
"""

import re
from datetime import date, datetime, timedelta
from typing import Any, Optional

# ═══════════════════════════════════════════════════
# 1. DATE PARSING
# ═══════════════════════════════════════════════════

_DATE_FORMATS = [
    "%Y-%m-%d", "%d-%m-%Y", "%d/%m/%Y", "%d.%m.%Y",
    "%Y/%m/%d", "%d%m%Y", "%d %b %Y", "%d %B %Y",
    "%B %d, %Y", "%b %d, %Y",
]


def parse_date(value: Any) -> Optional[date]:
    """Parse a date trying multiple formats.

    Accepts ``date``/``datetime`` objects, ISO strings, the ``ddmmyyyy``
    form used by bulk JSON uploads, and the usual Indian ``dd-mm-yyyy``
    variants.  Returns None for empty or unparseable input.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        return None
    s = value.strip()
    if not s:
        return None
    # ISO timestamps: keep the date part
    if "T" in s and len(s) > 10:
        s = s.split("T", 1)[0]
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(s, fmt).date()
        except ValueError:
            continue
    return None


def format_date(d: Optional[date]) -> str:
    return d.isoformat() if d else ""


def shift_days(d: Optional[date], days: int) -> Optional[date]:
    if d is None:
        return None
    return d + timedelta(days=days)


# ═══════════════════════════════════════════════════
# 2. AMENDMENT NUMBER TOKENS
# ═══════════════════════════════════════════════════

# Bare integer or hyphen/slash composite: 12, 10-35, 30/45, 4/1/2
NUMBER_GRAMMAR = re.compile(r'^\d+([-/]\d+)*$')
_LEADING_INT = re.compile(r'^\s*(\d+)')


def is_valid_number(token: Any) -> bool:
    """True when ``token`` matches the accepted amendment-number grammar."""
    if token is None:
        return False
    return bool(NUMBER_GRAMMAR.match(str(token).strip()))


def leading_int(token: Any) -> int:
    """Ordering key for an amendment number.

    Composite tokens order by their leading integer (``"10-35"`` → 10);
    anything without a leading integer orders as 0.
    """
    if isinstance(token, int) and not isinstance(token, bool):
        return token
    m = _LEADING_INT.match(str(token or ""))
    return int(m.group(1)) if m else 0


def normalize_number(token: Any) -> str:
    """Canonical text form of a number token (trimmed, no inner whitespace)."""
    return re.sub(r'\s+', '', str(token or ""))


# ═══════════════════════════════════════════════════
# 3. OWNER NAMES
# ═══════════════════════════════════════════════════

def clean_name(name: Any) -> str:
    """Collapse whitespace in an owner name; empty for None."""
    if not name:
        return ""
    return re.sub(r'\s+', ' ', str(name)).strip()
