"""
Market Hours Utility

Exchange calendar dates are Indian Standard Time, whatever the host's
timezone.
"""

from datetime import date, datetime
from typing import Optional

import pytz

IST = pytz.timezone("Asia/Kolkata")


def now_ist() -> datetime:
    return datetime.now(IST)


def market_today(now: Optional[datetime] = None) -> date:
    """Current trading-calendar date. A naive ``now`` is taken as UTC."""
    if now is None:
        return now_ist().date()
    if now.tzinfo is None:
        now = pytz.utc.localize(now)
    return now.astimezone(IST).date()
