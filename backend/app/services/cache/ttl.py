"""
Cache lifetimes per operation, in seconds.

Ordered by how quickly the underlying data goes stale.
"""

from enum import IntEnum


class CacheTTL(IntEnum):
    QUOTE = 30
    INDICES = 60
    TOP_MOVERS = 60
    MARKET_STATUS = 60
    SEARCH = 300
    ANNOUNCEMENTS = 300
    INDICATORS = 900
    HISTORICAL = 3600
    SCRIP_CODE = 86400
