"""
Odds data feeds.

- The Odds API: snapshots from 40+ bookmakers per sport
"""

from arbflow.feeds.odds_api import OddsAPIFeed

__all__ = [
    "OddsAPIFeed",
]
