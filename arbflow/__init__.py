"""
Cross-bookmaker sports arbitrage scanner.

Pulls odds snapshots from The Odds API, looks for two-way markets where the
best prices across bookmakers add up to less than 100% implied probability,
stores every qualifying opportunity and pushes it to live websocket clients.

Layout:
- feeds/: odds provider client
- engine/: arbitrage math and the scan scheduler
- storage/: opportunity persistence (SQLAlchemy)
- realtime/: authenticated websocket fan-out
"""

__version__ = "0.1.0"
