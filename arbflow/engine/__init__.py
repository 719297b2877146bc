"""Arbitrage detection and the scan loop."""

from arbflow.engine.arbitrage import ArbitrageDetector, DetectorConfig
from arbflow.engine.scanner import ScanReport, ScanScheduler, ScanState

__all__ = [
    "ArbitrageDetector",
    "DetectorConfig",
    "ScanReport",
    "ScanScheduler",
    "ScanState",
]
