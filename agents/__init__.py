"""
agents — long-running engine components.

Agents:
- ProposerEngine: snapshot → generate → score → rank → diversify credit spreads
- PositionMonitor: refreshes open positions, raises alerts and exit signals
- MonitorScheduler: runs PositionMonitor batches on an APScheduler interval
"""
