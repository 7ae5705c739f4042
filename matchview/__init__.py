"""
Matchview - live dashboard client for a commodities matching engine.

Architecture:
- datafeed/: STOMP trade subscription, reconnect policy, REST pollers, wire codec
- engine/: Bounded buffers and the SyncCoordinator that owns all state
- ui/: Dashboard panels (Textual TUI)
"""

__version__ = "0.1.0"
