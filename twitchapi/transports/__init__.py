"""
twitchapi/transports/
=====================

Modules:
- eventsub_client : Session EventSub WebSocket (welcome → fan-out, notifications → MessageBus)
"""

from twitchapi.transports.eventsub_client import EventSessionState, EventSubClient, EventSubConfig

__all__ = ["EventSessionState", "EventSubClient", "EventSubConfig"]
