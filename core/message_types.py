"""
📦 Message Types - Événements publiés sur le MessageBus
"""
import time
from dataclasses import dataclass, field
from typing import Any, Dict


@dataclass
class SystemEvent:
    """Événement système (notification EventSub, ...)"""
    kind: str                                         # "eventsub.channel.chat.message", ...
    payload: Dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)
