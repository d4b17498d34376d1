"""AI service integration.

Components:
- client: HTTP upload and status calls
- bridge: supervised per-job streams publishing typed events
"""

from app.services.ai.bridge import (
    AIJobBridge,
    JobChannel,
    MonitorHandle,
    StreamClosed,
    StreamError,
    StreamEvent,
    StreamMessage,
    comparison_key,
)
from app.services.ai.client import AIServiceClient

__all__ = [
    "AIJobBridge",
    "AIServiceClient",
    "JobChannel",
    "MonitorHandle",
    "StreamClosed",
    "StreamError",
    "StreamEvent",
    "StreamMessage",
    "comparison_key",
]
