from src.kernel.notifications.dispatcher import (
    NotificationDispatcher,
    OutboundMessage,
    RecordingDispatcher,
)

__all__ = ["NotificationDispatcher", "OutboundMessage", "RecordingDispatcher"]
