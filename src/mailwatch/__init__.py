"""mailwatch: Gmail push-notification history sync."""

__version__ = "0.1.0"
