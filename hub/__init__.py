"""Realtime hub package streaming logs and opportunities to observers."""

from .realtime_hub import ClientConnection, RealtimeHub

__all__ = ["ClientConnection", "RealtimeHub"]
