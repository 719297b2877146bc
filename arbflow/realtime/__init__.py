"""Realtime opportunity distribution over websockets."""

from arbflow.realtime.auth import Identity, InvalidTokenError, JWTTokenVerifier, TokenVerifier
from arbflow.realtime.hub import ClientConnection, RealtimeHub
from arbflow.realtime.server import RealtimeServer

__all__ = [
    "Identity",
    "InvalidTokenError",
    "JWTTokenVerifier",
    "TokenVerifier",
    "ClientConnection",
    "RealtimeHub",
    "RealtimeServer",
]
