"""Mostaql Hub — Push Hub Package.

Fan-out of listing batches to many subscribers:
  - NotificationHub: subscriber registry and isolated broadcast
  - HubServer: aiohttp WebSocket endpoint + /health
  - HubClient / HubListener: reconnecting subscriber side
"""

from mostaql_hub.hub.client import ClientState, HubClient, HubListener
from mostaql_hub.hub.hub import BroadcastResult, NotificationHub, Subscriber, SubscriberHandle
from mostaql_hub.hub.server import HubServer

__all__ = [
    "BroadcastResult",
    "ClientState",
    "HubClient",
    "HubListener",
    "HubServer",
    "NotificationHub",
    "Subscriber",
    "SubscriberHandle",
]
