"""
Realtime layer: wire events, connection hub and the sharded event router.

The router lives in ``realtime.router`` and is imported from there, since it
depends on the coordinator which in turn publishes through this package.
"""
from .events import Event, Inbound, Outbound
from .hub import Connection, ConnectionHub

__all__ = ['Event', 'Inbound', 'Outbound', 'Connection', 'ConnectionHub']
