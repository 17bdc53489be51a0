"""
WebSocket endpoint for customers and agents.

Each socket gets a hub connection. Inbound frames are parsed here and handed
to the event router; outbound events are drained from the connection's
outbox by a dedicated writer task so a slow client never blocks the
coordinator.
"""
import asyncio
import json
import logging

from fastapi import WebSocket, WebSocketDisconnect

from ..exceptions import InvalidIntent
from ..realtime import events
from ..realtime.events import Inbound
from ..realtime.hub import Connection
from ..realtime.router import Command

logger = logging.getLogger(__name__)


async def pump_outbox(websocket: WebSocket, connection: Connection) -> None:
    """Write queued events to the socket until it closes."""
    while True:
        event = await connection.outbox.get()
        try:
            await websocket.send_json(event.to_wire())
        except (WebSocketDisconnect, RuntimeError) as e:
            logger.debug(f"Writer for connection {connection.id} stopped: {e}")
            return


async def stop_writer(writer: asyncio.Task) -> None:
    """Cancel the outbox writer and wait until it has exited."""
    writer.cancel()
    await asyncio.gather(writer, return_exceptions=True)


async def websocket_endpoint(websocket: WebSocket):
    """
    WebSocket endpoint for real-time support chat.

    Frames are JSON envelopes ``{"event": ..., "data": {...}}``.
    """
    hub = websocket.app.state.hub
    router = websocket.app.state.router
    coordinator = websocket.app.state.coordinator

    await websocket.accept()
    connection = hub.register()
    writer = asyncio.create_task(pump_outbox(websocket, connection))
    connection.deliver(events.connected(connection.id))

    try:
        while True:
            try:
                raw = await websocket.receive_text()
            except WebSocketDisconnect:
                break

            try:
                envelope = json.loads(raw)
            except json.JSONDecodeError:
                connection.deliver(events.error(InvalidIntent("Invalid JSON")))
                continue

            if not isinstance(envelope, dict) or not isinstance(envelope.get("event"), str):
                connection.deliver(events.error(
                    InvalidIntent("Frames must be objects with an 'event' name")
                ))
                continue

            if envelope["event"] == Inbound.PING:
                connection.deliver(events.pong())
                continue

            await router.submit(Command(
                connection_id=connection.id,
                event=envelope["event"],
                data=envelope.get("data") or {}
            ))

    except Exception as e:
        logger.error(f"WebSocket error on connection {connection.id}: {e}", exc_info=True)
    finally:
        await stop_writer(writer)
        await coordinator.connection_closed(connection.id)
        logger.info(f"WebSocket connection {connection.id} disconnected")
