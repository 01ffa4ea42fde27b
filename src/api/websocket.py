"""WebSocket endpoint for live feed updates."""

import logging
from collections.abc import Awaitable, Callable

import anyio
from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from src.services.realtime import POSTS_TOPIC, BroadcastHub

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/ws", tags=["websocket"])

PING_INTERVAL_SECONDS = 30


@router.websocket("/posts")
async def websocket_posts(websocket: WebSocket) -> None:
    """Push every post create/update/delete event to the client.

    The feed is public, so no token is required. Events published before the
    connection was accepted are not replayed.
    """
    hub: BroadcastHub = websocket.app.state.broadcast_hub

    # Subscribe before accepting so nothing published after the handshake is missed
    with hub.subscribe(POSTS_TOPIC) as subscription:
        await websocket.accept()
        logger.info("WebSocket observer connected")

        async def forward_events() -> None:
            """Receive events from the hub and forward to the WebSocket."""
            async for event in subscription:
                await websocket.send_json(event)

        async def send_pings() -> None:
            """Send periodic pings to keep connection alive."""
            while True:
                await anyio.sleep(PING_INTERVAL_SECONDS)
                await websocket.send_json({"type": "ping"})

        async def receive_client() -> None:
            """Handle incoming messages from client (pong responses)."""
            while True:
                try:
                    data = await websocket.receive_json()
                except (ValueError, KeyError):
                    # Not JSON, or a binary frame
                    logger.debug("Ignoring malformed WebSocket frame")
                    continue
                if isinstance(data, dict) and data.get("type") == "pong":
                    continue  # Keepalive acknowledgment

        async with anyio.create_task_group() as task_group:

            async def run_until_done(func: Callable[[], Awaitable[None]]) -> None:
                # Whichever side finishes first (disconnect, hub shutdown) ends the session
                try:
                    await func()
                except WebSocketDisconnect:
                    pass
                except Exception as e:
                    logger.error(f"WebSocket error: {e}", exc_info=True)
                finally:
                    task_group.cancel_scope.cancel()

            task_group.start_soon(run_until_done, forward_events)
            task_group.start_soon(run_until_done, send_pings)
            task_group.start_soon(run_until_done, receive_client)

        logger.info("WebSocket observer disconnected")
