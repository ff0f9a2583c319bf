"""Relay broadcast snapshots to one viewer's WebSocket."""

import json
import logging
from enum import Enum

import anyio
from starlette.websockets import WebSocket, WebSocketDisconnect

from hostpulse.broadcast import BroadcastChannel, ChannelClosed, Lagged, Subscription

logger = logging.getLogger(__name__)

CLOSE_GOING_AWAY = 1001
CLOSE_TRY_AGAIN_LATER = 1013

# Raised by starlette/uvicorn when writing to a socket the viewer already closed
SEND_ERRORS = (WebSocketDisconnect, OSError, RuntimeError)


class CloseReason(Enum):
    """Why a relay ended."""

    DISCONNECTED = "disconnected"
    LAGGED = "lagged"
    SHUTDOWN = "shutdown"


def serialize(snapshot) -> str:
    """Serialize a snapshot to its JSON wire message."""
    return json.dumps(snapshot.to_payload(), allow_nan=False)


def _peer(websocket: WebSocket) -> str:
    client = websocket.client
    return f"{client.host}:{client.port}" if client else "unknown"


async def relay(websocket: WebSocket, channel: BroadcastChannel) -> CloseReason:
    """
    Stream every value received from ``channel`` to ``websocket``.

    The subscription is taken before the upgrade is accepted, so the viewer
    receives the first value published after the handshake completes. The
    relay ends when the viewer disconnects, when it lags behind the channel,
    or when the channel closes; the subscription is always released.
    """
    peer = _peer(websocket)
    with channel.subscribe() as subscription:
        await websocket.accept()
        logger.info("Viewer %s subscribed to %s", peer, channel.name)

        reason = CloseReason.DISCONNECTED

        async def pump() -> None:
            nonlocal reason
            reason = await _pump(websocket, subscription)
            tasks.cancel_scope.cancel()

        async def watch() -> None:
            await _wait_for_disconnect(websocket)
            tasks.cancel_scope.cancel()

        # Whichever side finishes first cancels the other
        async with anyio.create_task_group() as tasks:
            tasks.start_soon(pump)
            tasks.start_soon(watch)

    if reason is CloseReason.LAGGED:
        await _close(websocket, CLOSE_TRY_AGAIN_LATER)
    elif reason is CloseReason.SHUTDOWN:
        await _close(websocket, CLOSE_GOING_AWAY)
    logger.info("Viewer %s left %s (%s)", peer, channel.name, reason.value)
    return reason


async def _pump(websocket: WebSocket, subscription: Subscription) -> CloseReason:
    """Receive-serialize-send loop for one subscription."""
    name = subscription.channel.name
    while True:
        try:
            snapshot = await subscription.recv()
        except Lagged as exc:
            logger.info("Dropping slow viewer on %s: %s", name, exc)
            return CloseReason.LAGGED
        except ChannelClosed:
            return CloseReason.SHUTDOWN

        try:
            message = serialize(snapshot)
        except (TypeError, ValueError):
            logger.exception("Could not serialize %s snapshot, skipping it", name)
            continue

        try:
            await websocket.send_text(message)
        except SEND_ERRORS as exc:
            logger.debug("Send on %s failed: %r", name, exc)
            return CloseReason.DISCONNECTED


async def _wait_for_disconnect(websocket: WebSocket) -> None:
    """Consume viewer messages until the viewer disconnects."""
    while True:
        try:
            message = await websocket.receive()
        except SEND_ERRORS:
            return
        if message["type"] == "websocket.disconnect":
            return


async def _close(websocket: WebSocket, code: int) -> None:
    try:
        await websocket.close(code=code)
    except SEND_ERRORS:
        pass  # Already gone
