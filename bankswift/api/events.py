"""
Server-Sent Events stream of transfer updates for the current user.
"""

import asyncio
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from bankswift.api.deps import get_connections, get_stream_user
from bankswift.models.user import User
from bankswift.services.events import ConnectionManager, format_sse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Events"])

# How often an idle stream checks whether the client went away
DISCONNECT_POLL_SECONDS = 15.0


async def event_stream(request: Request, connections: ConnectionManager, user_id: int):
    sub = connections.subscribe(user_id)
    try:
        yield "retry: 3000\n\n"
        while True:
            try:
                event = await asyncio.wait_for(sub.queue.get(), timeout=DISCONNECT_POLL_SECONDS)
            except asyncio.TimeoutError:
                if await request.is_disconnected():
                    break
                continue
            yield format_sse(event)
    finally:
        connections.unsubscribe(sub)


@router.get("/events")
async def stream_events(
    request: Request,
    current_user: User = Depends(get_stream_user),
    connections: ConnectionManager = Depends(get_connections)
):
    """
    Live `transfer.created` / `transfer.updated` events for transfers that
    touch the caller's accounts.
    """
    return StreamingResponse(
        event_stream(request, connections, current_user.id),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
