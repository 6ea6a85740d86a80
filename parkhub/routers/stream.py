# parkhub/routers/stream.py
"""
Server-Sent Events feed of committed space transitions.
Push alternative to polling GET /spaces; clients that miss events re-poll.
"""

import asyncio
import json

from fastapi import APIRouter, Request
from fastapi.responses import StreamingResponse

from parkhub.services.change_feed import AsyncQueueSubscriber
from parkhub.utils.logger import get_logger

router = APIRouter()
logger = get_logger(__name__)

KEEPALIVE_SECONDS = 15


@router.get("/spaces/stream", summary="Live space changes (text/event-stream)")
async def stream_space_changes(request: Request):
    feed = request.app.state.change_feed
    subscriber = AsyncQueueSubscriber(asyncio.get_running_loop())
    unsubscribe = feed.subscribe(subscriber)
    logger.info(f"SSE client connected: {request.client.host if request.client else '?'}")

    async def events():
        try:
            yield "retry: 5000\n\n"
            while not await request.is_disconnected():
                change = await subscriber.get(timeout=KEEPALIVE_SECONDS)
                if change is None:
                    yield ": keep-alive\n\n"
                    continue
                yield f"event: space\ndata: {json.dumps(change.to_dict())}\n\n"
        finally:
            unsubscribe()
            logger.info("SSE client disconnected")

    return StreamingResponse(events(), media_type="text/event-stream",
                             headers={"Cache-Control": "no-cache"})
