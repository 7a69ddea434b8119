"""Server-sent events framing for turn event streams."""

from __future__ import annotations

import json
import logging
from contextlib import aclosing
from typing import Any, AsyncIterator

from fastapi.responses import StreamingResponse

from orchestrator.events import TurnEvent, TurnFailed

logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}


def encode_event(data: dict[str, Any]) -> str:
    return f"data: {json.dumps(data)}\n\n"


async def _frames(events: AsyncIterator[TurnEvent]) -> AsyncIterator[str]:
    try:
        async with aclosing(events):
            async for event in events:
                yield encode_event(event.to_wire())
    except Exception as e:
        logger.exception("Event stream failed")
        yield encode_event(TurnFailed(message=f"Internal error: {e}").to_wire())


def sse_response(events: AsyncIterator[TurnEvent]) -> StreamingResponse:
    return StreamingResponse(_frames(events), media_type="text/event-stream", headers=SSE_HEADERS)
