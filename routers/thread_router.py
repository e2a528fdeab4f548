"""Read-only thread log endpoints and the live event stream.

The stream relays what the process-wide ``event_broadcaster`` receives. Engines
built with ``services.thread.build_relay_engine`` publish to it; an engine
constructed with its own sink does not reach this endpoint.
"""

import asyncio
import json
from typing import AsyncGenerator

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sse_starlette.sse import EventSourceResponse

from config import settings
from infrastructure.context import RequestContextBundle
from infrastructure.database.repositories import ThreadMessageRepository, ThreadRepository
from infrastructure.events import event_broadcaster
from routers.dependencies import get_thread_context_bundle
from schemas import ThreadMessageResponse, ThreadResponse, ThreadTranscriptResponse

router = APIRouter()

PING_INTERVAL_SECONDS = 15.0


def _log_url(thread_id: str) -> str:
    return f"{settings.SELF_URL}/#thread/{thread_id}"


async def _event_generator(
    request: Request,
    subscriber_id: int,
    queue: asyncio.Queue,
) -> AsyncGenerator[dict, None]:
    try:
        while True:
            if await request.is_disconnected():
                break
            try:
                event = await asyncio.wait_for(queue.get(), timeout=PING_INTERVAL_SECONDS)
                yield {"event": event["event"], "data": json.dumps(event["data"])}
            except asyncio.TimeoutError:
                yield {"event": "ping", "data": "{}"}
    finally:
        event_broadcaster.unsubscribe(subscriber_id)


@router.get("/threads/events/stream")
async def stream_thread_events(request: Request) -> EventSourceResponse:
    """Stream ``newMessage`` and ``threadClose`` events for every thread."""
    subscriber_id, queue = event_broadcaster.subscribe()
    return EventSourceResponse(
        _event_generator(request, subscriber_id, queue),
        media_type="text/event-stream",
    )


@router.get("/threads/{thread_id}", response_model=ThreadTranscriptResponse)
async def get_thread_log(
    context_bundle: RequestContextBundle = Depends(get_thread_context_bundle),
) -> ThreadTranscriptResponse:
    thread = await ThreadRepository(context_bundle.db).get_thread(context_bundle.scope.thread_id)
    if thread is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Thread not found")
    messages = await ThreadMessageRepository(context_bundle.db, context_bundle.scope).list_messages()
    return ThreadTranscriptResponse(
        thread=ThreadResponse.model_validate(thread),
        log_url=_log_url(thread.id),
        messages=[ThreadMessageResponse.model_validate(message) for message in messages],
    )


@router.get("/threads/{thread_id}/messages", response_model=list[ThreadMessageResponse])
async def list_thread_messages(
    context_bundle: RequestContextBundle = Depends(get_thread_context_bundle),
) -> list[ThreadMessageResponse]:
    messages = await ThreadMessageRepository(context_bundle.db, context_bundle.scope).list_messages()
    return [ThreadMessageResponse.model_validate(message) for message in messages]
