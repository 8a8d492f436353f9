"""
Streaming chat relay router.

Implements POST /api/agent:
    - Accepts {"messages": [{"role": ..., "content": ...}, ...]} (or a
      fallback {"prompt": "..."})
    - Prepends a system message built from the preference cookies
    - Forwards the FULL history upstream with stream=true
    - Relays the upstream SSE byte stream to the caller unmodified

Streaming SSE Protocol (forwarded as-is from upstream):
    data: {"choices":[{"delta":{"content":"Hel"}}]}

    data: {"choices":[{"delta":{"content":"lo"}}]}

    data: [DONE]

Per-request state machine:
    Received -> ValidatingConfig -> (ConfigError | CallingUpstream)
             -> (UpstreamError | UpstreamSuccess) -> (Streaming | SingleShot) -> Closed

A single upstream attempt is made per request; the caller owns any resend.

Last Grunted: 10/19/2026 09:40:00 AM UTC
"""
import asyncio
import json
import re
from typing import AsyncIterator, List

import httpx
import structlog
from fastapi import APIRouter, Depends, Request
from fastapi.responses import Response, StreamingResponse
from starlette.background import BackgroundTask

from chat_relay.config import RelaySettings, get_settings
from chat_relay.models import ChatMessage, RelayRequest
from chat_relay.services.errors import NO_STORE_HEADERS, InvalidRequestError
from chat_relay.services.http_client import get_client
from chat_relay.services.preferences import system_prefix_from_cookies
from chat_relay.services.upstream import (
    UpstreamCompletionClient,
    build_upstream_messages,
    require_credentials,
)

logger = structlog.get_logger(__name__)

router = APIRouter()

EVENT_STREAM_HEADERS = {
    "cache-control": "no-store",
    "connection": "keep-alive",
    "x-accel-buffering": "no",
}

MOCK_REPLY = (
    "This is a simulated reply from the mock agent. "
    "Set USE_AGENT_MOCK=false to talk to the configured model."
)
MOCK_TOKEN_DELAY: float = 0.02  # seconds between simulated tokens


def resolve_history(body: RelayRequest) -> List[ChatMessage]:
    """
    Return the history to relay, or raise when the body carries none.

    Raises:
        InvalidRequestError: If neither messages nor a fallback prompt is present
    """
    history = body.resolve_history()
    if not history:
        raise InvalidRequestError("Invalid body: messages[] is required")
    return history


# ============================================================================
# API Endpoints
# ============================================================================

@router.post("/api/agent")
async def relay_agent(
    body: RelayRequest,
    request: Request,
    settings: RelaySettings = Depends(get_settings),
    client: httpx.AsyncClient = Depends(get_client),
):
    """
    Relay a conversation to the upstream completion API.

    Args:
        body: RelayRequest with the conversation history
        request: Incoming request (cookies carry the preferences)
        settings: Relay settings (injected)
        client: Shared HTTP client (injected)

    Returns:
        StreamingResponse (text/event-stream) when streaming, or a
        single-shot text/plain Response when RELAY_STREAM=false

    Raises:
        InvalidRequestError: 400 when no history was provided
        ConfigurationError: 500 when the credential is missing (no upstream call)
        TransportError: 502 when upstream is unreachable or returns non-2xx
        UpstreamProtocolError: 502 when a non-streaming body has no content

    Last Grunted: 10/19/2026 09:40:00 AM UTC
    """
    history = resolve_history(body)

    if settings.use_agent_mock:
        logger.info("relay.agent.mock", message_count=len(history))
        return StreamingResponse(
            mock_event_stream(MOCK_REPLY),
            media_type="text/event-stream",
            headers=EVENT_STREAM_HEADERS,
        )

    require_credentials(settings)

    system_prefix = system_prefix_from_cookies(request.headers.get("cookie"))
    messages = build_upstream_messages(system_prefix, history)
    upstream = UpstreamCompletionClient(client, settings)

    if not settings.relay_stream:
        content = await upstream.complete(messages)
        logger.info("relay.agent.single_shot", content_length=len(content))
        return Response(
            content=content.encode("utf-8"),
            media_type="text/plain; charset=utf-8",
            headers=NO_STORE_HEADERS,
        )

    response = await upstream.open(messages, stream=True)
    logger.info("relay.agent.streaming", upstream_status=response.status_code)

    return StreamingResponse(
        forward_upstream(response),
        media_type="text/event-stream",
        headers=EVENT_STREAM_HEADERS,
        background=BackgroundTask(response.aclose),
    )


async def forward_upstream(response: httpx.Response) -> AsyncIterator[bytes]:
    """
    Yield the upstream body chunk by chunk, then close the upstream response.

    A read failure mid-stream is logged and re-raised so the transfer to
    the caller is aborted rather than ended as if complete.
    """
    forwarded = 0
    try:
        async for chunk in response.aiter_bytes():
            forwarded += len(chunk)
            yield chunk
    except httpx.HTTPError as e:
        logger.warning(
            "relay.stream.interrupted",
            error=str(e),
            bytes_forwarded=forwarded,
        )
        raise
    finally:
        await response.aclose()
        logger.info("relay.stream.closed", bytes_forwarded=forwarded)


async def mock_event_stream(text: str) -> AsyncIterator[str]:
    """Emit *text* word by word in the upstream SSE wire format."""
    for piece in re.findall(r"\S+\s*", text):
        event = {"choices": [{"index": 0, "delta": {"content": piece}}]}
        yield f"data: {json.dumps(event)}\n\n"
        await asyncio.sleep(MOCK_TOKEN_DELAY)
    yield "data: [DONE]\n\n"
