"""
Non-streaming chat relay router for the Copilot chat widget.

Implements POST /api/copilot:
    - Accepts {"messages": [...]} or a fallback {"input": "..."}
    - Forwards the full history upstream with stream=false
    - Returns {"content": "..."} as a single JSON envelope

The translate preference is rendered with the conversation-wide directive.

Last Grunted: 10/19/2026 09:40:00 AM UTC
"""
import httpx
import structlog
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from chat_relay.config import RelaySettings, get_settings
from chat_relay.models import RelayRequest
from chat_relay.routers.agent import resolve_history
from chat_relay.services.errors import NO_STORE_HEADERS
from chat_relay.services.http_client import get_client
from chat_relay.services.preferences import (
    TRANSLATE_CONVERSATION_DIRECTIVE,
    system_prefix_from_cookies,
)
from chat_relay.services.upstream import (
    UpstreamCompletionClient,
    build_upstream_messages,
    require_credentials,
)

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.post("/api/copilot")
async def relay_copilot(
    body: RelayRequest,
    request: Request,
    settings: RelaySettings = Depends(get_settings),
    client: httpx.AsyncClient = Depends(get_client),
) -> JSONResponse:
    """
    Relay a conversation upstream and return the whole reply at once.

    Returns:
        JSONResponse: {"content": "<generated text>"}

    Raises:
        InvalidRequestError: 400 when no history was provided
        ConfigurationError: 500 when the credential is missing
        TransportError: 502 on network failure or non-2xx upstream status
        UpstreamProtocolError: 502 when choices[0].message.content is missing

    Last Grunted: 10/19/2026 09:40:00 AM UTC
    """
    require_credentials(settings)
    history = resolve_history(body)

    system_prefix = system_prefix_from_cookies(
        request.headers.get("cookie"),
        translate_directive=TRANSLATE_CONVERSATION_DIRECTIVE,
    )
    messages = build_upstream_messages(system_prefix, history)

    content = await UpstreamCompletionClient(client, settings).complete(messages)
    logger.info("relay.copilot.complete", content_length=len(content))

    return JSONResponse(content={"content": content}, headers=NO_STORE_HEADERS)
