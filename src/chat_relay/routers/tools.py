"""
Auxiliary tool actions router.

Implements POST /api/tools with body {"action": "...", "payload": {...}}:

    summarize    {messages, limit=5}        -> {"summary": "..."}
    fetch        {url}                      -> {"ok": true, "status": 200, "summary": "..."}
    context.set  {key, value}               -> {"ok": true}
    context.get  {key}                      -> {"value": "..." | null}
    set.prefs    {translateLang?, injectNote?} -> {"ok": true, "prefs": {...}}

Context entries are scoped to the caller's chat session (chatSession
cookie, issued on first use) and kept in the injected ContextStore.
set.prefs writes the cookies read back by the relay routes.

Last Grunted: 10/19/2026 09:40:00 AM UTC
"""
import re
import secrets
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List
from urllib.parse import urlparse

import httpx
import structlog
from fastapi import APIRouter, Depends, Request, Response
from pydantic import ValidationError

from chat_relay.config import RelaySettings, get_settings
from chat_relay.models import ChatMessage, ToolRequest
from chat_relay.services.context_store import ContextStore, context_key, get_context_store
from chat_relay.services.errors import InvalidRequestError, TransportError
from chat_relay.services.http_client import get_client
from chat_relay.services.preferences import (
    NOTE_COOKIE,
    TRANSLATE_COOKIE,
    write_preference_cookie,
)

logger = structlog.get_logger(__name__)

router = APIRouter()

SESSION_COOKIE = "chatSession"
_SESSION_ID_PATTERN = re.compile(r"^[0-9a-f]{32}$")

DEFAULT_SUMMARY_LIMIT = 5
ELLIPSIS = "…"


@dataclass
class ToolContext:
    request: Request
    response: Response
    settings: RelaySettings
    client: httpx.AsyncClient
    store: ContextStore

    def session_id(self) -> str:
        """Return the caller's session id, issuing a new session cookie if needed."""
        current = self.request.cookies.get(SESSION_COOKIE, "")
        if _SESSION_ID_PATTERN.match(current):
            return current
        session_id = secrets.token_hex(16)
        self.response.set_cookie(
            SESSION_COOKIE,
            session_id,
            path="/",
            httponly=True,
            samesite="lax",
        )
        logger.info("tools.session.issued")
        return session_id


ToolHandler = Callable[[Dict[str, Any], ToolContext], Awaitable[Dict[str, Any]]]


def truncate(text: str, max_chars: int) -> str:
    if len(text) <= max_chars:
        return text
    return text[:max_chars] + ELLIPSIS


def _require_str(payload: Dict[str, Any], name: str) -> str:
    value = payload.get(name)
    if not isinstance(value, str) or not value:
        raise InvalidRequestError(f"Missing {name}")
    return value


# ============================================================================
# Tool Handlers
# ============================================================================

async def summarize(payload: Dict[str, Any], ctx: ToolContext) -> Dict[str, Any]:
    raw_messages = payload.get("messages") or []
    if not isinstance(raw_messages, list):
        raise InvalidRequestError("Invalid messages: expected a list")
    try:
        messages: List[ChatMessage] = [ChatMessage.model_validate(m) for m in raw_messages]
    except ValidationError as e:
        raise InvalidRequestError("Invalid messages", body=str(e)) from e

    try:
        limit = int(payload.get("limit") or DEFAULT_SUMMARY_LIMIT)
    except (TypeError, ValueError, OverflowError):
        limit = DEFAULT_SUMMARY_LIMIT

    last = messages[-max(1, limit):]
    merged = "\n".join(f"{m.role}: {m.content}" for m in last)
    return {"summary": truncate(merged, ctx.settings.summary_max_chars)}


async def fetch(payload: Dict[str, Any], ctx: ToolContext) -> Dict[str, Any]:
    url = _require_str(payload, "url")
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise InvalidRequestError("Invalid url: expected an absolute http(s) URL")

    try:
        res = await ctx.client.get(url, follow_redirects=True)
    except httpx.HTTPError as e:
        logger.warning("tools.fetch.failed", url=url, error=str(e))
        raise TransportError("Fetch failed", body=str(e)) from e

    collapsed = re.sub(r"\s+", " ", res.text).strip()
    logger.info("tools.fetch.complete", url=url, status_code=res.status_code, length=len(collapsed))
    return {
        "ok": True,
        "status": res.status_code,
        "summary": truncate(collapsed, ctx.settings.fetch_max_chars),
    }


async def context_set(payload: Dict[str, Any], ctx: ToolContext) -> Dict[str, Any]:
    key = _require_str(payload, "key")
    value = payload.get("value")
    await ctx.store.set(context_key(ctx.session_id(), key), "" if value is None else str(value))
    logger.info("tools.context.set", key=key)
    return {"ok": True}


async def context_get(payload: Dict[str, Any], ctx: ToolContext) -> Dict[str, Any]:
    key = _require_str(payload, "key")
    value = await ctx.store.get(context_key(ctx.session_id(), key))
    return {"value": value}


async def set_prefs(payload: Dict[str, Any], ctx: ToolContext) -> Dict[str, Any]:
    prefs: Dict[str, str] = {}
    for name in (TRANSLATE_COOKIE, NOTE_COOKIE):
        if name not in payload:
            continue
        value = payload[name]
        prefs[name] = "" if value is None else str(value).strip()
        write_preference_cookie(ctx.response, name, prefs[name])

    if not prefs:
        raise InvalidRequestError("Missing preferences")

    logger.info("tools.prefs.set", names=sorted(prefs))
    return {"ok": True, "prefs": prefs}


TOOL_HANDLERS: Dict[str, ToolHandler] = {
    "summarize": summarize,
    "fetch": fetch,
    "context.set": context_set,
    "context.get": context_get,
    "set.prefs": set_prefs,
}


# ============================================================================
# API Endpoints
# ============================================================================

@router.post("/api/tools")
async def run_tool(
    body: ToolRequest,
    request: Request,
    response: Response,
    settings: RelaySettings = Depends(get_settings),
    client: httpx.AsyncClient = Depends(get_client),
    store: ContextStore = Depends(get_context_store),
) -> Dict[str, Any]:
    """
    Dispatch one tool action.

    Cookies set on the injected *response* (session id, preferences) are
    merged into the returned JSON response by FastAPI.

    Raises:
        InvalidRequestError: 400 for a missing or unknown action, or a bad payload
        TransportError: 502 when the fetch action cannot reach the URL

    Last Grunted: 10/19/2026 09:40:00 AM UTC
    """
    if not body.action:
        raise InvalidRequestError("Missing action")

    handler = TOOL_HANDLERS.get(body.action)
    if handler is None:
        raise InvalidRequestError(f"Unknown action: {body.action}")

    response.headers["cache-control"] = "no-store"
    ctx = ToolContext(
        request=request,
        response=response,
        settings=settings,
        client=client,
        store=store,
    )
    return await handler(body.payload or {}, ctx)
