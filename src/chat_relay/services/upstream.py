"""
Upstream Completion Client.

Wraps a single HTTP POST to the configured OpenAI-compatible Chat
Completions endpoint. The URL and bearer credential come from server-side
configuration only; callers never see them.

Request payload:
{
    "model": "gpt-4o-mini",
    "messages": [{"role": "system", "content": "..."}, ...],
    "temperature": 0.7,
    "max_tokens": 300,
    "stream": true
}

One attempt per call: no retries, no caching, no rate limiting. Failures
are classified at this boundary:
    - connection/transfer failure       -> TransportError
    - non-success HTTP status           -> UpstreamStatusError (status + raw body)
    - 2xx with an unexpected JSON shape -> UpstreamProtocolError (raw body)

Last Grunted: 10/19/2026 09:40:00 AM UTC
"""
import json
from typing import Any, Dict, List, Sequence

import httpx
import structlog
from pydantic import ValidationError

from chat_relay.config import RelaySettings
from chat_relay.models import ChatCompletion, ChatMessage
from chat_relay.services.errors import (
    ConfigurationError,
    TransportError,
    UpstreamProtocolError,
    UpstreamStatusError,
)

logger = structlog.get_logger(__name__)


def require_credentials(settings: RelaySettings) -> None:
    """
    Fail fast when the upstream URL or credential is not configured.

    Raises:
        ConfigurationError: If OPENAI_API_KEY or OPENAI_API_URL is unset or empty
    """
    if not settings.has_credentials():
        logger.error(
            "relay.config.missing_credentials",
            has_api_key=bool(settings.openai_api_key),
            has_api_url=bool(settings.openai_api_url),
        )
        raise ConfigurationError("Missing OPENAI_API_KEY")


def build_upstream_messages(
    system_prefix: str,
    history: Sequence[ChatMessage],
) -> List[Dict[str, str]]:
    """
    Prepend the synthesized system message to the full conversation history.

    Args:
        system_prefix: System prompt composed from preferences (or the default)
        history: The complete, ordered conversation history

    Returns:
        List of role/content dicts in conversation order
    """
    return [{"role": "system", "content": system_prefix}] + [
        {"role": m.role, "content": m.content} for m in history
    ]


def build_completion_payload(
    messages: List[Dict[str, str]],
    *,
    stream: bool,
    settings: RelaySettings,
) -> Dict[str, Any]:
    """Build the Chat Completions request body from configuration constants."""
    return {
        "model": settings.model,
        "messages": messages,
        "temperature": settings.temperature,
        "max_tokens": settings.max_tokens,
        "stream": stream,
    }


class UpstreamCompletionClient:
    """
    Single-call client for the upstream completion endpoint.

    Attributes:
        client: Shared httpx.AsyncClient (pooled, injected)
        settings: Relay settings holding URL, credential and limits

    Usage:
        upstream = UpstreamCompletionClient(client, settings)
        response = await upstream.open(messages, stream=True)
        try:
            async for chunk in response.aiter_bytes():
                ...
        finally:
            await response.aclose()

    Last Grunted: 10/19/2026 09:40:00 AM UTC
    """

    def __init__(self, client: httpx.AsyncClient, settings: RelaySettings) -> None:
        self.client = client
        self.settings = settings

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.settings.openai_api_key}",
            "Content-Type": "application/json",
        }

    async def open(
        self,
        messages: List[Dict[str, str]],
        *,
        stream: bool,
    ) -> httpx.Response:
        """
        Issue the upstream POST and return the established response.

        The response body is not read; the caller owns the response and
        must close it. Non-success responses are read, closed and raised.

        Args:
            messages: Upstream messages (system prefix + history)
            stream: Value of the upstream "stream" flag

        Returns:
            httpx.Response: Open response with a 2xx status

        Raises:
            TransportError: If the connection or request fails
            UpstreamStatusError: If upstream returns a non-success status

        Last Grunted: 10/19/2026 09:40:00 AM UTC
        """
        payload = build_completion_payload(messages, stream=stream, settings=self.settings)
        request = self.client.build_request(
            "POST",
            self.settings.openai_api_url,
            json=payload,
            headers=self._headers(),
        )

        logger.info(
            "relay.upstream.call",
            model=self.settings.model,
            message_count=len(messages),
            stream=stream,
            has_api_key=bool(self.settings.openai_api_key),
        )

        try:
            response = await self.client.send(request, stream=True)
        except httpx.HTTPError as e:
            logger.warning("relay.upstream.unreachable", error=str(e), error_type=type(e).__name__)
            raise TransportError("Upstream unreachable", body=str(e)) from e

        if not response.is_success:
            text = await _read_error_body(response)
            logger.warning(
                "relay.upstream.error",
                status_code=response.status_code,
                body=text[:200],
            )
            raise UpstreamStatusError(
                "Upstream error",
                upstream_status=response.status_code,
                body=text,
            )

        return response

    async def complete(self, messages: List[Dict[str, str]]) -> str:
        """
        Run a non-streaming completion and return the generated text.

        Args:
            messages: Upstream messages (system prefix + history)

        Returns:
            str: choices[0].message.content

        Raises:
            TransportError: If the call fails or the body cannot be read
            UpstreamStatusError: If upstream returns a non-success status
            UpstreamProtocolError: If the body is not JSON or lacks the content field

        Last Grunted: 10/19/2026 09:40:00 AM UTC
        """
        response = await self.open(messages, stream=False)
        try:
            raw = await response.aread()
        except httpx.HTTPError as e:
            raise TransportError("Upstream read failed", body=str(e)) from e
        finally:
            await response.aclose()

        return parse_completion_body(raw)


def parse_completion_body(raw: bytes) -> str:
    """
    Convert a non-streaming upstream body into the generated text.

    Raises:
        UpstreamProtocolError: On non-JSON bodies, vendor error objects,
            or a missing/empty choices[0].message.content
    """
    text = raw.decode("utf-8", errors="replace")
    try:
        data = json.loads(text)
    except ValueError:
        logger.warning("relay.upstream.non_json", body=text[:200])
        raise UpstreamProtocolError("Unexpected response format", body=text)

    if isinstance(data, dict) and data.get("error") and not data.get("choices"):
        logger.warning("relay.upstream.api_error", details=data["error"])
        raise UpstreamProtocolError("Upstream API error", details=data["error"])

    try:
        content = ChatCompletion.model_validate(data).first_content()
    except ValidationError:
        content = None

    if content is None:
        logger.warning("relay.upstream.unexpected_format", body=text[:200])
        raise UpstreamProtocolError("Unexpected response format", body=text)

    return content


async def _read_error_body(response: httpx.Response) -> str:
    """Read and close a failed upstream response, returning its text."""
    try:
        raw = await response.aread()
        return raw.decode("utf-8", errors="replace")
    except httpx.HTTPError:
        return ""
    finally:
        await response.aclose()
