"""Python chat client for the relay.

Drives one chat turn end to end: append the user message, POST the full
history to /api/agent, fold the streamed fragments into the trailing
assistant message, and convert any failure into a visible
``Error: ...`` assistant message.

Example::

    async with ChatSession.connect("http://localhost:3000") as chat:
        await chat.set_translation("English")
        reply = await chat.send("Bonjour !")
        print(reply.content)
"""
from __future__ import annotations

from typing import Any, Dict, Optional

import httpx
import structlog

from chat_relay.client.assembler import iter_fragments, iter_text
from chat_relay.client.conversation import Conversation
from chat_relay.models import ChatMessage

logger = structlog.get_logger(__name__)

AGENT_PATH = "/api/agent"
TOOLS_PATH = "/api/tools"


class RelayResponseError(Exception):
    """The relay answered with a non-success status."""

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        data = None
    if isinstance(data, dict) and data.get("error"):
        return str(data["error"])
    return f"HTTP {response.status_code}"


class ChatSession:
    """A conversation bound to one relay.

    Attributes:
        client: httpx.AsyncClient with the relay as base_url; its cookie
            jar carries the preference and session cookies
        conversation: The chat state store
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        conversation: Optional[Conversation] = None,
    ) -> None:
        self.client = client
        self.conversation = conversation or Conversation()

    @classmethod
    def connect(cls, base_url: str, timeout: float = 120.0) -> "ChatSession":
        client = httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(timeout, connect=10.0),
        )
        return cls(client)

    async def aclose(self) -> None:
        await self.client.aclose()

    async def __aenter__(self) -> "ChatSession":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # Chat
    # ------------------------------------------------------------------

    async def send(self, text: str) -> ChatMessage:
        """Run one turn and return the final trailing assistant message.

        Raises:
            TurnInProgressError: If another turn is still streaming
        """
        conversation = self.conversation
        token = conversation.begin_turn(text)
        try:
            async with self.client.stream("POST", AGENT_PATH, json=token.payload()) as response:
                if not response.is_success:
                    await response.aread()
                    raise RelayResponseError(response.status_code, _error_message(response))

                content_type = response.headers.get("content-type", "")
                if content_type.startswith("text/event-stream"):
                    fragments = iter_fragments(response.aiter_bytes())
                else:
                    fragments = iter_text(response.aiter_bytes())

                async for fragment in fragments:
                    conversation.apply_fragment(token, fragment)
        except (httpx.HTTPError, RelayResponseError) as e:
            logger.warning(
                "chat.turn.failed",
                generation=token.generation,
                error_type=type(e).__name__,
                error=str(e),
            )
            conversation.fail_turn(token, str(e) or type(e).__name__)
        finally:
            conversation.finish_turn(token)

        return conversation.messages[-1]

    def reset(self) -> None:
        self.conversation.reset()

    # ------------------------------------------------------------------
    # Tools
    # ------------------------------------------------------------------

    async def call_tool(self, action: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """POST one tool action and return its JSON result.

        Raises:
            RelayResponseError: If the relay rejects the action
            httpx.HTTPError: If the relay cannot be reached
        """
        response = await self.client.post(
            TOOLS_PATH,
            json={"action": action, "payload": payload or {}},
        )
        if not response.is_success:
            raise RelayResponseError(response.status_code, _error_message(response))
        return response.json()

    async def summarize_last(self, n: int = 5) -> str:
        recent = self.conversation.history()[-max(1, n):]
        data = await self.call_tool("summarize", {"messages": recent, "limit": n})
        note = f"(Summary) {data.get('summary') or 'nothing to summarize'}"
        self.conversation.add_assistant_note(note)
        return note

    async def set_translation(self, language: str) -> str:
        await self.call_tool("set.prefs", {"translateLang": language})
        note = f"Language set to {language}. Next replies will be in {language}."
        self.conversation.add_assistant_note(note)
        return note

    async def remember(self, key: str, value: str) -> None:
        await self.call_tool("context.set", {"key": key, "value": value})

    async def recall(self, key: str) -> Optional[str]:
        data = await self.call_tool("context.get", {"key": key})
        return data.get("value")
