"""
Pydantic data model shared by the relay routes and the Python client.

Two groups of models live here:

    Conversation model:
        - ChatMessage: one role/content turn (role is user, assistant or system)
        - RelayRequest: body accepted by POST /api/agent and POST /api/copilot
        - ToolRequest: body accepted by POST /api/tools

    Upstream wire model (OpenAI-compatible Chat Completions):
        - ChatCompletion: non-streaming response, {"choices": [{"message": {...}}]}
        - ChatCompletionChunk: one streaming SSE event,
          {"choices": [{"delta": {"content": "..."}}]}

Upstream payloads are parsed into these models at the boundary instead of
being probed field by field. Unknown fields are ignored so additional vendor
fields do not break parsing.

Last Grunted: 10/19/2026 09:40:00 AM UTC
"""
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

Role = Literal["user", "assistant", "system"]


# ============================================================================
# Conversation Models
# ============================================================================

class ChatMessage(BaseModel):
    """
    A single conversation turn.

    Instances are frozen: the client-side conversation store replaces the
    trailing assistant message with a new instance instead of mutating it.

    Attributes:
        role: The role of the message author (user, assistant, system)
        content: The text of the message

    Last Grunted: 10/19/2026 09:40:00 AM UTC
    """
    model_config = ConfigDict(frozen=True)

    role: Role
    content: str

    def extend(self, fragment: str) -> "ChatMessage":
        """Return a copy of this message with *fragment* appended."""
        return self.model_copy(update={"content": self.content + fragment})


class RelayRequest(BaseModel):
    """
    Relay endpoint request body.

    Attributes:
        messages: Ordered conversation history. Optional when a fallback
            string is given.
        prompt: Standalone prompt used when messages is absent or empty
            (POST /api/agent).
        input: Standalone input used when messages is absent or empty
            (POST /api/copilot).

    Last Grunted: 10/19/2026 09:40:00 AM UTC
    """
    messages: Optional[List[ChatMessage]] = None
    prompt: Optional[str] = None
    input: Optional[str] = None

    def resolve_history(self) -> List[ChatMessage]:
        """
        Return the history to forward upstream.

        Falls back to a single user message built from prompt or input when
        no messages were sent. Returns an empty list when nothing usable
        was provided; callers treat that as an invalid request.
        """
        if self.messages:
            return list(self.messages)
        fallback = self.prompt or self.input
        if fallback and fallback.strip():
            return [ChatMessage(role="user", content=fallback)]
        return []


class ToolRequest(BaseModel):
    """Auxiliary tool invocation: {"action": "...", "payload": {...}}."""
    action: Optional[str] = None
    payload: Optional[Dict[str, Any]] = None


# ============================================================================
# Upstream Wire Models
# ============================================================================
# Only the fields the relay reads are declared. Everything else (id, model,
# index, finish_reason, usage, vendor extensions) is ignored whatever its type.

class CompletionMessage(BaseModel):
    content: Optional[str] = None


class CompletionChoice(BaseModel):
    message: Optional[CompletionMessage] = None


class ChatCompletion(BaseModel):
    """
    Non-streaming Chat Completions response.

    Last Grunted: 10/19/2026 09:40:00 AM UTC
    """
    choices: List[CompletionChoice] = Field(default_factory=list)

    def first_content(self) -> Optional[str]:
        """Return choices[0].message.content, or None when absent or empty."""
        if not self.choices or self.choices[0].message is None:
            return None
        return self.choices[0].message.content or None


class ChunkDelta(BaseModel):
    content: Optional[str] = None


class ChunkChoice(BaseModel):
    delta: Optional[ChunkDelta] = None


class ChatCompletionChunk(BaseModel):
    """
    One streaming event payload (the JSON after ``data: ``).

    Usage-only chunks carry an empty choices list and yield no text.

    Last Grunted: 10/19/2026 09:40:00 AM UTC
    """
    choices: List[ChunkChoice] = Field(default_factory=list)

    def delta_text(self) -> Optional[str]:
        """Return choices[0].delta.content, or None when absent or empty."""
        if not self.choices or self.choices[0].delta is None:
            return None
        return self.choices[0].delta.content or None
