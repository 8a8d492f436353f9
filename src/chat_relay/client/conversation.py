"""Client-side chat state: an ordered, append-only list of messages.

The only in-place change is growth of the trailing assistant message while
a reply streams in, and even that replaces the tail with a new frozen
message instead of mutating it. At most one turn is in flight: every turn
gets a generation number, and fragments tagged with a stale generation
(superseded, reset or failed turns) are dropped.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

import structlog

from chat_relay.models import ChatMessage

logger = structlog.get_logger(__name__)

ERROR_PREFIX = "Error: "


class TurnInProgressError(RuntimeError):
    """Raised when a new turn starts while another one is still streaming."""


@dataclass(frozen=True)
class TurnToken:
    """Handle for one in-flight turn.

    Attributes:
        generation: Turn number; only the active generation may write
        request_messages: History to send upstream (ends with the user message)
    """
    generation: int
    request_messages: Tuple[ChatMessage, ...]

    def payload(self) -> Dict[str, List[Dict[str, str]]]:
        return {"messages": [m.model_dump() for m in self.request_messages]}


class Conversation:
    def __init__(self, messages: Iterable[ChatMessage] = ()) -> None:
        self._messages: Tuple[ChatMessage, ...] = tuple(messages)
        self._generation = 0
        self._active: Optional[int] = None

    @property
    def messages(self) -> Tuple[ChatMessage, ...]:
        return self._messages

    @property
    def loading(self) -> bool:
        return self._active is not None

    @property
    def generation(self) -> int:
        return self._generation

    def history(self) -> List[Dict[str, str]]:
        return [m.model_dump() for m in self._messages]

    def is_current(self, token: TurnToken) -> bool:
        return self._active is not None and token.generation == self._active

    def begin_turn(self, text: str) -> TurnToken:
        """Append the user message and an empty assistant placeholder.

        Raises:
            TurnInProgressError: If a previous turn has not finished
            ValueError: If *text* is blank
        """
        if self.loading:
            raise TurnInProgressError("A reply is still streaming")
        content = text.strip()
        if not content:
            raise ValueError("Cannot send an empty message")

        self._generation += 1
        self._active = self._generation
        self._messages = self._messages + (ChatMessage(role="user", content=content),)
        token = TurnToken(self._generation, self._messages)
        self._messages = self._messages + (ChatMessage(role="assistant", content=""),)
        return token

    def apply_fragment(self, token: TurnToken, fragment: str) -> bool:
        """Append *fragment* to the trailing assistant message.

        Returns False (and changes nothing) for stale tokens, empty fragments,
        or when the last message is not an assistant message. begin_turn always
        appends a placeholder, so the last case only arises if the message
        tuple was replaced from outside; the fragment is dropped, not raised.
        """
        if not fragment or not self.is_current(token):
            return False
        if not self._messages or self._messages[-1].role != "assistant":
            logger.debug("conversation.fragment.dropped", generation=token.generation)
            return False
        self._messages = self._messages[:-1] + (self._messages[-1].extend(fragment),)
        return True

    def finish_turn(self, token: TurnToken) -> None:
        if self.is_current(token):
            self._active = None

    def fail_turn(self, token: TurnToken, error: str) -> None:
        """End the turn with a synthetic ``Error: ...`` assistant message.

        An empty assistant placeholder for this turn is removed first; a
        partially streamed reply is kept.
        """
        if not self.is_current(token):
            return
        messages = self._messages
        if messages and messages[-1].role == "assistant" and messages[-1].content == "":
            messages = messages[:-1]
        self._messages = messages + (ChatMessage(role="assistant", content=f"{ERROR_PREFIX}{error}"),)
        self._active = None

    def add_assistant_note(self, text: str) -> None:
        """Append a synthetic assistant message, e.g. a tool result."""
        if self.loading:
            raise TurnInProgressError("A reply is still streaming")
        self._messages = self._messages + (ChatMessage(role="assistant", content=text),)

    def reset(self) -> None:
        """Clear the conversation. Any in-flight turn becomes stale."""
        self._messages = ()
        self._active = None
        self._generation += 1
