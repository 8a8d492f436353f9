"""Python chat client for the relay: stream assembly, conversation state and session."""
from chat_relay.client.assembler import StreamAssembler, assemble, iter_fragments, parse_event_line
from chat_relay.client.conversation import Conversation, TurnInProgressError, TurnToken
from chat_relay.client.session import ChatSession, RelayResponseError

__all__ = [
    "ChatSession",
    "Conversation",
    "RelayResponseError",
    "StreamAssembler",
    "TurnInProgressError",
    "TurnToken",
    "assemble",
    "iter_fragments",
    "parse_event_line",
]
