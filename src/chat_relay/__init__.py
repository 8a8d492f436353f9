"""Chat Relay: streaming proxy and client for OpenAI-compatible chat completions.

This package provides:
- A FastAPI relay (chat_relay.main) keeping the upstream credential server-side
- Cookie-driven system prompt preferences
- An incremental SSE assembler and conversation store for Python clients

Last Grunted: 10/19/2026 09:40:00 AM UTC
"""

__version__ = "0.1.0"
