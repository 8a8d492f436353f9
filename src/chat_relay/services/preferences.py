"""Cookie-backed chat preferences: extraction into a system prompt, and cookie writing."""
from __future__ import annotations

from dataclasses import dataclass
from urllib.parse import quote, unquote

from starlette.requests import cookie_parser
from starlette.responses import Response

TRANSLATE_COOKIE = "translateLang"
NOTE_COOKIE = "injectNote"
PREFERENCE_COOKIES = (TRANSLATE_COOKIE, NOTE_COOKIE)

DEFAULT_SYSTEM_PREFIX = "You are a helpful, concise assistant."

TRANSLATE_DIRECTIVE = "You must answer in {lang}."
TRANSLATE_CONVERSATION_DIRECTIVE = (
    "You must answer in {lang} and consider the whole conversation in that language."
)


@dataclass(frozen=True)
class PreferenceBundle:
    translate_language: str | None = None
    injected_note: str | None = None

    def is_empty(self) -> bool:
        return not (self.translate_language or self.injected_note)


def parse_cookie_header(header: str | None) -> dict[str, str]:
    """Split a raw Cookie header into name -> raw value, as request.cookies does."""
    if not header:
        return {}
    return cookie_parser(header)


def extract_preferences(cookie_header: str | None) -> PreferenceBundle:
    """Build a PreferenceBundle from the known cookie names; everything else is ignored."""
    cookies = parse_cookie_header(cookie_header)

    def _decoded(name: str) -> str | None:
        raw = cookies.get(name, "")
        value = unquote(raw).strip() if raw else ""
        return value or None

    return PreferenceBundle(
        translate_language=_decoded(TRANSLATE_COOKIE),
        injected_note=_decoded(NOTE_COOKIE),
    )


def compose_system_prefix(
    bundle: PreferenceBundle,
    translate_directive: str = TRANSLATE_DIRECTIVE,
) -> str:
    """Render present directives as sentences joined by spaces, or the default prefix."""
    parts: list[str] = []
    if bundle.translate_language:
        parts.append(translate_directive.format(lang=bundle.translate_language))
    if bundle.injected_note:
        parts.append(bundle.injected_note)
    return " ".join(parts) if parts else DEFAULT_SYSTEM_PREFIX


def system_prefix_from_cookies(
    cookie_header: str | None,
    translate_directive: str = TRANSLATE_DIRECTIVE,
) -> str:
    return compose_system_prefix(extract_preferences(cookie_header), translate_directive)


def write_preference_cookie(response: Response, name: str, value: str) -> None:
    """
    Set (or clear, for an empty value) one preference cookie.

    Values are percent-encoded; cookies are Path=/, HttpOnly, SameSite=Lax.
    """
    if name not in PREFERENCE_COOKIES:
        raise ValueError(f"Unknown preference cookie: {name}")
    if not value:
        response.delete_cookie(name, path="/", httponly=True, samesite="lax")
        return
    response.set_cookie(
        name,
        quote(value, safe=""),
        path="/",
        httponly=True,
        samesite="lax",
    )
