"""Request body parsing keyed on the content type."""

from __future__ import annotations

import codecs
import json
import re
from dataclasses import dataclass
from typing import Any

from fnruntime.forms import parse_query
from fnruntime.settings import Settings

DEFAULT_CONTENT_TYPE = "text/plain"

_SIZE_PATTERN = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(b|kb|mb|gb|tb|pb)?\s*$", re.IGNORECASE)
_UNITS = {
    "b": 1,
    "kb": 1 << 10,
    "mb": 1 << 20,
    "gb": 1 << 30,
    "tb": 1 << 40,
    "pb": 1 << 50,
}


class BodyParseError(Exception):
    """Raised when a request body cannot be turned into an event body."""

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message


def parse_size(value: str | int) -> int:
    """Convert ``100kb`` style limits into a byte count."""

    if isinstance(value, int):
        return value
    match = _SIZE_PATTERN.match(value)
    if match is None:
        raise ValueError(f"invalid size limit: {value!r}")
    number, unit = match.groups()
    return int(float(number) * _UNITS[(unit or "b").lower()])


@dataclass(slots=True, frozen=True)
class BodyLimits:
    raw: int
    json: int
    text: int
    form: int

    @classmethod
    def from_settings(cls, settings: Settings) -> BodyLimits:
        return cls(
            raw=parse_size(settings.max_raw_size),
            json=parse_size(settings.max_json_size),
            text=parse_size(settings.max_text_size),
            form=parse_size(settings.max_form_size),
        )


@dataclass(slots=True, frozen=True)
class MediaType:
    mime: str
    params: dict[str, str]

    @property
    def charset(self) -> str | None:
        return self.params.get("charset")


def parse_media_type(content_type: str) -> MediaType:
    mime, *raw_params = content_type.split(";")
    params: dict[str, str] = {}
    for raw in raw_params:
        name, sep, value = raw.partition("=")
        if sep:
            params[name.strip().lower()] = value.strip().strip('"')
    return MediaType(mime=mime.strip().lower(), params=params)


class BodyParser:
    """Pick a decoder for the request from its content type and the configured mode."""

    def __init__(self, settings: Settings) -> None:
        self.raw_mode = settings.raw_body
        self.extended = settings.urlencoded_extended
        self.limits = BodyLimits.from_settings(settings)

    def limit_for(self, content_type: str) -> int | None:
        """Byte limit for bodies of ``content_type``; None when such bodies are not parsed."""
        media = parse_media_type(content_type or DEFAULT_CONTENT_TYPE)
        if self.raw_mode:
            return self.limits.raw
        if media.mime.startswith("text/"):
            return self.limits.text
        if _is_json(media.mime):
            return self.limits.json
        if media.mime == "application/x-www-form-urlencoded":
            return self.limits.form
        return None

    def parse(self, content_type: str, payload: bytes) -> Any:
        media = parse_media_type(content_type or DEFAULT_CONTENT_TYPE)

        if self.raw_mode:
            self._check_limit(payload, self.limits.raw)
            return payload

        if media.mime.startswith("text/"):
            self._check_limit(payload, self.limits.text)
            return _decode(payload, media.charset or "utf-8")

        if _is_json(media.mime):
            self._check_limit(payload, self.limits.json)
            return _parse_json(payload, media.charset or "utf-8")

        if media.mime == "application/x-www-form-urlencoded":
            self._check_limit(payload, self.limits.form)
            if not payload:
                return {}
            text = _decode(payload, media.charset or "utf-8")
            return parse_query(text, extended=self.extended)

        return {}

    @staticmethod
    def _check_limit(payload: bytes, limit: int) -> None:
        if len(payload) > limit:
            raise BodyParseError(413, "request entity too large")


def _is_json(mime: str) -> bool:
    return mime == "application/json" or (mime.startswith("application/") and mime.endswith("+json"))


def _decode(payload: bytes, charset: str) -> str:
    try:
        codecs.lookup(charset)
    except LookupError:
        raise BodyParseError(415, f'unsupported charset "{charset.upper()}"') from None
    try:
        return payload.decode(charset)
    except UnicodeDecodeError as exc:
        raise BodyParseError(400, f"invalid {charset} body: {exc.reason}") from None


def _parse_json(payload: bytes, charset: str) -> Any:
    if not payload:
        return {}
    text = _decode(payload, charset).lstrip()
    if not text:
        return {}
    # Strict mode: only objects and arrays at the top level.
    if text[0] not in "{[":
        raise BodyParseError(400, f"Unexpected token {text[0]!r} in JSON at position 0")
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        raise BodyParseError(400, f"{exc.msg} in JSON at position {exc.pos}") from None
