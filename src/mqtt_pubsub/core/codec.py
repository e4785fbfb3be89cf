"""
Payload codec: JSON documents carried over a configurable encoding.

The encoding is either a text encoding (utf-8, latin-1, utf-16, ...)
applied to the JSON text, or a bytes-to-bytes codec (base64, hex, ...)
applied to the UTF-8 JSON bytes.
"""

import codecs
from typing import Any

from pydantic_core import from_json, to_json

JSON_ESCAPE = "mqtt_pubsub.json_escape"


def _escape_char(char: str) -> str:
    code = ord(char)
    if code > 0xFFFF:
        code -= 0x10000
        return "\\u%04x\\u%04x" % (0xD800 + (code >> 10), 0xDC00 + (code & 0x3FF))
    return "\\u%04x" % code


def _json_escape(exc: UnicodeError) -> tuple[str, int]:
    """Replace characters the encoding cannot represent with JSON \\u escapes."""
    if not isinstance(exc, UnicodeEncodeError):
        raise exc
    chunk = exc.object[exc.start : exc.end]
    return "".join(_escape_char(c) for c in chunk), exc.end


codecs.register_error(JSON_ESCAPE, _json_escape)


def is_text_encoding(encoding: str) -> bool:
    try:
        "".encode(encoding)
    except LookupError:
        return False
    return True


def is_binary_codec(encoding: str) -> bool:
    """Check if a codec maps bytes to bytes (base64, hex, zlib, ...)."""
    try:
        return isinstance(codecs.encode(b"", encoding), bytes)
    except (LookupError, TypeError, ValueError):
        return False


class PayloadCodec:
    """Encode values to bytes for the transport and decode them back."""

    def __init__(self, encoding: str = "utf-8") -> None:
        self._encoding = encoding
        self._binary = not is_text_encoding(encoding)

    @property
    def encoding(self) -> str:
        return self._encoding

    def encode(self, payload: Any) -> bytes:
        """
        Serialize a payload as JSON in the configured encoding.

        Raises:
            ValueError: If the payload is not JSON serializable
        """
        data = to_json(payload)
        if self._binary:
            return codecs.encode(data, self._encoding)
        # JSON syntax is ASCII, so escaping only ever touches string contents
        return data.decode("utf-8").encode(self._encoding, JSON_ESCAPE)

    def decode(self, data: bytes) -> Any:
        """
        Decode transport bytes.

        Text that is not valid JSON is returned as the raw string.

        Raises:
            ValueError: If the bytes are invalid for the encoding
        """
        if self._binary:
            text = codecs.decode(data, self._encoding).decode("utf-8")
        else:
            text = data.decode(self._encoding)
        try:
            return from_json(text)
        except ValueError:
            return text
