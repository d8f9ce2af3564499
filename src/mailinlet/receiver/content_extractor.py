"""Normalize a mail message's top-level content into a payload.

Rules:
- text content passes through; the content type is kept when it is ``text/*``
  and forced to ``text/plain`` otherwise
- a readable byte stream (or already buffered bytes) becomes ``bytes`` with
  ``application/octet-stream``
- composite (multipart) and nested parts are rendered to their wire form as
  ``application/octet-stream`` when ``embedded_parts_as_bytes`` is set;
  otherwise the part object is handed through untouched

A part handed through untouched may still be tied to the live folder that
produced it, so it is not safe to serialize downstream.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from mailinlet.errors import ExtractionError

from .headers import MailHeaders, MessageHeaders
from .transport import MailMessage, MimePart

logger = logging.getLogger(__name__)

OCTET_STREAM = "application/octet-stream"
TEXT_PLAIN = "text/plain"


@dataclass(frozen=True)
class ExtractedPayload:
    payload: Any
    content_type: Optional[str]


class ContentExtractor:
    """Extract payloads from messages while the folder is still open."""

    def __init__(self, *, embedded_parts_as_bytes: bool = True) -> None:
        self.embedded_parts_as_bytes = embedded_parts_as_bytes

    def extract(self, message: MailMessage, headers: Optional[Mapping[str, Any]] = None) -> ExtractedPayload:
        """Extract the payload of ``message``.

        Args:
            message: Live message handle
            headers: Mapped headers; ``mail_contentType`` is preferred over the
                message's own content type when present

        Raises:
            ExtractionError: if the content cannot be materialized
        """
        try:
            content = message.get_content()
            if isinstance(content, str):
                mail_content_type = (headers or {}).get(MailHeaders.CONTENT_TYPE) or message.content_type
                if mail_content_type and mail_content_type.lower().startswith("text"):
                    return ExtractedPayload(content, mail_content_type)
                return ExtractedPayload(content, TEXT_PLAIN)
            if isinstance(content, (bytes, bytearray)):
                return ExtractedPayload(bytes(content), OCTET_STREAM)
            if hasattr(content, "read"):
                try:
                    data = content.read()
                finally:
                    close = getattr(content, "close", None)
                    if callable(close):
                        close()
                return ExtractedPayload(bytes(data), OCTET_STREAM)
            if isinstance(content, MimePart) and self.embedded_parts_as_bytes:
                return ExtractedPayload(content.as_bytes(), OCTET_STREAM)
            logger.debug("Handing %s content of message %s through as-is", type(content).__name__, message.uid)
            return ExtractedPayload(content, None)
        except ExtractionError:
            raise
        except Exception as exc:
            raise ExtractionError(_describe(message)) from exc

    def merge_headers(self, extracted: ExtractedPayload, headers: Mapping[str, Any]) -> Dict[str, Any]:
        merged = dict(headers)
        if extracted.content_type is not None:
            merged[MessageHeaders.CONTENT_TYPE] = extracted.content_type
        return merged


def _describe(message: MailMessage) -> str:
    uid = getattr(message, "uid", None)
    try:
        subject = message.subject
    except Exception:  # noqa: BLE001
        subject = None
    if subject:
        return f"message uid={uid} subject={subject!r}"
    return f"message uid={uid}"


__all__ = ["ContentExtractor", "ExtractedPayload", "OCTET_STREAM", "TEXT_PLAIN"]
