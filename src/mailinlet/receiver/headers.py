"""Header keys, the output message type, and the default header mapper."""

from __future__ import annotations

from dataclasses import dataclass, field
from email.utils import getaddresses
from typing import Any, Dict, List, Protocol

from .transport import MailMessage


class MailHeaders:
    """Keys produced by :class:`DefaultMailHeaderMapper`."""

    PREFIX = "mail_"
    SUBJECT = PREFIX + "subject"
    FROM = PREFIX + "from"
    TO = PREFIX + "to"
    CC = PREFIX + "cc"
    BCC = PREFIX + "bcc"
    REPLY_TO = PREFIX + "replyTo"
    RECEIVED_DATE = PREFIX + "receivedDate"
    LINE_COUNT = PREFIX + "lineCount"
    CONTENT_TYPE = PREFIX + "contentType"
    FLAGS = PREFIX + "flags"
    RAW_HEADERS = PREFIX + "raw"


class MessageHeaders:
    """Keys of the outbound message envelope."""

    CONTENT_TYPE = "contentType"


class HeaderMapper(Protocol):
    def to_headers(self, message: MailMessage) -> Dict[str, Any]: ...


@dataclass(frozen=True)
class InboundMessage:
    """A received mail converted to payload plus headers."""

    payload: Any
    headers: Dict[str, Any] = field(default_factory=dict)

    @property
    def content_type(self) -> str | None:
        return self.headers.get(MessageHeaders.CONTENT_TYPE)


def _addresses(values: List[str]) -> List[str]:
    result = []
    for display_name, address in getaddresses(values):
        if not address:
            continue
        result.append(f"{display_name} <{address}>" if display_name else address)
    return result


class DefaultMailHeaderMapper:
    """Maps standard mail headers to ``mail_*`` keys."""

    def to_headers(self, message: MailMessage) -> Dict[str, Any]:
        raw: Dict[str, List[str]] = {}
        for name, value in message.headers:
            raw.setdefault(name.lower(), []).append(str(value))

        from_addresses = _addresses(raw.get("from", []))
        headers: Dict[str, Any] = {
            MailHeaders.SUBJECT: message.subject,
            MailHeaders.FROM: from_addresses[0] if from_addresses else None,
            MailHeaders.TO: _addresses(raw.get("to", [])),
            MailHeaders.CC: _addresses(raw.get("cc", [])),
            MailHeaders.BCC: _addresses(raw.get("bcc", [])),
            MailHeaders.REPLY_TO: _addresses(raw.get("reply-to", [])) or from_addresses,
            MailHeaders.RECEIVED_DATE: message.received_date,
            MailHeaders.LINE_COUNT: message.line_count,
            MailHeaders.CONTENT_TYPE: message.content_type,
            MailHeaders.FLAGS: sorted(message.flags),
            MailHeaders.RAW_HEADERS: raw,
        }
        return headers


__all__ = [
    "DefaultMailHeaderMapper",
    "HeaderMapper",
    "InboundMessage",
    "MailHeaders",
    "MessageHeaders",
]
