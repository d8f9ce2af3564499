"""Connection-independent message copies.

A :class:`DetachedMessage` is built while the folder is still open. Header,
body and flag state are copied eagerly so the copy stays usable once the
folder closes. Two values a bare copy cannot know, the received date and the
line count, are delegated to the live handle captured at copy time. The
containing folder is re-resolved through the connection manager on every
access, because the folder object may have been reopened since.
"""

from __future__ import annotations

from datetime import datetime
from email import message_from_bytes
from email.message import EmailMessage
from email.policy import default as email_policy
from typing import Any, Callable, FrozenSet, Iterable, List, Optional, Tuple

from mailinlet.errors import MailConnectionError

from .transport import MailFolder, MailMessage, content_of


class DetachedMessage:
    """Standalone snapshot of a received message."""

    def __init__(self, source: MailMessage, folder_resolver: Callable[[], Optional[MailFolder]]) -> None:
        self._source = source
        self._folder_resolver = folder_resolver
        self.uid = source.uid
        self._raw = source.as_bytes()
        self._message: EmailMessage = message_from_bytes(self._raw, policy=email_policy)  # type: ignore[assignment]
        self._flags: FrozenSet[str] = frozenset(source.flags)

    # -- fully detached state -------------------------------------------------

    @property
    def message(self) -> EmailMessage:
        return self._message

    @property
    def subject(self) -> Optional[str]:
        value = self._message.get("Subject")
        return str(value) if value is not None else None

    @property
    def content_type(self) -> str:
        value = self._message.get("Content-Type")
        return str(value) if value is not None else self._message.get_content_type()

    @property
    def headers(self) -> List[Tuple[str, str]]:
        return [(name, str(value)) for name, value in self._message.items()]

    @property
    def flags(self) -> FrozenSet[str]:
        return self._flags

    def get_content(self) -> Any:
        return content_of(self._message)

    def as_bytes(self) -> bytes:
        return self._raw

    def set_flags(self, flags: Iterable[str], value: bool = True) -> None:
        """Change flags on the copy only; the server copy is not touched."""
        if value:
            self._flags = self._flags | frozenset(flags)
        else:
            self._flags = self._flags - frozenset(flags)

    # -- delegated to the original handle ------------------------------------

    @property
    def received_date(self) -> Optional[datetime]:
        return self._source.received_date

    @property
    def line_count(self) -> int:
        return self._source.line_count

    @property
    def folder(self) -> Optional[MailFolder]:
        try:
            return self._folder_resolver()
        except MailConnectionError:
            raise
        except Exception as exc:
            raise MailConnectionError("Unable to obtain the mail folder") from exc

    def __repr__(self) -> str:
        return f"DetachedMessage(uid={self.uid!r}, subject={self.subject!r})"


__all__ = ["DetachedMessage"]
