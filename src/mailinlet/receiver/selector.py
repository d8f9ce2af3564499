"""Selector filtering of fetched messages.

Messages rejected by the selector are left untouched on the server: they are
never flagged or deleted, so a later poll may reconsider them.
"""

from __future__ import annotations

import logging
from email.utils import getaddresses
from typing import Any, Callable, List, Optional, Sequence

from mailinlet.errors import FilterError

from .transport import MailMessage

logger = logging.getLogger(__name__)

Selector = Callable[[MailMessage], Any]


class SelectorFilter:
    """Keep messages for which the selector yields ``True``, in original order."""

    def __init__(self, selector: Optional[Selector] = None) -> None:
        self.selector = selector

    def filter(self, messages: Sequence[MailMessage]) -> List[MailMessage]:
        if self.selector is None:
            return list(messages)

        retained: List[MailMessage] = []
        for message in messages:
            if self._evaluate(message):
                retained.append(message)
            else:
                logger.debug(
                    "Fetched email with subject '%s' will be discarded by the matching filter"
                    " and will not be flagged as SEEN.",
                    message.subject,
                )
        return retained

    def _evaluate(self, message: MailMessage) -> bool:
        try:
            result = self.selector(message)  # type: ignore[misc]
        except FilterError:
            raise
        except Exception as exc:
            raise FilterError(
                f"Selector failed for message uid={message.uid}",
                details={"uid": message.uid},
            ) from exc
        if not isinstance(result, bool):
            raise FilterError(
                f"Selector returned {type(result).__name__}, expected bool",
                details={"uid": message.uid},
            )
        return result


# ---------------------------------------------------------------------------
# Stock predicates
# ---------------------------------------------------------------------------


def subject_contains(*terms: str) -> Selector:
    """Match messages whose subject contains any of ``terms`` (case-insensitive)."""
    lowered = [term.lower() for term in terms if term]

    def _selector(message: MailMessage) -> bool:
        subject = (message.subject or "").lower()
        return any(term in subject for term in lowered)

    return _selector


def sender_in(*addresses: str) -> Selector:
    """Match messages sent from one of ``addresses``."""
    allowed = {address.strip().lower() for address in addresses if address.strip()}

    def _selector(message: MailMessage) -> bool:
        senders = [value for name, value in message.headers if name.lower() == "from"]
        return any(address.lower() in allowed for _, address in getaddresses(senders))

    return _selector


def all_of(*selectors: Selector) -> Selector:
    def _selector(message: MailMessage) -> bool:
        return all(selector(message) for selector in selectors)

    return _selector


__all__ = ["Selector", "SelectorFilter", "all_of", "sender_in", "subject_contains"]
