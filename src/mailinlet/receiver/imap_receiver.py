"""IMAP flavour of the mail receiver.

``ImapNewMessageSearch`` decides what "new" means on an IMAP folder. The
criteria mirror the flag strategy so that messages this receiver already
marked are not returned again:

- ``\\Recent`` tracked natively: ``RECENT``
- user keywords allowed: ``UNKEYWORD <user flag>``
- otherwise: ``UNFLAGGED``

``UNDELETED`` is always added, ``UNSEEN`` when messages are marked read.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, List, Optional, Sequence, Union

from .config import DEFAULT_USER_FLAG, MailEndpointConfig
from .flag_strategy import FlagMode, select_flag_mode
from .imap_transport import ImapFolder, ImapMessage, ImapSession
from .receiver import MailReceiver
from .transport import DEFAULT_FETCH_PROFILE, FetchItem, Flags, MailMessage

logger = logging.getLogger(__name__)


class ImapNewMessageSearch:
    """Search collaborator returning the new messages of an IMAP folder."""

    def __init__(
        self,
        user_flag: Union[str, Callable[[], str]] = DEFAULT_USER_FLAG,
        *,
        should_mark_messages_as_read: bool = True,
    ) -> None:
        self._user_flag = user_flag
        self.should_mark_messages_as_read = should_mark_messages_as_read

    @property
    def user_flag(self) -> str:
        return self._user_flag() if callable(self._user_flag) else self._user_flag

    def criteria(self, folder: ImapFolder) -> List[Any]:
        criteria: List[Any] = []
        mode = select_flag_mode(folder.permanent_flags)
        if mode is FlagMode.NATIVE_RECENT:
            criteria.append("RECENT")
        elif mode is FlagMode.USER_FLAG:
            criteria.extend(["UNKEYWORD", self.user_flag])
        else:
            criteria.append("UNFLAGGED")
        if self.should_mark_messages_as_read:
            criteria.append("UNSEEN")
        criteria.append("UNDELETED")
        return criteria

    def __call__(self, folder: ImapFolder) -> Sequence[ImapMessage]:
        criteria = self.criteria(folder)
        logger.debug("searching folder [%s] with %s", folder.full_name, criteria)
        return folder.search(criteria)

    def set_additional_flags(self, message: MailMessage) -> None:
        if self.should_mark_messages_as_read:
            message.set_flags([Flags.SEEN], True)


def create_imap_receiver(
    config: MailEndpointConfig,
    *,
    should_mark_messages_as_read: bool = True,
    fetch_profile: Sequence[FetchItem] = DEFAULT_FETCH_PROFILE,
    search: Optional[ImapNewMessageSearch] = None,
) -> MailReceiver:
    """Wire a :class:`MailReceiver` for an IMAP endpoint."""

    receiver: MailReceiver
    if search is None:
        search = ImapNewMessageSearch(
            lambda: receiver.config.user_flag,
            should_mark_messages_as_read=should_mark_messages_as_read,
        )
    receiver = MailReceiver(
        config,
        search=search,
        session_factory=ImapSession,
        additional_flags=search.set_additional_flags,
        fetch_profile=fetch_profile,
    )
    return receiver


__all__ = ["ImapNewMessageSearch", "create_imap_receiver"]
