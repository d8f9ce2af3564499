"""Marking received messages as already seen.

The branch is chosen once per poll from the folder's permanent flags:

1. ``\\Recent`` is permanent: the server tracks seen-state, nothing is set
2. user keywords are allowed (``\\*``): the configured user flag is set
3. otherwise: the ``\\Flagged`` system flag is set
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, FrozenSet, Iterable, Optional

from .transport import Flags, MailFolder, MailMessage

logger = logging.getLogger(__name__)


class FlagMode(str, Enum):
    NATIVE_RECENT = "native_recent"
    USER_FLAG = "user_flag"
    SYSTEM_FLAGGED = "system_flagged"


def _normalize(flags: Optional[Iterable[str]]) -> FrozenSet[str]:
    return frozenset(flag.lower() for flag in flags or ())


def select_flag_mode(permanent_flags: Optional[Iterable[str]]) -> FlagMode:
    flags = _normalize(permanent_flags)
    if Flags.RECENT.lower() in flags:
        return FlagMode.NATIVE_RECENT
    if Flags.USER in flags:
        return FlagMode.USER_FLAG
    return FlagMode.SYSTEM_FLAGGED


@dataclass(frozen=True)
class FlagStrategy:
    """Per-poll flagging decision applied to every retained message."""

    mode: FlagMode
    user_flag: str
    additional_flags: Optional[Callable[[MailMessage], None]] = None

    @classmethod
    def for_folder(
        cls,
        folder: MailFolder,
        user_flag: str,
        additional_flags: Optional[Callable[[MailMessage], None]] = None,
    ) -> FlagStrategy:
        mode = select_flag_mode(folder.permanent_flags)
        if mode is FlagMode.USER_FLAG:
            logger.debug(
                "USER flags are supported by this mail server. Flagging message with '%s' user flag",
                user_flag,
            )
        elif mode is FlagMode.SYSTEM_FLAGGED:
            logger.debug("USER flags are not supported by this mail server. Flagging message with system flag")
        return cls(mode=mode, user_flag=user_flag, additional_flags=additional_flags)

    def apply(self, message: MailMessage) -> None:
        if self.mode is FlagMode.USER_FLAG:
            message.set_flags([self.user_flag], True)
        elif self.mode is FlagMode.SYSTEM_FLAGGED:
            message.set_flags([Flags.FLAGGED], True)
        if self.additional_flags is not None:
            self.additional_flags(message)


__all__ = ["FlagMode", "FlagStrategy", "select_flag_mode"]
