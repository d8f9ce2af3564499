"""Mail retrieval pipeline.

A poll runs, under the connection manager's lock:

open folder -> search -> bound -> batched fetch -> select -> flag -> delete
-> detach or (map headers + extract content) -> close folder

The folder is closed on every exit path, expunging when messages are deleted
after fetch. Any failure aborts the poll and surfaces to the caller with no
partial results; retrying is the job of whatever invokes :meth:`receive`
(see :mod:`mailinlet.receiver.poller`).
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Callable, Iterator, List, Optional, Sequence

from mailinlet.errors import ConfigurationError, MailInletError, ProtocolError

from .config import MailEndpointConfig
from .connection_manager import MailConnectionManager
from .content_extractor import ContentExtractor
from .detached import DetachedMessage
from .flag_strategy import FlagStrategy
from .headers import HeaderMapper, InboundMessage
from .selector import SelectorFilter
from .transport import (
    DEFAULT_FETCH_PROFILE,
    FetchItem,
    Flags,
    MailFolder,
    MailMessage,
    SessionFactory,
    to_password_protected_string,
)

logger = logging.getLogger(__name__)

MessageSearch = Callable[[MailFolder], Sequence[MailMessage]]
AdditionalFlags = Callable[[MailMessage], None]


@contextmanager
def _protocol_step(action: str) -> Iterator[None]:
    try:
        yield
    except MailInletError:
        raise
    except Exception as exc:
        raise ProtocolError(f"Failed to {action}", details={"action": action}) from exc


class MailReceiver:
    """Polls one mail endpoint and converts new mail into application messages.

    Args:
        config: Endpoint configuration
        search: Protocol collaborator returning the folder's new messages
        session_factory: Builds a session when ``config.session`` is not set
        additional_flags: Hook run on every retained message after base flagging
        fetch_profile: Metadata prefetched in one batch before selection
    """

    def __init__(
        self,
        config: MailEndpointConfig,
        *,
        search: MessageSearch,
        session_factory: Optional[SessionFactory] = None,
        additional_flags: Optional[AdditionalFlags] = None,
        fetch_profile: Sequence[FetchItem] = DEFAULT_FETCH_PROFILE,
    ) -> None:
        self.connection = MailConnectionManager(config, session_factory=session_factory)
        self.search = search
        self.additional_flags = additional_flags
        self.fetch_profile = tuple(fetch_profile)

    # -- configuration & lifecycle -------------------------------------------

    @property
    def config(self) -> MailEndpointConfig:
        return self.connection.config

    @property
    def initialized(self) -> bool:
        return self.connection.initialized

    def reconfigure(self, **changes: Any) -> None:
        """Apply configuration changes; only allowed before :meth:`initialize`."""
        with self.connection.lock:
            if self.connection.initialized:
                raise ConfigurationError("Receiver is initialized; configuration can no longer change")
            self.connection.reconfigure(self.config.with_changes(**changes))

    def initialize(self) -> None:
        self.connection.initialize()

    def destroy(self) -> None:
        self.connection.destroy()

    def __enter__(self) -> MailReceiver:
        self.initialize()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.destroy()

    # -- retrieval -------------------------------------------------------------

    def receive(self) -> List[Any]:
        """Receive new mail.

        Returns:
            :class:`DetachedMessage` objects when no header mapper is configured,
            otherwise :class:`InboundMessage` objects

        Raises:
            ConfigurationError: folder missing on the server
            MailConnectionError: session, store or folder could not be opened
            ProtocolError: search, fetch, flag or delete failed
            FilterError: selector failed
            ExtractionError: message content could not be materialized
        """
        with self.connection.lock:
            try:
                folder = self.connection.open_folder()
                logger.info("attempting to receive mail from folder [%s]", folder.full_name)

                with _protocol_step("search for new messages"):
                    messages = list(self.search(folder))
                messages = self._bound(messages)
                logger.debug("found %d new messages", len(messages))

                if messages:
                    self.fetch_messages(folder, messages)
                logger.debug("Received %d messages", len(messages))

                retained = SelectorFilter(self.config.selector).filter(messages)
                return self._post_process(folder, retained)
            finally:
                self.connection.close_folder()

    def _bound(self, messages: List[MailMessage]) -> List[MailMessage]:
        max_fetch_size = self.config.max_fetch_size
        if max_fetch_size > 0 and len(messages) > max_fetch_size:
            return messages[:max_fetch_size]
        return messages

    def fetch_messages(self, folder: MailFolder, messages: Sequence[MailMessage]) -> None:
        """Prefetch metadata for ``messages`` in one batched request."""
        with _protocol_step("fetch messages"):
            folder.fetch(messages, self.fetch_profile)

    def delete_messages(self, messages: Sequence[MailMessage]) -> None:
        """Mark ``messages`` deleted; they are expunged when the folder closes."""
        with _protocol_step("mark messages deleted"):
            for message in messages:
                message.set_flags([Flags.DELETED], True)

    def _post_process(self, folder: MailFolder, messages: List[MailMessage]) -> List[Any]:
        strategy = FlagStrategy.for_folder(folder, self.config.user_flag, self.additional_flags)
        with _protocol_step("set message flags"):
            for message in messages:
                strategy.apply(message)

        if self.config.should_delete_messages:
            self.delete_messages(messages)

        header_mapper: Optional[HeaderMapper] = self.config.header_mapper
        if header_mapper is None:
            # Copy eagerly so the result survives the folder close.
            with _protocol_step("copy messages"):
                return [
                    DetachedMessage(message, self.connection.obtain_folder_instance)
                    for message in messages
                ]

        extractor = ContentExtractor(embedded_parts_as_bytes=self.config.embedded_parts_as_bytes)
        converted: List[Any] = []
        for message in messages:
            with _protocol_step("map headers"):
                headers = header_mapper.to_headers(message)
            extracted = extractor.extract(message, headers)
            converted.append(InboundMessage(extracted.payload, extractor.merge_headers(extracted, headers)))
        return converted

    def __str__(self) -> str:
        return to_password_protected_string(self.config.url)

    def __repr__(self) -> str:
        return f"MailReceiver({self})"


__all__ = ["AdditionalFlags", "MailReceiver", "MessageSearch"]
