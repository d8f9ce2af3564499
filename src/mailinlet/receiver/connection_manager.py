"""Session, store and folder lifecycle for a mail receiver.

One :class:`MailConnectionManager` owns the connection state of one endpoint.
Every mutation of that state happens under ``manager.lock``; the receiver
holds the same lock for a whole poll so that polls and teardown serialize.

Opening is lazy and idempotent: the session is built at most once, the store
is created once and reconnected whenever it reports itself disconnected (idle
servers drop connections between polls), and the folder handle is reused
across polls. Closing never raises; cleanup failures are logged so they
cannot mask the error that triggered the cleanup.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator, Optional

from mailinlet.errors import ConfigurationError, MailConnectionError, MailInletError

from .config import MailEndpointConfig
from .transport import (
    FolderMode,
    MailFolder,
    MailSession,
    MailStore,
    SessionFactory,
    close_folder,
    close_service,
    to_password_protected_string,
)

logger = logging.getLogger(__name__)

# Changing any of these binds the manager to a different endpoint
CONNECTION_FIELDS = ("url", "protocol", "folder", "properties", "session", "authenticator")


@dataclass
class ConnectionState:
    """Live handles owned by the connection manager."""

    session: Optional[MailSession] = None
    store: Optional[MailStore] = None
    folder: Optional[MailFolder] = None

    def reset(self) -> None:
        self.session = None
        self.store = None
        self.folder = None


@contextmanager
def _connection_step(action: str) -> Iterator[None]:
    try:
        yield
    except MailInletError:
        raise
    except Exception as exc:
        raise MailConnectionError(f"Failed to {action}", details={"action": action}) from exc


class MailConnectionManager:
    """Owns the session/store/folder handles of one endpoint."""

    def __init__(
        self,
        config: MailEndpointConfig,
        *,
        session_factory: Optional[SessionFactory] = None,
    ) -> None:
        self.config = config
        self.session_factory = session_factory
        self.lock = threading.RLock()
        self.state = ConnectionState()
        self.folder_open_mode = FolderMode.READ_ONLY
        self.initialized = False

    # -- lifecycle -----------------------------------------------------------

    def initialize(self) -> None:
        """Mark the endpoint ready for mutation; folders open read-write from now on."""
        with self.lock:
            self.folder_open_mode = FolderMode.READ_WRITE
            self.initialized = True

    def destroy(self) -> None:
        """Close the folder, disconnect the store and forget every handle.

        Safe to call repeatedly.
        """
        with self.lock:
            close_folder(self.state.folder, self.config.should_delete_messages)
            close_service(self.state.store)
            self.state.reset()
            self.folder_open_mode = FolderMode.READ_ONLY
            self.initialized = False

    def reconfigure(self, config: MailEndpointConfig) -> None:
        """Swap in a new configuration, dropping handles bound to the old endpoint."""
        with self.lock:
            previous = self.config
            self.config = config
            if all(getattr(previous, name) == getattr(config, name) for name in CONNECTION_FIELDS):
                return
            logger.debug("endpoint changed, closing [%s]", to_password_protected_string(previous.url))
            close_folder(self.state.folder, previous.should_delete_messages)
            close_service(self.state.store)
            self.state.reset()

    # -- opening -------------------------------------------------------------

    def open_folder(self) -> MailFolder:
        """Ensure the configured folder exists and is open; return it."""
        with self.lock:
            if self.state.folder is None:
                self._open_session()
                self._connect_store_if_necessary()
                self.state.folder = self.obtain_folder_instance()
            else:
                self._connect_store_if_necessary()

            folder = self.state.folder
            with _connection_step("check folder"):
                exists = folder is not None and folder.exists()
            if not exists:
                raise ConfigurationError(
                    f"no such folder [{self.config.folder_name}]",
                    details={"folder": self.config.folder_name},
                )
            with _connection_step("check folder state"):
                if folder.is_open():
                    return folder
            logger.debug("opening folder [%s]", to_password_protected_string(self.config.url))
            with _connection_step("open folder"):
                folder.open(self.folder_open_mode)
            return folder

    def obtain_folder_instance(self) -> Optional[MailFolder]:
        """Resolve the configured folder from the current store."""
        with self.lock:
            store = self.state.store
            if store is None:
                raise MailConnectionError("Mail store is not connected")
            with _connection_step("obtain folder"):
                return store.get_folder(self.config.folder_name)

    def _open_session(self) -> None:
        if self.state.session is not None:
            return
        if self.config.session is not None:
            self.state.session = self.config.session
            return
        if self.session_factory is None:
            raise ConfigurationError("No session supplied and no session factory configured")
        with _connection_step("create session"):
            self.state.session = self.session_factory(self.config.properties, self.config.authenticator)

    def _connect_store_if_necessary(self) -> None:
        if self.state.store is None:
            session = self.state.session
            if session is None:
                self._open_session()
                session = self.state.session
            with _connection_step("create store"):
                if self.config.url is not None:
                    self.state.store = session.get_store(url=self.config.url)  # type: ignore[union-attr]
                elif self.config.protocol is not None:
                    self.state.store = session.get_store(protocol=self.config.protocol)  # type: ignore[union-attr]
                else:
                    self.state.store = session.get_store()  # type: ignore[union-attr]

        store = self.state.store
        with _connection_step("connect store"):
            if not store.is_connected():
                logger.debug("connecting to store [%s]", to_password_protected_string(self.config.url))
                store.connect()

    # -- closing -------------------------------------------------------------

    def close_folder(self) -> None:
        """Close the folder, expunging when messages are deleted after fetch."""
        with self.lock:
            close_folder(self.state.folder, self.config.should_delete_messages)

    # -- accessors -----------------------------------------------------------

    @property
    def folder(self) -> Optional[MailFolder]:
        return self.state.folder

    @property
    def store(self) -> Optional[MailStore]:
        return self.state.store

    @property
    def session(self) -> Optional[MailSession]:
        return self.state.session


__all__ = ["ConnectionState", "MailConnectionManager"]
