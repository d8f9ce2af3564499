"""IMAP transport over ``imapclient``.

Implements the session/store/folder/message interfaces from
:mod:`mailinlet.receiver.transport`. TLS is verified against the ``certifi``
bundle with TLS 1.2 as the floor. Message bodies are read with
``BODY.PEEK[]`` so that reading never sets ``\\Seen`` behind the receiver's
back; flagging is always explicit.

Session properties:

- ``host``, ``port``: fallback when the store URL does not carry them
- ``ssl``: force TLS on/off (default: on for ``imaps``)
- ``starttls``: upgrade a plain connection with STARTTLS
- ``timeout``: socket timeout in seconds (default 30)
- ``user``, ``password``: credentials when neither URL nor authenticator has them
- ``auth_mechanism``: ``login`` (default) or ``xoauth2`` (password is the token)
"""

from __future__ import annotations

import logging
import ssl
from contextlib import contextmanager
from datetime import datetime
from email import message_from_bytes
from email.message import EmailMessage
from email.parser import BytesHeaderParser
from email.policy import default as email_policy
from typing import Any, Dict, FrozenSet, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple, Type

import certifi
from imapclient import IMAPClient
from imapclient.exceptions import IMAPClientError, LoginError

from mailinlet.errors import ConfigurationError, MailConnectionError, MailInletError, ProtocolError

from .transport import (
    Authenticator,
    FetchItem,
    FolderMode,
    MailUrl,
    content_of,
    count_body_lines,
)

logger = logging.getLogger(__name__)

IMAP_PROTOCOLS = {"imap", "imaps"}
DEFAULT_PORTS = {"imap": 143, "imaps": 993}
DEFAULT_TIMEOUT = 30


@contextmanager
def _imap_errors(action: str, error_cls: Type[MailInletError] = ProtocolError) -> Iterator[None]:
    try:
        yield
    except MailInletError:
        raise
    except (IMAPClientError, OSError) as exc:
        raise error_cls(f"IMAP {action} failed: {exc}", details={"action": action}) from exc


def _decode_flags(flags: Iterable[Any]) -> FrozenSet[str]:
    return frozenset(flag.decode() if isinstance(flag, bytes) else str(flag) for flag in flags)


def _create_ssl_context() -> ssl.SSLContext:
    context = ssl.create_default_context()
    context.load_verify_locations(certifi.where())
    context.minimum_version = ssl.TLSVersion.TLSv1_2
    context.check_hostname = True
    context.verify_mode = ssl.CERT_REQUIRED
    return context


def _release(client: Optional[IMAPClient]) -> None:
    """Drop a connection that will not be used again, forcing the socket shut if LOGOUT fails."""
    if client is None:
        return
    try:
        client.logout()
    except Exception as exc:  # noqa: BLE001
        logger.debug("Ignoring logout failure, shutting the socket down", exc_info=exc)
        try:
            client.shutdown()
        except Exception as shutdown_exc:  # noqa: BLE001
            logger.debug("Ignoring socket shutdown failure", exc_info=shutdown_exc)


# ---------------------------------------------------------------------------
# Session & store
# ---------------------------------------------------------------------------


class ImapSession:
    """Builds IMAP stores from properties and an optional authenticator."""

    def __init__(
        self,
        properties: Optional[Mapping[str, Any]] = None,
        authenticator: Optional[Authenticator] = None,
    ) -> None:
        self.properties: Dict[str, Any] = dict(properties or {})
        self.authenticator = authenticator

    def get_store(self, url: Optional[MailUrl] = None, protocol: Optional[str] = None) -> ImapStore:
        resolved = url.protocol if url is not None else (protocol or self.properties.get("protocol", "imaps"))
        if resolved not in IMAP_PROTOCOLS:
            raise ConfigurationError(f"Unsupported store protocol {resolved!r}; expected imap or imaps")
        return ImapStore(self, url=url, protocol=resolved)


class ImapStore:
    """Authenticated connection to an IMAP server."""

    def __init__(self, session: ImapSession, *, url: Optional[MailUrl], protocol: str) -> None:
        self.session = session
        self.url = url
        self.protocol = protocol
        self.client: Optional[IMAPClient] = None

    @property
    def host(self) -> Optional[str]:
        if self.url is not None and self.url.host:
            return self.url.host
        return self.session.properties.get("host")

    @property
    def port(self) -> int:
        if self.url is not None and self.url.port is not None:
            return self.url.port
        return int(self.session.properties.get("port", DEFAULT_PORTS[self.protocol]))

    @property
    def use_ssl(self) -> bool:
        return bool(self.session.properties.get("ssl", self.protocol == "imaps"))

    def is_connected(self) -> bool:
        if self.client is None:
            return False
        try:
            self.client.noop()
            return True
        except Exception:  # noqa: BLE001
            logger.debug("IMAP connection to %s is no longer alive", self.host)
            return False

    def connect(self) -> None:
        if self.client is not None:
            self._discard_client()
        host = self.host
        if not host:
            raise ConfigurationError("No IMAP host configured")

        properties = self.session.properties
        context = _create_ssl_context() if self.use_ssl or properties.get("starttls") else None
        user, password = self._credentials()
        client: Optional[IMAPClient] = None
        try:
            client = IMAPClient(
                host=host,
                port=self.port,
                ssl=self.use_ssl,
                ssl_context=context if self.use_ssl else None,
                timeout=properties.get("timeout", DEFAULT_TIMEOUT),
                use_uid=True,
            )
            if properties.get("starttls") and not self.use_ssl:
                client.starttls(context)
            if str(properties.get("auth_mechanism", "login")).lower() == "xoauth2":
                client.oauth2_login(user, password)
            else:
                client.login(user, password)
        except LoginError as exc:
            _release(client)
            raise MailConnectionError(
                f"Authentication failed for {user}@{host}",
                details={"host": host, "user": user},
            ) from exc
        except (IMAPClientError, OSError) as exc:
            _release(client)
            raise MailConnectionError(
                f"Could not connect to {host}:{self.port}: {exc}",
                details={"host": host, "port": self.port},
            ) from exc
        self.client = client

    def _credentials(self) -> Tuple[str, str]:
        properties = self.session.properties
        if self.url is not None and self.url.username:
            return self.url.username, self.url.password or properties.get("password", "")
        if self.session.authenticator is not None:
            authentication = self.session.authenticator()
            return authentication.user_name, authentication.password
        user = properties.get("user")
        if not user:
            raise ConfigurationError("No credentials configured for the IMAP store")
        return user, properties.get("password", "")

    def close(self) -> None:
        if self.client is None:
            return
        try:
            self.client.logout()
        finally:
            self.client = None

    def _discard_client(self) -> None:
        try:
            _release(self.client)
        finally:
            self.client = None

    def require_client(self) -> IMAPClient:
        if self.client is None:
            raise MailConnectionError("IMAP store is not connected")
        return self.client

    def get_folder(self, name: str) -> ImapFolder:
        return ImapFolder(self, name)


# ---------------------------------------------------------------------------
# Folder
# ---------------------------------------------------------------------------


FETCH_ATTRIBUTES: Dict[FetchItem, Tuple[str, ...]] = {
    FetchItem.ENVELOPE: ("ENVELOPE", "INTERNALDATE", "RFC822.SIZE"),
    FetchItem.CONTENT_INFO: ("BODY.PEEK[HEADER]",),
    FetchItem.FLAGS: ("FLAGS",),
}


class ImapFolder:
    """A mailbox on an IMAP store."""

    def __init__(self, store: ImapStore, name: str) -> None:
        self.store = store
        self.full_name = name
        self.mode: Optional[FolderMode] = None
        self._open = False
        self._permanent_flags: Optional[FrozenSet[str]] = None

    @property
    def permanent_flags(self) -> Optional[FrozenSet[str]]:
        return self._permanent_flags

    def exists(self) -> bool:
        with _imap_errors("folder lookup", MailConnectionError):
            return bool(self.store.require_client().folder_exists(self.full_name))

    def is_open(self) -> bool:
        return self._open and self.store.client is not None

    def open(self, mode: FolderMode) -> None:
        with _imap_errors("select", MailConnectionError):
            response = self.store.require_client().select_folder(
                self.full_name, readonly=mode is FolderMode.READ_ONLY
            )
        permanent = response.get(b"PERMANENTFLAGS")
        self._permanent_flags = _decode_flags(permanent) if permanent is not None else None
        self.mode = mode
        self._open = True

    def close(self, expunge: bool) -> None:
        client = self.store.client
        try:
            if client is None:
                return
            with _imap_errors("close"):
                if expunge and self.mode is FolderMode.READ_WRITE:
                    client.expunge()
                    client.close_folder()
                elif client.has_capability("UNSELECT"):
                    client.unselect_folder()
                else:
                    # CLOSE on a read-write selection expunges \Deleted messages
                    if self.mode is FolderMode.READ_WRITE:
                        client.select_folder(self.full_name, readonly=True)
                    client.close_folder()
        finally:
            self._open = False

    def search(self, criteria: Sequence[Any]) -> List[ImapMessage]:
        with _imap_errors("search"):
            uids = self.store.require_client().search(list(criteria))
        return [ImapMessage(self, int(uid)) for uid in uids]

    def fetch(self, messages: Sequence[ImapMessage], items: Sequence[FetchItem]) -> None:
        attributes: List[str] = []
        for item in items:
            attributes.extend(FETCH_ATTRIBUTES[item])
        if not messages or not attributes:
            return
        response = self._fetch([message.uid for message in messages], attributes)
        for message in messages:
            data = response.get(message.uid)
            if data:
                message.absorb(data)

    def _fetch(self, uids: Sequence[int], attributes: Sequence[str]) -> Dict[int, Dict[bytes, Any]]:
        with _imap_errors("fetch"):
            return self.store.require_client().fetch(list(uids), list(attributes))

    def fetch_one(self, uid: int, attributes: Sequence[str]) -> Dict[bytes, Any]:
        return self._fetch([uid], attributes).get(uid, {})

    def store_flags(self, uid: int, flags: Sequence[str], value: bool) -> Optional[FrozenSet[str]]:
        client = self.store.require_client()
        with _imap_errors("store flags"):
            if value:
                response = client.add_flags([uid], list(flags))
            else:
                response = client.remove_flags([uid], list(flags))
        if response and uid in response:
            return _decode_flags(response[uid])
        return None

    def __repr__(self) -> str:
        return f"ImapFolder({self.full_name!r})"


# ---------------------------------------------------------------------------
# Message
# ---------------------------------------------------------------------------


class ImapMessage:
    """Lazy handle on one message of an open :class:`ImapFolder`."""

    def __init__(self, folder: ImapFolder, uid: int) -> None:
        self.uid = uid
        self._folder = folder
        self._flags: Optional[FrozenSet[str]] = None
        self._internal_date: Optional[datetime] = None
        self._size: Optional[int] = None
        self._header_block: Optional[bytes] = None
        self._raw: Optional[bytes] = None
        self._parsed_headers: Optional[EmailMessage] = None

    def absorb(self, data: Mapping[bytes, Any]) -> None:
        """Merge a FETCH response into the cached state."""
        if b"FLAGS" in data:
            self._flags = _decode_flags(data[b"FLAGS"])
        if b"INTERNALDATE" in data:
            self._internal_date = data[b"INTERNALDATE"]
        if b"RFC822.SIZE" in data:
            self._size = data[b"RFC822.SIZE"]
        if b"BODY[HEADER]" in data:
            self._header_block = data[b"BODY[HEADER]"]
            self._parsed_headers = None
        if b"BODY[]" in data:
            self._raw = data[b"BODY[]"]

    @property
    def folder(self) -> ImapFolder:
        return self._folder

    @property
    def size(self) -> Optional[int]:
        return self._size

    def _headers_message(self) -> EmailMessage:
        if self._parsed_headers is None:
            if self._header_block is None and self._raw is None:
                self.absorb(self._folder.fetch_one(self.uid, ["BODY.PEEK[HEADER]"]))
            source = self._header_block if self._header_block is not None else (self._raw or b"")
            self._parsed_headers = BytesHeaderParser(policy=email_policy).parsebytes(source)  # type: ignore[assignment]
        return self._parsed_headers  # type: ignore[return-value]

    @property
    def headers(self) -> List[Tuple[str, str]]:
        return [(name, str(value)) for name, value in self._headers_message().items()]

    @property
    def subject(self) -> Optional[str]:
        value = self._headers_message().get("Subject")
        return str(value) if value is not None else None

    @property
    def content_type(self) -> str:
        value = self._headers_message().get("Content-Type")
        return str(value) if value is not None else "text/plain"

    @property
    def flags(self) -> FrozenSet[str]:
        if self._flags is None:
            self.absorb(self._folder.fetch_one(self.uid, ["FLAGS"]))
        return self._flags or frozenset()

    @property
    def received_date(self) -> Optional[datetime]:
        if self._internal_date is None:
            self.absorb(self._folder.fetch_one(self.uid, ["INTERNALDATE"]))
        return self._internal_date

    @property
    def line_count(self) -> int:
        return count_body_lines(self.as_bytes())

    def as_bytes(self) -> bytes:
        if self._raw is None:
            self.absorb(self._folder.fetch_one(self.uid, ["BODY.PEEK[]"]))
            if self._raw is None:
                raise ProtocolError(f"Server returned no body for message uid={self.uid}")
        return self._raw

    def get_content(self) -> Any:
        return content_of(message_from_bytes(self.as_bytes(), policy=email_policy))

    def set_flags(self, flags: Iterable[str], value: bool = True) -> None:
        flags = list(flags)
        updated = self._folder.store_flags(self.uid, flags, value)
        if updated is not None:
            self._flags = updated
        elif self._flags is not None:
            self._flags = self._flags | frozenset(flags) if value else self._flags - frozenset(flags)

    def __repr__(self) -> str:
        return f"ImapMessage(uid={self.uid}, folder={self._folder.full_name!r})"


__all__ = ["ImapFolder", "ImapMessage", "ImapSession", "ImapStore"]
