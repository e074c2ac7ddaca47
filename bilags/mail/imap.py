"""IMAP mail source.

Connects over TLS (or plain IMAP when APP_IMAP_TLS=false), opens the
configured mailbox read-only and hands raw message bytes to the controller.
Connection attempts that time out are retried with a short backoff.
"""

import imaplib
import logging
import re
import socket
from types import TracebackType
from typing import Protocol

from pydantic import BaseModel
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from bilags.shared.config import Settings
from bilags.shared.errors import MailCredentialsMissingError, MailSourceError

logger = logging.getLogger(__name__)

_STATUS_MESSAGES = re.compile(rb"MESSAGES\s+(\d+)")


class MailboxStatus(BaseModel):
    unseen: int = 0
    total: int = 0


class MailSource(Protocol):
    """Minimal mail access needed by the intake controller."""

    def __enter__(self) -> "MailSource": ...

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None: ...

    def search(self, include_seen: bool = True) -> list[str]: ...

    def fetch(self, message_ref: str) -> bytes | None: ...

    def status(self) -> MailboxStatus: ...


class ImapMailSource:
    """MailSource backed by the standard library IMAP client."""

    def __init__(self, settings: Settings) -> None:
        """Initialize IMAP source.

        Args:
            settings: Application settings with imap_* fields

        Raises:
            MailCredentialsMissingError: If user or password is not configured
        """
        if not settings.imap_user or not settings.imap_password:
            raise MailCredentialsMissingError()
        self.settings = settings
        self._conn: imaplib.IMAP4 | None = None

    @retry(
        retry=retry_if_exception_type((socket.timeout, TimeoutError)),
        wait=wait_exponential(multiplier=1, min=1, max=3),
        stop=stop_after_attempt(3),
        reraise=True,
    )
    def _connect(self) -> imaplib.IMAP4:
        s = self.settings
        timeout = s.imap_socket_timeout_seconds
        conn: imaplib.IMAP4
        if s.imap_tls:
            conn = imaplib.IMAP4_SSL(s.imap_host, s.imap_port, timeout=timeout)
        else:
            conn = imaplib.IMAP4(s.imap_host, s.imap_port, timeout=timeout)
        # App passwords are often pasted with spaces
        conn.login(s.imap_user, re.sub(r"\s+", "", s.imap_password))
        typ, _ = conn.select(s.mailbox, readonly=True)
        if typ != "OK":
            conn.logout()
            raise MailSourceError(f"Cannot open mailbox {s.mailbox}")
        return conn

    def __enter__(self) -> "ImapMailSource":
        try:
            self._conn = self._connect()
        except (imaplib.IMAP4.error, OSError) as e:
            logger.error(f"IMAP connect to {self.settings.imap_host} failed: {e}")
            raise MailSourceError(f"IMAP connect failed: {e}") from e
        logger.info(f"Connected to {self.settings.imap_host}/{self.settings.mailbox}")
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if self._conn is None:
            return
        try:
            self._conn.logout()
        except (imaplib.IMAP4.error, OSError) as e:
            logger.debug(f"IMAP logout failed: {e}")
        self._conn = None

    @property
    def conn(self) -> imaplib.IMAP4:
        if self._conn is None:
            raise MailSourceError("IMAP source is not connected")
        return self._conn

    def search(self, include_seen: bool = True) -> list[str]:
        """Return message UIDs, newest first."""
        typ, data = self.conn.uid("SEARCH", None, "ALL" if include_seen else "UNSEEN")
        if typ != "OK":
            raise MailSourceError(f"IMAP search failed: {typ}")
        uids = (data[0] or b"").split()
        return [uid.decode() for uid in sorted(uids, key=int, reverse=True)]

    def fetch(self, message_ref: str) -> bytes | None:
        """Fetch the full source of one message, or None when the server sends none."""
        typ, data = self.conn.uid("FETCH", message_ref, "(BODY.PEEK[])")
        if typ != "OK":
            return None
        for item in data:
            if isinstance(item, tuple) and len(item) > 1 and item[1]:
                return bytes(item[1])
        return None

    def status(self) -> MailboxStatus:
        """Unseen and total message counts of the configured mailbox."""
        typ, data = self.conn.uid("SEARCH", None, "UNSEEN")
        unseen = len((data[0] or b"").split()) if typ == "OK" else 0
        typ, data = self.conn.status(self.settings.mailbox, "(MESSAGES)")
        total = 0
        if typ == "OK" and data and data[0]:
            match = _STATUS_MESSAGES.search(data[0])
            total = int(match.group(1)) if match else 0
        return MailboxStatus(unseen=unseen, total=total)
