"""Async IMAP client wrapping stdlib imaplib with asyncio.to_thread."""

from __future__ import annotations

import asyncio
import imaplib
import itertools
import select
import ssl
import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

import structlog

from .config import ImapConfig
from .errors import FetchError, MailboxConnectionError

logger = structlog.get_logger()

_NETWORK_ERRORS = (imaplib.IMAP4.error, OSError, EOFError)


def _has_buffered_input(conn: imaplib.IMAP4) -> bool:
    """True when server data was already read off the socket.

    Such bytes sit in imaplib's file buffer or the TLS layer, where
    ``select`` cannot see them.
    """
    sock = conn.sock
    if isinstance(sock, ssl.SSLSocket) and sock.pending():
        return True
    previous = sock.gettimeout()
    sock.setblocking(False)
    try:
        return bool(conn.file.peek(1))
    except (BlockingIOError, ssl.SSLWantReadError):
        return False
    finally:
        sock.settimeout(previous)


@dataclass
class FetchedEmail:
    """Raw email data fetched from IMAP."""

    uid: str
    raw_bytes: bytes


class IdleOutcome(str, Enum):
    """Result of one wait for mailbox activity."""

    NEW_MAIL = "new_mail"
    TIMEOUT = "timeout"
    CLOSED = "closed"


class AsyncImapClient:
    """Async-friendly IMAP client.

    All blocking ``imaplib`` operations are wrapped with
    ``asyncio.to_thread()`` to avoid blocking the event loop.  imaplib and
    socket errors surface as :class:`MailboxConnectionError` or
    :class:`FetchError`.
    """

    def __init__(self, config: ImapConfig) -> None:
        self._config = config
        self._conn: imaplib.IMAP4_SSL | imaplib.IMAP4 | None = None
        self._idle_tags = itertools.count(1)

    @property
    def supports_idle(self) -> bool:
        return self._conn is not None and "IDLE" in self._conn.capabilities

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Connect, login, and select the configured mailbox read-write."""
        try:
            await asyncio.to_thread(self._connect_sync)
        except _NETWORK_ERRORS as exc:
            self._conn = None
            raise MailboxConnectionError(
                f"Cannot open {self._config.mailbox} on {self._config.host}: {exc}"
            ) from exc
        logger.info(
            "imap_connected",
            host=self._config.host,
            mailbox=self._config.mailbox,
            idle=self.supports_idle,
        )

    def _connect_sync(self) -> None:
        if self._config.use_ssl:
            self._conn = imaplib.IMAP4_SSL(self._config.host, self._config.port)
        else:
            self._conn = imaplib.IMAP4(self._config.host, self._config.port)
        self._conn.login(self._config.username, self._config.password.get_secret_value())
        status, data = self._conn.select(self._config.mailbox, readonly=False)
        if status != "OK":
            raise imaplib.IMAP4.error(f"SELECT failed: {data!r}")
        # Drop the EXISTS count from SELECT so NOOP polling only sees new ones
        self._conn.response("EXISTS")

    async def disconnect(self) -> None:
        """Close mailbox and logout."""
        if self._conn is not None:
            await asyncio.to_thread(self._disconnect_sync)
            self._conn = None
            logger.info("imap_disconnected")

    def _disconnect_sync(self) -> None:
        assert self._conn is not None
        try:
            self._conn.close()
        except _NETWORK_ERRORS:
            pass
        try:
            self._conn.logout()
        except _NETWORK_ERRORS:
            pass

    def abort(self) -> None:
        """Close the socket under a blocked IDLE so its thread returns."""
        if self._conn is None:
            return
        try:
            self._conn.shutdown()
        except _NETWORK_ERRORS:
            pass

    async def is_connected(self) -> bool:
        """Check connection liveness with a NOOP command."""
        if self._conn is None:
            return False
        try:
            status, _ = await asyncio.to_thread(self._conn.noop)
            return status == "OK"
        except _NETWORK_ERRORS:
            return False

    # ------------------------------------------------------------------
    # Message retrieval
    # ------------------------------------------------------------------

    async def search_unseen_since(self, since: datetime) -> list[str]:
        """UIDs of unseen messages received on or after *since*.

        IMAP date search is day-granular (not timestamp-granular).
        """
        assert self._conn is not None, "Not connected"
        criteria = f"(UNSEEN SINCE {since.strftime('%d-%b-%Y')})"
        try:
            status, data = await asyncio.to_thread(self._conn.uid, "SEARCH", None, criteria)
        except _NETWORK_ERRORS as exc:
            raise FetchError(f"SEARCH failed: {exc}") from exc
        if status != "OK":
            raise FetchError(f"SEARCH returned {status}: {data!r}")
        if not data or not data[0]:
            return []
        uids = [uid.decode() for uid in data[0].split()]
        logger.debug("imap_search_complete", criteria=criteria, found=len(uids))
        return uids

    async def fetch_message(self, uid: str) -> FetchedEmail:
        """Fetch the full message.  ``RFC822`` (not ``BODY.PEEK``) marks it seen."""
        assert self._conn is not None, "Not connected"
        try:
            status, msg_data = await asyncio.to_thread(self._conn.uid, "FETCH", uid, "(RFC822)")
        except _NETWORK_ERRORS as exc:
            raise FetchError(f"FETCH {uid} failed: {exc}") from exc
        if status != "OK":
            raise FetchError(f"FETCH {uid} returned {status}: {msg_data!r}")

        for item in msg_data or []:
            if isinstance(item, tuple) and len(item) >= 2 and isinstance(item[1], bytes):
                return FetchedEmail(uid=uid, raw_bytes=item[1])
        raise FetchError(f"FETCH {uid} returned no message body")

    # ------------------------------------------------------------------
    # Change notification
    # ------------------------------------------------------------------

    async def wait_for_mail(self, timeout: float | None = None) -> IdleOutcome:
        """Block until the server reports new mail, the wait expires, or
        the server closes the session.

        Uses IMAP IDLE when the server advertises it, otherwise sleeps for
        ``poll_interval_seconds`` and polls with NOOP.
        """
        assert self._conn is not None, "Not connected"
        try:
            if self.supports_idle:
                wait = timeout if timeout is not None else self._config.idle_timeout_seconds
                return await asyncio.to_thread(self._idle_sync, wait)
            await asyncio.sleep(
                timeout if timeout is not None else self._config.poll_interval_seconds
            )
            return await asyncio.to_thread(self._noop_sync)
        except _NETWORK_ERRORS as exc:
            raise MailboxConnectionError(f"Mailbox session lost: {exc}") from exc

    def _idle_sync(self, timeout: float) -> IdleOutcome:
        assert self._conn is not None
        conn = self._conn
        tag = f"MBI{next(self._idle_tags)}".encode()

        conn.send(tag + b" IDLE\r\n")
        line = conn.readline()
        if not line:
            return IdleOutcome.CLOSED
        if not line.startswith(b"+"):
            raise imaplib.IMAP4.error(f"IDLE rejected: {line!r}")

        outcome = IdleOutcome.TIMEOUT
        deadline = time.monotonic() + timeout
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            if not _has_buffered_input(conn):
                readable, _, _ = select.select([conn.sock], [], [], remaining)
                if not readable:
                    break
            line = conn.readline()
            if not line or line.startswith(b"* BYE"):
                return IdleOutcome.CLOSED
            if line.startswith(b"*") and line.rstrip().upper().endswith(b"EXISTS"):
                outcome = IdleOutcome.NEW_MAIL
                break

        conn.send(b"DONE\r\n")
        while True:
            line = conn.readline()
            if not line:
                return IdleOutcome.CLOSED
            if line.startswith(tag):
                break
            if line.startswith(b"*") and line.rstrip().upper().endswith(b"EXISTS"):
                outcome = IdleOutcome.NEW_MAIL
        return outcome

    def _noop_sync(self) -> IdleOutcome:
        assert self._conn is not None
        status, _ = self._conn.noop()
        if status != "OK":
            return IdleOutcome.CLOSED
        _, data = self._conn.response("EXISTS")
        if data and data[0] is not None:
            return IdleOutcome.NEW_MAIL
        return IdleOutcome.TIMEOUT
