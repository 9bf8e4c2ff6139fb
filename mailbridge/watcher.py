"""MailboxWatcher: keeps one long-lived mailbox session and publishes
mail events onto a queue.

State machine::

    DISCONNECTED → CONNECTING → READY → (new mail | error | end)

* new mail: a ``NEW_MAIL`` event is queued; the watcher never waits for
  the resulting intake cycle.
* error: reconnect after a fixed delay, at most ``max_attempts`` times in
  a row; then ``FAILED`` (terminal, the process must be restarted).
* end: a clean server-initiated close moves to ``DISCONNECTED`` and the
  watcher stops, unless ``reconnect_on_end`` is set.

A successful connection resets the reconnect counter.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

import structlog
from tenacity import RetryCallState

from .config import ImapConfig, ReconnectConfig
from .errors import MailboxConnectionError
from .imap_client import AsyncImapClient, IdleOutcome
from .retry import reconnect_policy

logger = structlog.get_logger()


class WatcherState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    READY = "ready"
    FAILED = "failed"


class MailEventKind(str, Enum):
    READY = "ready"
    NEW_MAIL = "new_mail"
    END = "end"
    FAILED = "failed"


@dataclass(frozen=True)
class MailEvent:
    kind: MailEventKind
    detail: str | None = None


class MailboxWatcher:
    """Own the watcher connection; consumers read :attr:`events`."""

    def __init__(
        self,
        imap_config: ImapConfig,
        reconnect_config: ReconnectConfig,
        client_factory: Callable[[], AsyncImapClient] | None = None,
    ) -> None:
        self._imap_config = imap_config
        self._reconnect_config = reconnect_config
        self._client_factory = client_factory or (lambda: AsyncImapClient(imap_config))
        self._client: AsyncImapClient | None = None
        self._stopping = False

        self.events: asyncio.Queue[MailEvent] = asyncio.Queue()
        self.state: WatcherState = WatcherState.DISCONNECTED
        self.reconnect_attempts: int = 0

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def run(self) -> None:
        """Watch the mailbox until stopped, ended, or out of reconnects."""
        policy = reconnect_policy(
            self._reconnect_config,
            attempts_used=lambda: self.reconnect_attempts,
            before_sleep=self._before_reconnect,
            retryable_exceptions=(MailboxConnectionError,),
        )
        try:
            async for attempt in policy:
                with attempt:
                    await self._run_session()
        except MailboxConnectionError as exc:
            self._set_state(WatcherState.FAILED)
            logger.error(
                "watcher_reconnect_exhausted",
                attempts=self.reconnect_attempts,
                error=str(exc),
            )
            self.events.put_nowait(MailEvent(MailEventKind.FAILED, str(exc)))

    def stop(self) -> None:
        """Ask the watcher to finish and unblock a pending IDLE."""
        self._stopping = True
        if self._client is not None:
            self._client.abort()

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    async def _run_session(self) -> None:
        if self._stopping:
            return

        client = self._client_factory()
        self._client = client
        self._set_state(WatcherState.CONNECTING)
        try:
            await client.connect()
            self.reconnect_attempts = 0
            self._set_state(WatcherState.READY)
            self.events.put_nowait(MailEvent(MailEventKind.READY))

            while not self._stopping:
                outcome = await client.wait_for_mail()
                if outcome is IdleOutcome.NEW_MAIL:
                    logger.info("watcher_new_mail", mailbox=self._imap_config.mailbox)
                    self.events.put_nowait(MailEvent(MailEventKind.NEW_MAIL))
                elif outcome is IdleOutcome.CLOSED:
                    self._set_state(WatcherState.DISCONNECTED)
                    logger.info("watcher_connection_ended")
                    self.events.put_nowait(MailEvent(MailEventKind.END))
                    if self._reconnect_config.reconnect_on_end:
                        raise MailboxConnectionError("Server closed the connection")
                    return
        except MailboxConnectionError:
            if self._stopping:
                return
            self._set_state(WatcherState.DISCONNECTED)
            raise
        finally:
            self._client = None
            try:
                await client.disconnect()
            except Exception as exc:
                logger.debug("watcher_disconnect_failed", error=str(exc))

        self._set_state(WatcherState.DISCONNECTED)

    def _before_reconnect(self, retry_state: RetryCallState) -> None:
        self.reconnect_attempts += 1
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            "watcher_connection_error",
            error=str(exc),
            attempt=self.reconnect_attempts,
            max_attempts=self._reconnect_config.max_attempts,
            delay_seconds=self._reconnect_config.delay_seconds,
        )

    def _set_state(self, state: WatcherState) -> None:
        if state is not self.state:
            logger.debug("watcher_state_changed", old=self.state.value, new=state.value)
            self.state = state
