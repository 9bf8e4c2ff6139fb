"""Tests for mailbridge.watcher."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from mailbridge.config import ImapConfig, ReconnectConfig
from mailbridge.errors import MailboxConnectionError
from mailbridge.imap_client import IdleOutcome
from mailbridge.watcher import MailboxWatcher, MailEventKind, WatcherState


def _make_client(*, connect_error: Exception | None = None, outcomes=()) -> MagicMock:
    """A fake AsyncImapClient whose wait_for_mail yields *outcomes* in order."""
    client = MagicMock()
    client.connect = AsyncMock(side_effect=connect_error)
    client.disconnect = AsyncMock()
    client.wait_for_mail = AsyncMock(side_effect=list(outcomes))
    return client


def _drain(queue: asyncio.Queue) -> list[MailEventKind]:
    kinds = []
    while not queue.empty():
        kinds.append(queue.get_nowait().kind)
    return kinds


def _watcher(
    imap_config: ImapConfig,
    reconnect_config: ReconnectConfig,
    clients: list[MagicMock],
) -> MailboxWatcher:
    factory = MagicMock(side_effect=clients)
    return MailboxWatcher(imap_config, reconnect_config, client_factory=factory)


class TestMailboxWatcher:
    @pytest.mark.asyncio
    async def test_ready_and_new_mail_events(self, imap_config, reconnect_config):
        client = _make_client()
        watcher = _watcher(imap_config, reconnect_config, [client])

        async def wait_for_mail():
            if client.wait_for_mail.await_count == 1:
                return IdleOutcome.NEW_MAIL
            watcher.stop()
            return IdleOutcome.TIMEOUT

        client.wait_for_mail.side_effect = wait_for_mail
        await watcher.run()

        assert _drain(watcher.events) == [MailEventKind.READY, MailEventKind.NEW_MAIL]
        assert watcher.state is WatcherState.DISCONNECTED
        client.disconnect.assert_awaited_once()
        client.abort.assert_called_once()

    @pytest.mark.asyncio
    async def test_timeout_does_not_emit(self, imap_config, reconnect_config):
        client = _make_client()
        watcher = _watcher(imap_config, reconnect_config, [client])

        async def wait_for_mail():
            if client.wait_for_mail.await_count < 3:
                return IdleOutcome.TIMEOUT
            watcher.stop()
            return IdleOutcome.TIMEOUT

        client.wait_for_mail.side_effect = wait_for_mail
        await watcher.run()

        assert _drain(watcher.events) == [MailEventKind.READY]

    @pytest.mark.asyncio
    async def test_fails_after_max_reconnects(self, imap_config):
        config = ReconnectConfig(max_attempts=3, delay_seconds=0)
        clients = [_make_client(connect_error=MailboxConnectionError("refused")) for _ in range(4)]
        watcher = _watcher(imap_config, config, clients)

        await watcher.run()

        assert watcher.state is WatcherState.FAILED
        assert watcher.reconnect_attempts == 3
        assert all(c.connect.await_count == 1 for c in clients)
        assert _drain(watcher.events) == [MailEventKind.FAILED]

    @pytest.mark.asyncio
    async def test_successful_connect_resets_counter(self, imap_config):
        config = ReconnectConfig(max_attempts=2, delay_seconds=0)
        refused = MailboxConnectionError("refused")
        lost = MailboxConnectionError("session lost")
        clients = [
            _make_client(connect_error=refused),
            _make_client(connect_error=refused),
            _make_client(outcomes=[lost]),
            _make_client(connect_error=refused),
            _make_client(),
        ]
        watcher = _watcher(imap_config, config, clients)

        async def stop_on_wait():
            watcher.stop()
            return IdleOutcome.TIMEOUT

        clients[4].wait_for_mail.side_effect = stop_on_wait
        await watcher.run()

        # Without the reset the lost session would have exhausted max_attempts=2
        assert watcher.state is WatcherState.DISCONNECTED
        assert watcher.reconnect_attempts == 0
        assert _drain(watcher.events) == [MailEventKind.READY, MailEventKind.READY]

    @pytest.mark.asyncio
    async def test_clean_end_stops_without_reconnect(self, imap_config, reconnect_config):
        client = _make_client(outcomes=[IdleOutcome.CLOSED])
        watcher = _watcher(imap_config, reconnect_config, [client])

        await watcher.run()

        assert watcher.state is WatcherState.DISCONNECTED
        assert _drain(watcher.events) == [MailEventKind.READY, MailEventKind.END]
        assert watcher.reconnect_attempts == 0

    @pytest.mark.asyncio
    async def test_clean_end_reconnects_when_configured(self, imap_config):
        config = ReconnectConfig(max_attempts=3, delay_seconds=0, reconnect_on_end=True)
        first = _make_client(outcomes=[IdleOutcome.CLOSED])
        second = _make_client()
        watcher = _watcher(imap_config, config, [first, second])

        async def stop_on_wait():
            watcher.stop()
            return IdleOutcome.TIMEOUT

        second.wait_for_mail.side_effect = stop_on_wait
        await watcher.run()

        assert _drain(watcher.events) == [
            MailEventKind.READY,
            MailEventKind.END,
            MailEventKind.READY,
        ]
        assert watcher.reconnect_attempts == 0

    @pytest.mark.asyncio
    async def test_unexpected_error_propagates(self, imap_config, reconnect_config):
        client = _make_client(outcomes=[RuntimeError("bug")])
        watcher = _watcher(imap_config, reconnect_config, [client])

        with pytest.raises(RuntimeError, match="bug"):
            await watcher.run()
        client.disconnect.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_error_during_stop_is_not_retried(self, imap_config, reconnect_config):
        client = _make_client()
        watcher = _watcher(imap_config, reconnect_config, [client])

        async def aborted():
            watcher.stop()
            raise MailboxConnectionError("socket closed")

        client.wait_for_mail.side_effect = aborted
        await watcher.run()

        assert watcher.reconnect_attempts == 0
        assert _drain(watcher.events) == [MailEventKind.READY]

    @pytest.mark.asyncio
    async def test_stop_before_run(self, imap_config, reconnect_config):
        factory = MagicMock()
        watcher = MailboxWatcher(imap_config, reconnect_config, client_factory=factory)
        watcher.stop()
        await watcher.run()
        factory.assert_not_called()
