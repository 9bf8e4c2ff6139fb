"""IntakePipeline: one fetch cycle: search, fetch, parse, filter, render,
store, route, deliver.

Each cycle opens its own mailbox connection, independent of the watcher.
A failure in one message is logged and recorded as that message's
outcome; the rest of the batch continues.  Only a SEARCH/FETCH failure
aborts the cycle.
"""

from __future__ import annotations

import asyncio
from collections import Counter
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum

import structlog

from .allowlist import AllowListStore
from .delivery import DeliveryRequest, DeliverySink
from .documents import DocumentStore
from .errors import (
    DeliveryError,
    FetchError,
    MailboxConnectionError,
    ParseError,
    SubChannelNotFoundError,
)
from .forwarded import extract_forwarded_comment
from .imap_client import AsyncImapClient, FetchedEmail
from .parser import MimeParser, ParsedEmail
from .renderer import DocumentRenderer, RenderStatus
from .routing import RoutingStore, is_valid_topic_id

logger = structlog.get_logger()


class MessageOutcome(str, Enum):
    DELIVERED = "delivered"
    DELIVERED_WITHOUT_TOPIC = "delivered_without_topic"
    REJECTED = "rejected"
    PARSE_FAILED = "parse_failed"
    RENDER_FAILED = "render_failed"
    DELIVERY_FAILED = "delivery_failed"
    FAILED = "failed"


@dataclass
class CycleReport:
    """Summary of one intake cycle."""

    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    finished_at: datetime | None = None
    found: int = 0
    outcomes: Counter[MessageOutcome] = field(default_factory=Counter)
    aborted: str | None = None

    def record(self, outcome: MessageOutcome) -> None:
        self.outcomes[outcome] += 1

    def count(self, outcome: MessageOutcome) -> int:
        return self.outcomes[outcome]

    def to_dict(self) -> dict[str, object]:
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "found": self.found,
            "outcomes": {k.value: v for k, v in self.outcomes.items()},
            "aborted": self.aborted,
        }


def build_caption(sender: str, subject: str, comment: str | None = None) -> str:
    caption = f"{sender}: {subject or 'No Subject'}"
    if comment:
        caption += f"\n\n{comment}"
    return caption


class IntakePipeline:
    """Process every unseen recent message in the mailbox once.

    Collaborators are passed in explicitly; nothing is looked up from
    module globals.
    """

    def __init__(
        self,
        client_factory: Callable[[], AsyncImapClient],
        allow_list: AllowListStore,
        routing: RoutingStore,
        renderer: DocumentRenderer,
        documents: DocumentStore,
        sink: DeliverySink,
        *,
        chat_id: str,
        lookback_hours: float = 24.0,
    ) -> None:
        self._client_factory = client_factory
        self._allow_list = allow_list
        self._routing = routing
        self._renderer = renderer
        self._documents = documents
        self._sink = sink
        self._chat_id = chat_id
        self._lookback = timedelta(hours=lookback_hours)
        self._parser = MimeParser()

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------

    async def run_cycle(self) -> CycleReport:
        report = CycleReport()
        client = self._client_factory()
        try:
            await client.connect()
        except MailboxConnectionError as exc:
            logger.error("intake_connect_failed", error=str(exc))
            report.aborted = str(exc)
            report.finished_at = datetime.now(UTC)
            return report

        try:
            since = datetime.now(UTC) - self._lookback
            uids = await client.search_unseen_since(since)
            report.found = len(uids)
            if not uids:
                logger.info("intake_no_new_messages")
                return report

            logger.info("intake_messages_found", count=len(uids))
            for uid in uids:
                fetched = await client.fetch_message(uid)
                report.record(await self.process_message(fetched))
        except FetchError as exc:
            logger.error("intake_fetch_failed", error=str(exc))
            report.aborted = str(exc)
        finally:
            await client.disconnect()
            report.finished_at = datetime.now(UTC)

        logger.info(
            "intake_cycle_complete",
            found=report.found,
            outcomes={k.value: v for k, v in report.outcomes.items()},
            aborted=report.aborted,
        )
        return report

    # ------------------------------------------------------------------
    # Per message
    # ------------------------------------------------------------------

    async def process_message(self, fetched: FetchedEmail) -> MessageOutcome:
        with structlog.contextvars.bound_contextvars(imap_uid=fetched.uid):
            try:
                return await self._process(fetched)
            except Exception:
                logger.exception("intake_message_failed")
                return MessageOutcome.FAILED

    async def _process(self, fetched: FetchedEmail) -> MessageOutcome:
        try:
            email = self._parser.parse(fetched.raw_bytes)
        except ParseError as exc:
            logger.warning("intake_parse_failed", error=str(exc))
            return MessageOutcome.PARSE_FAILED

        sender = email.sender_address
        with structlog.contextvars.bound_contextvars(sender=sender):
            logger.info("intake_message_received", subject=email.subject)
            return await self._handle(email, sender)

    async def _handle(self, email: ParsedEmail, sender: str) -> MessageOutcome:
        if not await asyncio.to_thread(self._allow_list.is_allowed, sender):
            logger.info("intake_sender_not_allowed")
            return MessageOutcome.REJECTED

        comment = extract_forwarded_comment(email.body_text)

        result = await self._renderer.try_render(email)
        if result.status is RenderStatus.FAILED or result.pdf is None:
            logger.error("intake_render_failed", error=repr(result.error))
            return MessageOutcome.RENDER_FAILED
        if result.status is RenderStatus.DEGRADED:
            logger.warning("intake_render_degraded", error=repr(result.error))

        path = await self._documents.save(result.pdf)

        topic = await asyncio.to_thread(self._routing.resolve, sender)
        request = DeliveryRequest(
            chat_id=self._chat_id,
            path=path,
            caption=build_caption(sender, email.subject, comment),
            topic_id=topic if topic is not None and is_valid_topic_id(topic) else None,
        )
        return await self._deliver(request)

    async def _deliver(self, request: DeliveryRequest) -> MessageOutcome:
        try:
            await request.send(self._sink)
        except SubChannelNotFoundError as exc:
            if request.topic_id is None:
                logger.error("intake_delivery_failed", error=str(exc))
                return MessageOutcome.DELIVERY_FAILED
            logger.warning(
                "intake_topic_not_found_retrying",
                topic_id=request.topic_id,
                error=str(exc),
            )
            try:
                await request.without_topic().send(self._sink)
            except DeliveryError as retry_exc:
                logger.error("intake_delivery_failed", error=str(retry_exc))
                return MessageOutcome.DELIVERY_FAILED
            logger.info("intake_delivered", topic_id=None, path=str(request.path))
            return MessageOutcome.DELIVERED_WITHOUT_TOPIC
        except DeliveryError as exc:
            logger.error("intake_delivery_failed", topic_id=request.topic_id, error=str(exc))
            return MessageOutcome.DELIVERY_FAILED

        logger.info("intake_delivered", topic_id=request.topic_id, path=str(request.path))
        return MessageOutcome.DELIVERED
