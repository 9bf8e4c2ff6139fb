"""Delivery sink: sends rendered documents to a Telegram chat via the Bot API."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Protocol

import httpx
import structlog

from .config import TelegramConfig
from .errors import DeliveryError, SubChannelNotFoundError

logger = structlog.get_logger()

CAPTION_LIMIT = 1024
THREAD_NOT_FOUND = "message thread not found"


@dataclass(frozen=True)
class DeliveryRequest:
    """One document send; built per message and never persisted."""

    chat_id: str
    path: Path
    caption: str
    topic_id: int | None = None

    def without_topic(self) -> DeliveryRequest:
        return replace(self, topic_id=None)

    async def send(self, sink: DeliverySink) -> int:
        return await sink.send_document(
            self.chat_id, self.path, caption=self.caption, topic_id=self.topic_id
        )


class DeliverySink(Protocol):
    """What the intake pipeline needs from a messaging channel."""

    async def send_document(
        self, chat_id: str, path: Path, *, caption: str, topic_id: int | None = None
    ) -> int:
        """Send the document and return the channel's message id.

        Raises :class:`SubChannelNotFoundError` when ``topic_id`` names a
        topic that does not exist, :class:`DeliveryError` otherwise.
        """
        ...

    async def supports_topics(self, chat_id: str) -> bool: ...


def truncate_caption(caption: str, limit: int = CAPTION_LIMIT) -> str:
    if len(caption) <= limit:
        return caption
    return caption[: limit - 1] + "…"


class TelegramSink:
    """Bot API client over :class:`httpx.AsyncClient`."""

    def __init__(self, config: TelegramConfig) -> None:
        self._config = config
        self._client: httpx.AsyncClient | None = None

    async def start(self) -> None:
        token = self._config.bot_token.get_secret_value()
        self._client = httpx.AsyncClient(
            base_url=f"{self._config.api_base_url.rstrip('/')}/bot{token}",
            timeout=httpx.Timeout(self._config.timeout_seconds),
        )
        logger.info("telegram_sink_started", chat_id=self._config.chat_id)

    async def stop(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            logger.info("telegram_sink_stopped")

    # ------------------------------------------------------------------
    # API calls
    # ------------------------------------------------------------------

    async def send_document(
        self, chat_id: str, path: Path, *, caption: str, topic_id: int | None = None
    ) -> int:
        content = await asyncio.to_thread(path.read_bytes)
        data: dict[str, Any] = {
            "chat_id": chat_id,
            "caption": truncate_caption(caption),
        }
        if topic_id is not None:
            data["message_thread_id"] = str(topic_id)

        result = await self._call(
            "sendDocument",
            data=data,
            files={"document": (path.name, content, "application/pdf")},
        )
        message_id = int(result.get("message_id", 0))
        logger.debug(
            "telegram_document_sent",
            chat_id=chat_id,
            topic_id=topic_id,
            message_id=message_id,
        )
        return message_id

    async def supports_topics(self, chat_id: str) -> bool:
        result = await self._call("getChat", data={"chat_id": chat_id})
        return bool(result.get("is_forum", False))

    async def _call(self, method: str, **kwargs: Any) -> dict[str, Any]:
        assert self._client is not None, "Telegram sink not started"
        try:
            response = await self._client.post(f"/{method}", **kwargs)
        except httpx.HTTPError as exc:
            raise DeliveryError(f"{method} request failed: {exc}") from exc

        try:
            body = response.json()
        except ValueError as exc:
            raise DeliveryError(
                f"{method} returned non-JSON response",
                error_code=response.status_code,
            ) from exc

        if not body.get("ok"):
            description = str(body.get("description") or f"{method} failed")
            error_code = body.get("error_code", response.status_code)
            if THREAD_NOT_FOUND in description.lower():
                raise SubChannelNotFoundError(description, error_code=error_code)
            raise DeliveryError(description, error_code=error_code)

        result = body.get("result")
        return result if isinstance(result, dict) else {}
