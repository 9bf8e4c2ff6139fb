"""BridgeService: wires up the stores, watcher, pipeline and sink, and
runs them until shutdown.
"""

from __future__ import annotations

import asyncio
import signal
import time
from pathlib import Path

import structlog
import uvicorn

from .allowlist import AllowListStore
from .config import BridgeConfig, StorageConfig
from .delivery import TelegramSink
from .documents import DocumentStore
from .errors import DeliveryError
from .health import create_health_app
from .imap_client import AsyncImapClient
from .logging import setup_logging
from .models import BridgeStatus
from .pipeline import CycleReport, IntakePipeline
from .renderer import DocumentRenderer
from .routing import RoutingConfig, RoutingStore
from .settings import JsonFileStore
from .watcher import MailboxWatcher, MailEventKind

logger = structlog.get_logger()

ALLOWLIST_FILE = "whitelist.json"
ROUTING_FILE = "topic_settings.json"


def open_allow_list(config: StorageConfig) -> AllowListStore:
    return AllowListStore(JsonFileStore(Path(config.data_dir) / ALLOWLIST_FILE, list))


def open_routing(config: StorageConfig) -> RoutingStore:
    return RoutingStore(
        JsonFileStore(Path(config.data_dir) / ROUTING_FILE, lambda: RoutingConfig().to_json())
    )


class BridgeService:
    """Single-process bridge: mailbox events in, PDFs out to Telegram.

    ``run()`` starts the following concurrently via
    :class:`asyncio.TaskGroup`:

    * the mailbox watcher (long-lived IMAP session)
    * the event consumer, which starts one intake cycle per mail event
    * the retention sweep
    * the FastAPI health server
    """

    def __init__(
        self,
        config: BridgeConfig,
        *,
        sink: TelegramSink | None = None,
        watcher: MailboxWatcher | None = None,
        pipeline: IntakePipeline | None = None,
    ) -> None:
        self.config = config
        self.status: BridgeStatus = BridgeStatus.STARTING
        self.start_time: float = time.monotonic()
        self.last_report: CycleReport | None = None
        self.topics_supported: bool | None = None

        self.allow_list = open_allow_list(config.storage)
        self.routing = open_routing(config.storage)
        self.documents = DocumentStore(config.storage.documents_dir)

        self._sink = sink or TelegramSink(config.telegram)
        self._watcher = watcher or MailboxWatcher(config.imap, config.reconnect)
        self._pipeline = pipeline or IntakePipeline(
            lambda: AsyncImapClient(config.imap),
            self.allow_list,
            self.routing,
            DocumentRenderer(config.render),
            self.documents,
            self._sink,
            chat_id=config.telegram.chat_id,
            lookback_hours=config.imap.lookback_hours,
        )
        self._shutdown_event = asyncio.Event()
        self._cycles: set[asyncio.Task[None]] = set()

    # ------------------------------------------------------------------
    # Intake cycles
    # ------------------------------------------------------------------

    def trigger_check(self) -> asyncio.Task[None]:
        """Start an intake cycle without waiting for it."""
        task = asyncio.create_task(self._run_cycle())
        self._cycles.add(task)
        task.add_done_callback(self._cycles.discard)
        return task

    async def _run_cycle(self) -> None:
        try:
            self.last_report = await self._pipeline.run_cycle()
        except Exception:
            logger.exception("intake_cycle_error")

    async def _consume_events(self) -> None:
        while True:
            event = await self._watcher.events.get()
            if event.kind in (MailEventKind.READY, MailEventKind.NEW_MAIL):
                self.trigger_check()
            elif event.kind is MailEventKind.FAILED:
                self.status = BridgeStatus.DEGRADED
                logger.error("mailbox_watcher_failed", error=event.detail)
            elif event.kind is MailEventKind.END:
                if not self.config.reconnect.reconnect_on_end:
                    self.status = BridgeStatus.DEGRADED
                logger.warning("mailbox_watcher_ended")

    # ------------------------------------------------------------------
    # Retention sweep
    # ------------------------------------------------------------------

    async def _run_retention_loop(self) -> None:
        storage = self.config.storage
        while True:
            try:
                await self.documents.cleanup(storage.retention_hours)
            except OSError as exc:
                logger.error("documents_cleanup_error", error=str(exc))
            await asyncio.sleep(storage.cleanup_interval_seconds)

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    @property
    def watcher(self) -> MailboxWatcher:
        return self._watcher

    @property
    def active_cycles(self) -> int:
        return len(self._cycles)

    async def _run_health_server(self) -> None:
        """Start the FastAPI health server and shut it down on signal."""
        app = create_health_app(self)
        config = uvicorn.Config(
            app,
            host="0.0.0.0",
            port=self.config.health_port,
            log_level="warning",
        )
        server = uvicorn.Server(config)

        serve_task = asyncio.create_task(server.serve())
        await self._shutdown_event.wait()
        server.should_exit = True
        await serve_task

    async def _check_topics(self) -> None:
        chat_id = self.config.telegram.chat_id
        try:
            self.topics_supported = await self._sink.supports_topics(chat_id)
        except DeliveryError as exc:
            logger.warning("telegram_chat_info_failed", chat_id=chat_id, error=str(exc))
            return

        routing = await asyncio.to_thread(self.routing.load)
        if not self.topics_supported and (routing.topic_mappings or routing.default_topic):
            logger.warning(
                "telegram_topics_unsupported",
                chat_id=chat_id,
                mappings=len(routing.topic_mappings),
            )

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def stop(self) -> None:
        self._shutdown_event.set()

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self._on_signal, sig)

    def _on_signal(self, sig: signal.Signals) -> None:
        logger.info(
            "shutdown_signal_received",
            signal=sig.name,
            watcher_state=self._watcher.state.value,
            active_cycles=self.active_cycles,
        )
        self.stop()

    async def run(self) -> None:
        """Start all subsystems and run until shutdown.

        This is the single entry point::

            asyncio.run(service.run())
        """
        setup_logging(
            json=self.config.log_json,
            level=self.config.log_level,
            context={"bridge": self.config.name, "chat_id": self.config.telegram.chat_id},
        )
        self._install_signal_handlers()
        self.start_time = time.monotonic()

        logger.info("bridge_starting", name=self.config.name)

        await self._sink.start()
        await self._check_topics()
        self.status = BridgeStatus.RUNNING

        try:
            async with asyncio.TaskGroup() as tg:
                background = [
                    tg.create_task(self._watcher.run()),
                    tg.create_task(self._consume_events()),
                    tg.create_task(self._run_retention_loop()),
                ]
                tg.create_task(self._run_health_server())

                await self._shutdown_event.wait()
                self.status = BridgeStatus.STOPPING
                self._watcher.stop()
                for task in background:
                    task.cancel()
        except* Exception:
            logger.exception("bridge_task_group_error", name=self.config.name)
        finally:
            self.status = BridgeStatus.STOPPING
            if self._cycles:
                await asyncio.gather(*self._cycles, return_exceptions=True)
            await self._sink.stop()
            self.status = BridgeStatus.STOPPED
            logger.info("bridge_stopped", name=self.config.name)
