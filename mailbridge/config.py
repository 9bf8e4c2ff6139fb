"""Bridge configuration loaded from environment variables.

Uses pydantic-settings so every field can be overridden via env vars.
Required credentials have no defaults: a missing IMAP login or Telegram
token fails validation and stops the process before anything connects.
"""

from __future__ import annotations

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings


class ImapConfig(BaseSettings):
    """IMAP server connection settings."""

    model_config = {"env_prefix": "IMAP_"}

    host: str = Field(description="IMAP server hostname")
    port: int = Field(default=993, description="IMAP server port")
    use_ssl: bool = Field(default=True, description="Use SSL/TLS connection")
    username: str = Field(description="IMAP login username")
    password: SecretStr = Field(description="IMAP login password")
    mailbox: str = Field(default="INBOX", description="IMAP mailbox/folder to watch")
    idle_timeout_seconds: float = Field(
        default=300.0,
        description="Length of one IDLE wait before it is re-issued",
    )
    poll_interval_seconds: float = Field(
        default=30.0,
        description="Seconds between NOOP polls when the server lacks IDLE",
    )
    lookback_hours: float = Field(
        default=24.0,
        description="Only unseen messages received within this window are fetched",
    )


class ReconnectConfig(BaseSettings):
    """Reconnect policy for the long-lived watcher connection (Tenacity)."""

    model_config = {"env_prefix": "RECONNECT_"}

    max_attempts: int = Field(default=10, description="Reconnects before giving up")
    delay_seconds: float = Field(default=10.0, description="Fixed wait between reconnects")
    reconnect_on_end: bool = Field(
        default=False,
        description="Also reconnect after a clean server-initiated close",
    )


class TelegramConfig(BaseSettings):
    """Telegram Bot API settings for document delivery."""

    model_config = {"env_prefix": "TELEGRAM_"}

    bot_token: SecretStr = Field(description="Bot API token")
    chat_id: str = Field(description="Destination chat id (the general channel)")
    api_base_url: str = Field(
        default="https://api.telegram.org",
        description="Base URL of the Bot API",
    )
    timeout_seconds: float = Field(default=60.0, description="HTTP request timeout")


class RenderConfig(BaseSettings):
    """PDF rendering budgets and resource policy."""

    model_config = {"env_prefix": "RENDER_"}

    settle_timeout_seconds: float = Field(
        default=60.0,
        description="Budget for loading the document and its resources",
    )
    export_timeout_seconds: float = Field(default=60.0, description="Budget for PDF export")
    allow_remote_images: bool = Field(
        default=True,
        description=(
            "Fetch any http(s) resource; when off only images, fonts and "
            "stylesheets (by extension) are fetched"
        ),
    )
    remote_fetch_timeout_seconds: float = Field(
        default=10.0,
        description="Per-resource timeout for remote fetches",
    )


class StorageConfig(BaseSettings):
    """On-disk locations for settings files and rendered documents."""

    model_config = {"env_prefix": "STORAGE_"}

    data_dir: str = Field(default="data", description="Directory for JSON settings files")
    documents_dir: str = Field(default="uploads", description="Directory for rendered PDFs")
    retention_hours: float = Field(
        default=24.0,
        description="Rendered documents older than this are swept",
    )
    cleanup_interval_seconds: float = Field(
        default=3600.0,
        description="Seconds between retention sweeps",
    )


class BridgeConfig(BaseSettings):
    """Root configuration for a bridge instance.

    Nested configs are populated from their own env-var prefixes.
    """

    model_config = {"env_prefix": "BRIDGE_"}

    name: str = Field(default="mailbridge", description="Instance name used in logs")
    health_port: int = Field(default=8080, description="Port for the health endpoints")
    log_json: bool = Field(default=True, description="Emit JSON log lines")
    log_level: str = Field(default="INFO", description="Root log level")

    imap: ImapConfig = Field(default_factory=ImapConfig)
    reconnect: ReconnectConfig = Field(default_factory=ReconnectConfig)
    telegram: TelegramConfig = Field(default_factory=TelegramConfig)
    render: RenderConfig = Field(default_factory=RenderConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
