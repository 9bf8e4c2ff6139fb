"""Shared test fixtures for the mailbridge test suite."""

from __future__ import annotations

from email import encoders
from email.mime.base import MIMEBase
from email.mime.image import MIMEImage
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from pathlib import Path

import pytest

from mailbridge.config import (
    BridgeConfig,
    ImapConfig,
    ReconnectConfig,
    RenderConfig,
    StorageConfig,
    TelegramConfig,
)
from mailbridge.imap_client import FetchedEmail

# Smallest valid PNG (1x1 transparent pixel)
PNG_PIXEL = bytes.fromhex(
    "89504e470d0a1a0a0000000d4948445200000001000000010806000000"
    "1f15c4890000000d4944415478da636460f85f0f0002870180eb47ba92"
    "0000000049454e44ae426082"
)


@pytest.fixture
def imap_config() -> ImapConfig:
    return ImapConfig(
        host="imap.test.com",
        port=993,
        use_ssl=True,
        username="testuser",
        password="testpass",
        mailbox="INBOX",
        idle_timeout_seconds=5.0,
        poll_interval_seconds=0.01,
    )


@pytest.fixture
def reconnect_config() -> ReconnectConfig:
    return ReconnectConfig(max_attempts=3, delay_seconds=0.0)


@pytest.fixture
def telegram_config() -> TelegramConfig:
    return TelegramConfig(
        bot_token="123:ABC",
        chat_id="-1001234567890",
        api_base_url="https://telegram.test",
        timeout_seconds=5.0,
    )


@pytest.fixture
def render_config() -> RenderConfig:
    return RenderConfig(
        settle_timeout_seconds=5.0,
        export_timeout_seconds=5.0,
        allow_remote_images=False,
    )


@pytest.fixture
def storage_config(tmp_path: Path) -> StorageConfig:
    return StorageConfig(
        data_dir=str(tmp_path / "data"),
        documents_dir=str(tmp_path / "uploads"),
        retention_hours=24.0,
        cleanup_interval_seconds=3600.0,
    )


@pytest.fixture
def bridge_config(
    imap_config: ImapConfig,
    reconnect_config: ReconnectConfig,
    telegram_config: TelegramConfig,
    render_config: RenderConfig,
    storage_config: StorageConfig,
) -> BridgeConfig:
    return BridgeConfig(
        name="mailbridge-test",
        health_port=18080,
        log_json=False,
        imap=imap_config,
        reconnect=reconnect_config,
        telegram=telegram_config,
        render=render_config,
        storage=storage_config,
    )


# ------------------------------------------------------------------
# Sample EML builders
# ------------------------------------------------------------------


def _build_plain_email(
    *,
    subject: str = "Test Subject",
    from_addr: str = "Sender Name <sender@example.com>",
    to_addr: str = "recipient@example.com",
    body: str = "Hello, World!",
    message_id: str = "<test-001@example.com>",
    cc: str | None = None,
) -> bytes:
    """Build a simple plain-text email as raw bytes."""
    msg = MIMEText(body, "plain", "utf-8")
    msg["Subject"] = subject
    msg["From"] = from_addr
    msg["To"] = to_addr
    msg["Message-ID"] = message_id
    msg["Date"] = "Sun, 01 Jun 2025 12:00:00 +0000"
    if cc:
        msg["Cc"] = cc
    return msg.as_bytes()


def _build_html_email(*, body_html: str = "<p>Hello</p>") -> bytes:
    msg = MIMEText(body_html, "html", "utf-8")
    msg["Subject"] = "HTML Email"
    msg["From"] = "sender@example.com"
    msg["To"] = "recipient@example.com"
    msg["Message-ID"] = "<html-001@example.com>"
    msg["Date"] = "Sun, 01 Jun 2025 12:00:00 +0000"
    return msg.as_bytes()


def _build_multipart_email(
    *,
    body_text: str = "Plain body",
    body_html: str = "<p>HTML body</p>",
    attachments: list[tuple[str, str, bytes]] | None = None,
) -> bytes:
    """Build a multipart email with text, HTML, and optional attachments."""
    msg = MIMEMultipart("mixed")
    msg["Subject"] = "Multipart Email"
    msg["From"] = "sender@example.com"
    msg["To"] = "recipient@example.com"
    msg["Message-ID"] = "<multi-001@example.com>"
    msg["Date"] = "Sun, 01 Jun 2025 12:00:00 +0000"

    alt = MIMEMultipart("alternative")
    alt.attach(MIMEText(body_text, "plain"))
    alt.attach(MIMEText(body_html, "html"))
    msg.attach(alt)

    for filename, content_type, payload in attachments or []:
        maintype, subtype = content_type.split("/", 1)
        part = MIMEBase(maintype, subtype)
        part.set_payload(payload)
        encoders.encode_base64(part)
        part.add_header("Content-Disposition", "attachment", filename=filename)
        msg.attach(part)

    return msg.as_bytes()


def _build_inline_image_email(*, content_id: str = "img1") -> bytes:
    """multipart/related with an HTML body referencing an inline PNG by cid."""
    msg = MIMEMultipart("related")
    msg["Subject"] = "Inline Image"
    msg["From"] = "sender@example.com"
    msg["To"] = "recipient@example.com"
    msg["Message-ID"] = "<inline-001@example.com>"
    msg["Date"] = "Sun, 01 Jun 2025 12:00:00 +0000"

    msg.attach(MIMEText(f'<p>Logo:</p><img src="cid:{content_id}">', "html"))
    image = MIMEImage(PNG_PIXEL, "png")
    image.add_header("Content-ID", f"<{content_id}>")
    image.add_header("Content-Disposition", "inline")
    msg.attach(image)
    return msg.as_bytes()


def _build_forwarded_email(*, comment: str = "Hi team") -> bytes:
    body = (
        f"{comment}\n\n"
        "---------- Forwarded message ---------\n"
        "From: Someone <someone@example.org>\n"
        "Subject: Original\n\n"
        "Original body\n"
    )
    return _build_plain_email(subject="Fwd: Original", body=body)


@pytest.fixture
def plain_eml_bytes() -> bytes:
    return _build_plain_email()


@pytest.fixture
def html_eml_bytes() -> bytes:
    return _build_html_email()


@pytest.fixture
def multipart_eml_bytes() -> bytes:
    return _build_multipart_email(
        attachments=[
            ("report.pdf", "application/pdf", b"%PDF-1.4 fake pdf content"),
            ("data.csv", "text/csv", b"col1,col2\na,b\n"),
        ],
    )


@pytest.fixture
def inline_image_eml_bytes() -> bytes:
    return _build_inline_image_email()


@pytest.fixture
def forwarded_eml_bytes() -> bytes:
    return _build_forwarded_email()


@pytest.fixture
def fetched_email(plain_eml_bytes: bytes) -> FetchedEmail:
    return FetchedEmail(uid="100", raw_bytes=plain_eml_bytes)
