"""Tests for mailbridge.config."""

from __future__ import annotations

import pytest
from pydantic import SecretStr, ValidationError

from mailbridge.config import (
    BridgeConfig,
    ImapConfig,
    ReconnectConfig,
    RenderConfig,
    StorageConfig,
    TelegramConfig,
)


class TestImapConfig:
    def test_defaults(self):
        cfg = ImapConfig(host="imap.test.com", username="u", password="p")
        assert cfg.port == 993
        assert cfg.use_ssl is True
        assert cfg.mailbox == "INBOX"
        assert cfg.poll_interval_seconds == 30.0
        assert cfg.lookback_hours == 24.0

    def test_password_is_secret(self):
        cfg = ImapConfig(host="h", username="u", password="hunter2")
        assert isinstance(cfg.password, SecretStr)
        assert "hunter2" not in repr(cfg)
        assert cfg.password.get_secret_value() == "hunter2"

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("IMAP_HOST", "env-imap.example.com")
        monkeypatch.setenv("IMAP_PORT", "143")
        monkeypatch.setenv("IMAP_USERNAME", "envuser")
        monkeypatch.setenv("IMAP_PASSWORD", "envpass")
        monkeypatch.setenv("IMAP_USE_SSL", "false")
        cfg = ImapConfig()
        assert cfg.host == "env-imap.example.com"
        assert cfg.port == 143
        assert cfg.use_ssl is False

    def test_missing_credentials_fail(self, monkeypatch):
        for var in ("IMAP_HOST", "IMAP_USERNAME", "IMAP_PASSWORD"):
            monkeypatch.delenv(var, raising=False)
        with pytest.raises(ValidationError):
            ImapConfig()


class TestReconnectConfig:
    def test_defaults(self):
        cfg = ReconnectConfig()
        assert cfg.max_attempts == 10
        assert cfg.delay_seconds == 10.0
        assert cfg.reconnect_on_end is False

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("RECONNECT_MAX_ATTEMPTS", "3")
        monkeypatch.setenv("RECONNECT_RECONNECT_ON_END", "true")
        cfg = ReconnectConfig()
        assert cfg.max_attempts == 3
        assert cfg.reconnect_on_end is True


class TestTelegramConfig:
    def test_token_is_secret(self):
        cfg = TelegramConfig(bot_token="123:SECRET", chat_id="-100")
        assert "SECRET" not in repr(cfg)
        assert cfg.api_base_url == "https://api.telegram.org"

    def test_missing_token_fails(self, monkeypatch):
        monkeypatch.delenv("TELEGRAM_BOT_TOKEN", raising=False)
        with pytest.raises(ValidationError):
            TelegramConfig(chat_id="-100")


class TestRenderAndStorageConfig:
    def test_render_defaults(self):
        cfg = RenderConfig()
        assert cfg.settle_timeout_seconds == 60.0
        assert cfg.export_timeout_seconds == 60.0
        assert cfg.allow_remote_images is True

    def test_storage_defaults(self):
        cfg = StorageConfig()
        assert cfg.data_dir == "data"
        assert cfg.documents_dir == "uploads"
        assert cfg.retention_hours == 24.0


class TestBridgeConfig:
    def test_nested_from_env(self, monkeypatch):
        monkeypatch.setenv("IMAP_HOST", "imap.example.com")
        monkeypatch.setenv("IMAP_USERNAME", "bot")
        monkeypatch.setenv("IMAP_PASSWORD", "pw")
        monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "1:abc")
        monkeypatch.setenv("TELEGRAM_CHAT_ID", "-42")
        monkeypatch.setenv("BRIDGE_HEALTH_PORT", "9000")
        cfg = BridgeConfig()
        assert cfg.name == "mailbridge"
        assert cfg.health_port == 9000
        assert cfg.imap.host == "imap.example.com"
        assert cfg.telegram.chat_id == "-42"
        assert cfg.storage.retention_hours == 24.0

    def test_explicit(self, bridge_config: BridgeConfig):
        assert bridge_config.name == "mailbridge-test"
        assert bridge_config.reconnect.max_attempts == 3
