"""Sender → topic routing rules.

Resolution order for a sender address:

1. exact mapping for the (lower-cased) address
2. ``*@domain`` mapping for its domain
3. the store-wide default topic
4. ``None``: deliver to the general channel
"""

from __future__ import annotations

from typing import Any

import structlog
from pydantic import BaseModel, ConfigDict, Field, PositiveInt, ValidationError

from .settings import JsonFileStore

logger = structlog.get_logger()


class RoutingConfig(BaseModel):
    """Whole routing record as persisted in ``topic_settings.json``."""

    model_config = ConfigDict(populate_by_name=True)

    default_topic: PositiveInt | None = Field(default=None, alias="defaultTopic")
    topic_mappings: dict[str, PositiveInt] = Field(
        default_factory=dict,
        alias="topicMappings",
    )

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


def is_valid_topic_id(value: object) -> bool:
    """Accept positive ints and strings holding a positive integer."""
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return value > 0
    if isinstance(value, str):
        value = value.strip()
        return value.isdigit() and int(value) > 0
    return False


def _coerce_topic_id(value: object) -> int:
    if not is_valid_topic_id(value):
        raise ValueError(f"Invalid topic ID: {value!r}. Must be a positive number.")
    return int(value)  # type: ignore[arg-type]


class RoutingStore:
    """Persistent routing record; every mutation rewrites the whole file."""

    def __init__(self, store: JsonFileStore) -> None:
        self._store = store

    def load(self) -> RoutingConfig:
        data = self._store.read()
        try:
            return RoutingConfig.model_validate(data or {})
        except ValidationError as exc:
            logger.error(
                "routing_settings_invalid",
                path=str(self._store.path),
                error=str(exc),
            )
            return RoutingConfig()

    def save(self, config: RoutingConfig) -> None:
        self._store.write(config.to_json())

    # ------------------------------------------------------------------
    # Default topic
    # ------------------------------------------------------------------

    def default_topic(self) -> int | None:
        return self.load().default_topic

    def set_default_topic(self, topic_id: object | None) -> None:
        """Set the default topic, or clear it with ``None``."""
        config = self.load()
        config.default_topic = None if topic_id is None else _coerce_topic_id(topic_id)
        self.save(config)
        logger.info("routing_default_topic_set", topic_id=config.default_topic)

    # ------------------------------------------------------------------
    # Mappings
    # ------------------------------------------------------------------

    def mappings(self) -> dict[str, int]:
        return dict(self.load().topic_mappings)

    def set_topic(self, pattern: str, topic_id: object) -> None:
        pattern = pattern.strip().lower()
        if not pattern:
            raise ValueError("Email address or pattern is required")
        value = _coerce_topic_id(topic_id)
        config = self.load()
        config.topic_mappings[pattern] = value
        self.save(config)
        logger.info("routing_mapping_set", pattern=pattern, topic_id=value)

    def remove_topic(self, pattern: str) -> bool:
        pattern = pattern.strip().lower()
        config = self.load()
        if pattern not in config.topic_mappings:
            return False
        del config.topic_mappings[pattern]
        self.save(config)
        logger.info("routing_mapping_removed", pattern=pattern)
        return True

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def resolve(self, sender: str) -> int | None:
        config = self.load()
        if not sender:
            return config.default_topic

        sender = sender.lower()
        if sender in config.topic_mappings:
            return config.topic_mappings[sender]

        _, sep, domain = sender.partition("@")
        if sep and domain:
            wildcard = f"*@{domain}"
            if wildcard in config.topic_mappings:
                return config.topic_mappings[wildcard]

        return config.default_topic
