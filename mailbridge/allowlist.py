"""Sender allow-list: exact addresses and ``*@domain`` wildcards."""

from __future__ import annotations

import structlog

from .settings import JsonFileStore

logger = structlog.get_logger()


def is_domain_wildcard(pattern: str) -> bool:
    """True for patterns of the form ``*@domain``."""
    return pattern.startswith("*@") and pattern.count("@") == 1


def matches_domain_wildcard(address: str, pattern: str) -> bool:
    """Case-insensitive domain comparison against a ``*@domain`` pattern."""
    if not address or not pattern or not is_domain_wildcard(pattern):
        return False
    local, sep, domain = address.partition("@")
    if not sep or "@" in domain:
        return False
    return domain.lower() == pattern[2:].lower()


class AllowListStore:
    """Persistent set of sender patterns.

    Entries are stored exactly as given.  An empty list accepts every
    sender.
    """

    def __init__(self, store: JsonFileStore) -> None:
        self._store = store

    def entries(self) -> list[str]:
        data = self._store.read()
        if not isinstance(data, list):
            logger.error("allowlist_malformed", path=str(self._store.path))
            return []
        return [str(e) for e in data]

    def add(self, pattern: str) -> bool:
        """Add *pattern*.  Returns False if it was already present."""
        pattern = pattern.strip()
        if not pattern:
            raise ValueError("Pattern must not be empty")
        entries = self.entries()
        if pattern in entries:
            return False
        entries.append(pattern)
        self._store.write(entries)
        logger.info("allowlist_entry_added", pattern=pattern)
        return True

    def remove(self, pattern: str) -> bool:
        """Remove *pattern*.  Returns False if it was not present."""
        entries = self.entries()
        if pattern not in entries:
            return False
        self._store.write([e for e in entries if e != pattern])
        logger.info("allowlist_entry_removed", pattern=pattern)
        return True

    def is_allowed(self, sender: str) -> bool:
        entries = self.entries()
        if not entries:
            return True
        if sender in entries:
            return True
        return any(
            matches_domain_wildcard(sender, pattern)
            for pattern in entries
            if is_domain_wildcard(pattern)
        )
