"""Exception hierarchy for the bridge.

Each class maps to one failure mode of the intake cycle; the pipeline
turns them into per-message outcomes so no single message can stop a
batch.
"""

from __future__ import annotations


class MailBridgeError(Exception):
    """Base exception for the bridge."""


class MailboxConnectionError(MailBridgeError):
    """The mailbox is unreachable, refused the login, or dropped the session."""


class FetchError(MailBridgeError):
    """A SEARCH or FETCH command failed; the current cycle is aborted."""


class ParseError(MailBridgeError):
    """A single fetched message could not be parsed."""


class RenderError(MailBridgeError):
    """Both the primary and the fallback rendering failed.

    ``primary`` holds the error raised by the primary path, which is the
    one worth reporting.
    """

    def __init__(self, message: str, *, primary: BaseException | None = None) -> None:
        super().__init__(message)
        self.primary = primary


class DeliveryError(MailBridgeError):
    """The messaging channel rejected or failed a send."""

    def __init__(
        self,
        description: str,
        *,
        error_code: int | None = None,
    ) -> None:
        super().__init__(description)
        self.description = description
        self.error_code = error_code

    def __str__(self) -> str:
        if self.error_code is not None:
            return f"{self.description} (error_code={self.error_code})"
        return self.description


class SubChannelNotFoundError(DeliveryError):
    """The requested topic does not exist in the destination chat."""
