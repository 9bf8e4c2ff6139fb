"""Full MIME parser: walks the entire message to extract addresses,
body text, HTML, attachments, and inline parts referenced by Content-ID.
"""

from __future__ import annotations

import email
import email.message
import email.policy
import email.utils
import re
from dataclasses import dataclass, field
from datetime import datetime

from .errors import ParseError

_ANGLE_ADDR_RE = re.compile(r"<([^>]+)>")
_BARE_ADDR_RE = re.compile(r"([^\s<>\"',;]+@[^\s<>\"',;]+)")


@dataclass(frozen=True)
class Address:
    """One mailbox from an address header."""

    name: str
    address: str

    def __str__(self) -> str:
        if self.name:
            return f"{self.name} <{self.address}>"
        return self.address


@dataclass(frozen=True)
class ParsedAttachment:
    """A single attachment or inline part extracted from a MIME email."""

    filename: str
    content_type: str
    payload: bytes
    content_id: str | None = None
    inline: bool = False


@dataclass(frozen=True)
class ParsedEmail:
    """Structured, immutable view of one fetched message."""

    message_id: str
    subject: str
    senders: tuple[Address, ...]
    to: tuple[Address, ...]
    cc: tuple[Address, ...]
    date: datetime | None
    body_text: str | None
    body_html: str | None
    headers: dict[str, str] = field(default_factory=dict)
    attachments: tuple[ParsedAttachment, ...] = ()
    raw_from: str = ""

    @property
    def sender_address(self) -> str:
        """Primary sender address, lower-cased; ``""`` when there is none."""
        for sender in self.senders:
            if sender.address:
                return sender.address.lower()
        return extract_address(self.raw_from)


def extract_address(value: str | None) -> str:
    """Pull an address out of a free-form From value, lower-cased."""
    if not value:
        return ""
    match = _ANGLE_ADDR_RE.search(value) or _BARE_ADDR_RE.search(value)
    return match.group(1).strip().lower() if match else ""


class MimeParser:
    """Stateless parser: raw RFC 822 bytes → ParsedEmail."""

    def parse(self, raw_bytes: bytes) -> ParsedEmail:
        try:
            return self._parse(raw_bytes)
        except ParseError:
            raise
        except Exception as exc:
            raise ParseError(f"Cannot parse message: {exc}") from exc

    def _parse(self, raw_bytes: bytes) -> ParsedEmail:
        if not raw_bytes:
            raise ParseError("Empty message")

        msg = email.message_from_bytes(raw_bytes, policy=email.policy.default)

        body_text, body_html = self._extract_bodies(msg)
        attachments = self._extract_attachments(msg)
        raw_from = str(msg.get("From", "") or "")

        return ParsedEmail(
            message_id=str(msg.get("Message-ID", "") or ""),
            subject=str(msg.get("Subject", "") or ""),
            senders=self._parse_address_list(raw_from),
            to=self._parse_address_list(msg.get("To")),
            cc=self._parse_address_list(msg.get("Cc")),
            date=self._parse_date(msg.get("Date")),
            body_text=body_text,
            body_html=body_html,
            headers={k: str(v) for k, v in msg.items()},
            attachments=tuple(attachments),
            raw_from=raw_from,
        )

    def _extract_bodies(self, msg: email.message.Message) -> tuple[str | None, str | None]:
        """Walk MIME parts and return (plain_text, html_text)."""
        body_text: str | None = None
        body_html: str | None = None

        if not msg.is_multipart():
            content_type = msg.get_content_type()
            payload = msg.get_content()
            if content_type == "text/plain" and isinstance(payload, str):
                body_text = payload
            elif content_type == "text/html" and isinstance(payload, str):
                body_html = payload
            return body_text, body_html

        for part in msg.walk():
            # Skip multipart containers; they have no content of their own
            if part.get_content_maintype() == "multipart":
                continue

            content_type = part.get_content_type()
            if content_type not in ("text/plain", "text/html"):
                continue
            if part.get_content_disposition() == "attachment":
                continue

            payload = part.get_content()
            if content_type == "text/plain" and isinstance(payload, str) and body_text is None:
                body_text = payload
            elif content_type == "text/html" and isinstance(payload, str) and body_html is None:
                body_html = payload

        return body_text, body_html

    def _extract_attachments(self, msg: email.message.Message) -> list[ParsedAttachment]:
        """Collect attachments plus inline parts that carry a Content-ID."""
        attachments: list[ParsedAttachment] = []
        if not msg.is_multipart():
            return attachments

        for part in msg.walk():
            if part.get_content_maintype() in ("multipart", "message"):
                continue

            disposition = part.get_content_disposition()
            filename = part.get_filename()
            content_id = _clean_content_id(part.get("Content-ID"))
            is_body_text = (
                part.get_content_type() in ("text/plain", "text/html")
                and disposition != "attachment"
                and not filename
            )
            if is_body_text:
                continue
            if disposition != "attachment" and not filename and not content_id:
                continue

            payload = part.get_content()
            if isinstance(payload, bytes):
                raw = payload
            elif isinstance(payload, str):
                raw = payload.encode("utf-8")
            else:
                continue

            attachments.append(
                ParsedAttachment(
                    filename=filename or "unnamed",
                    content_type=part.get_content_type(),
                    payload=raw,
                    content_id=content_id,
                    inline=disposition == "inline" or (content_id is not None and not filename),
                )
            )

        return attachments

    def _parse_address_list(self, header_value: object) -> tuple[Address, ...]:
        if not header_value:
            return ()
        return tuple(
            Address(name=name, address=addr)
            for name, addr in email.utils.getaddresses([str(header_value)])
            if addr
        )

    def _parse_date(self, header_value: object) -> datetime | None:
        if not header_value:
            return None
        try:
            return email.utils.parsedate_to_datetime(str(header_value))
        except (TypeError, ValueError):
            return None


def _clean_content_id(value: object) -> str | None:
    if not value:
        return None
    cid = str(value).strip().strip("<>").strip()
    return cid or None
