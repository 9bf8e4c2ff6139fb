"""Render a parsed email to a paginated A4 PDF with weasyprint.

Rendering is a two-stage attempt:

* **primary**: styled HTML with headers, body, attachment list and
  inline images embedded as ``data:`` URIs; remote static resources may
  be fetched under a bounded timeout.
* **fallback**: a minimal plain-text layout with every remote fetch
  blocked and no time budget.

:meth:`DocumentRenderer.try_render` reports which stage produced the PDF
instead of hiding the fallback behind exception flow.
"""

from __future__ import annotations

import asyncio
import base64
import html
import math
import re
from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum
from pathlib import PurePosixPath
from typing import Any
from urllib.parse import urlsplit

import structlog

from .config import RenderConfig
from .errors import RenderError
from .parser import Address, ParsedAttachment, ParsedEmail

logger = structlog.get_logger()

_PAGE_CSS = "@page { size: A4; margin: 20px; }"

_EMAIL_CSS = """
body {
  font-family: "DejaVu Sans", "Liberation Sans", Arial, sans-serif;
  line-height: 1.6;
  margin: 0;
  padding: 20px;
  color: #333;
}
.email-container {
  max-width: 800px;
  margin: 0 auto;
  border: 1px solid #ddd;
  border-radius: 5px;
  overflow: hidden;
}
.email-header {
  background-color: #f5f5f5;
  padding: 15px;
  border-bottom: 1px solid #ddd;
}
.email-subject {
  margin: 0 0 10px 0;
  font-size: 20px;
  color: #333;
}
.email-meta {
  font-size: 14px;
  color: #666;
  margin-bottom: 5px;
}
.email-body {
  padding: 20px;
  background-color: white;
}
.email-body img {
  max-width: 100%;
}
.email-attachments {
  padding: 15px;
  background-color: #f9f9f9;
  border-top: 1px solid #ddd;
}
.email-attachments h4 {
  margin-top: 0;
}
"""

_PLAIN_CSS = """
body { font-family: "DejaVu Sans", Arial, sans-serif; padding: 20px; }
pre { white-space: pre-wrap; word-wrap: break-word; }
"""

_CID_RE_TEMPLATE = r"cid:{cid}(?![\w.@-])"


class RenderStatus(str, Enum):
    OK = "ok"
    DEGRADED = "degraded"
    FAILED = "failed"


@dataclass(frozen=True)
class RenderResult:
    """Outcome of one render attempt.

    ``pdf`` is set for OK and DEGRADED; ``error`` carries the primary-path
    error for DEGRADED and FAILED.
    """

    status: RenderStatus
    pdf: bytes | None = None
    page_count: int = 0
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.status is not RenderStatus.FAILED


# ------------------------------------------------------------------
# HTML building
# ------------------------------------------------------------------


def escape(value: object) -> str:
    return html.escape(str(value or ""), quote=True)


def format_bytes(size: int, decimals: int = 2) -> str:
    """Human-readable size: ``0 Bytes``, ``1.5 KB``, ``3 MB``."""
    if size <= 0:
        return "0 Bytes"
    units = ("Bytes", "KB", "MB", "GB", "TB")
    i = min(int(math.floor(math.log(size, 1024))), len(units) - 1)
    value = f"{size / 1024**i:.{max(decimals, 0)}f}"
    if "." in value:
        value = value.rstrip("0").rstrip(".")
    return f"{value} {units[i]}"


def format_addresses(addresses: Iterable[Address]) -> str:
    return ", ".join(str(a) for a in addresses)


def format_sender(email: ParsedEmail) -> str:
    if email.senders:
        return str(email.senders[0])
    return email.raw_from or "Unknown"


def format_date(email: ParsedEmail) -> str:
    if email.date is None:
        return "Unknown"
    return email.date.strftime("%d.%m.%Y %H:%M:%S %z").strip()


def build_email_html(email: ParsedEmail) -> str:
    """Styled document for the primary path."""
    subject = escape(email.subject or "No Subject")
    if email.body_html:
        body = email.body_html
    else:
        body = escape(email.body_text).replace("\n", "<br>")

    cc = ""
    if email.cc:
        cc = (
            '<div class="email-meta"><strong>Cc:</strong> '
            f"{escape(format_addresses(email.cc))}</div>"
        )

    attachments = ""
    listed = [a for a in email.attachments if not (a.inline and a.content_id)]
    if listed:
        items = "".join(
            f"<li>{escape(a.filename or 'Attachment')} ({format_bytes(len(a.payload))})</li>"
            for a in listed
        )
        attachments = (
            '<div class="email-attachments">'
            f"<h4>Attachments ({len(listed)}):</h4><ul>{items}</ul></div>"
        )

    return f"""<!DOCTYPE html>
<html>
<head>
<meta charset="utf-8">
<title>{subject}</title>
<style>{_PAGE_CSS}{_EMAIL_CSS}</style>
</head>
<body>
<div class="email-container">
  <div class="email-header">
    <h1 class="email-subject">{subject}</h1>
    <div class="email-meta"><strong>From:</strong> {escape(format_sender(email))}</div>
    <div class="email-meta"><strong>To:</strong> {escape(format_addresses(email.to))}</div>
    {cc}
    <div class="email-meta"><strong>Date:</strong> {escape(format_date(email))}</div>
  </div>
  <div class="email-body">
{body}
  </div>
  {attachments}
</div>
</body>
</html>
"""


def build_plain_html(email: ParsedEmail) -> str:
    """Minimal text-only document for the fallback path."""
    subject = escape(email.subject or "No Subject")
    return f"""<!DOCTYPE html>
<html>
<head>
<meta charset="utf-8">
<title>{subject}</title>
<style>{_PAGE_CSS}{_PLAIN_CSS}</style>
</head>
<body>
<h2>{subject}</h2>
<p><strong>From:</strong> {escape(format_sender(email))}</p>
<p><strong>To:</strong> {escape(format_addresses(email.to))}</p>
<p><strong>Date:</strong> {escape(format_date(email))}</p>
<hr>
<pre>{escape(email.body_text)}</pre>
</body>
</html>
"""


def to_data_uri(attachment: ParsedAttachment) -> str:
    encoded = base64.b64encode(attachment.payload).decode("ascii")
    return f"data:{attachment.content_type};base64,{encoded}"


def embed_inline_images(document: str, attachments: Iterable[ParsedAttachment]) -> str:
    """Replace every ``cid:<content-id>`` reference with a data URI."""
    for attachment in attachments:
        if not attachment.content_id or not attachment.payload:
            continue
        pattern = re.compile(_CID_RE_TEMPLATE.format(cid=re.escape(attachment.content_id)))
        data_uri = to_data_uri(attachment)
        document = pattern.sub(lambda _m: data_uri, document)
    return document


# ------------------------------------------------------------------
# Resource policy
# ------------------------------------------------------------------

STATIC_EXTENSIONS = frozenset(
    {
        ".png", ".jpg", ".jpeg", ".gif", ".webp", ".svg", ".bmp", ".ico",
        ".woff", ".woff2", ".ttf", ".otf", ".eot",
        ".css",
    }
)


def is_static_resource(url: str) -> bool:
    """Images, fonts and stylesheets, judged by the path's extension."""
    return PurePosixPath(urlsplit(url).path).suffix.lower() in STATIC_EXTENSIONS


def is_fetch_allowed(url: str, *, allow_remote: bool, allow_static: bool = True) -> bool:
    """``data:`` always; ``http(s)`` for static resources unless
    *allow_static* is off, or any when *allow_remote* is set.  Every other
    scheme (``file:`` in particular) is refused.
    """
    scheme = url.split(":", 1)[0].lower()
    if scheme == "data":
        return True
    if scheme in ("http", "https"):
        return allow_remote or (allow_static and is_static_resource(url))
    return False


def make_url_fetcher(
    attachments: Iterable[ParsedAttachment] = (),
    *,
    allow_remote: bool,
    allow_static: bool = True,
    timeout: float = 10.0,
) -> Any:
    """Build the weasyprint ``url_fetcher`` for one document.

    ``cid:`` is answered from *attachments*; other URLs follow
    :func:`is_fetch_allowed`, each network fetch bounded by *timeout*.
    """
    from .fetcher import ResourcePolicyFetcher

    return ResourcePolicyFetcher(
        attachments, allow_remote=allow_remote, allow_static=allow_static, timeout=timeout
    )


# ------------------------------------------------------------------
# PDF export
# ------------------------------------------------------------------


def layout_document(document: str, url_fetcher: Any) -> Any:
    """Parse HTML and lay out pages; resources are fetched here."""
    from weasyprint import HTML

    return HTML(string=document, url_fetcher=url_fetcher).render()


def export_pdf(rendered: Any) -> bytes:
    return rendered.write_pdf()


class DocumentRenderer:
    """Turn a :class:`ParsedEmail` into PDF bytes with a plain-text fallback.

    weasyprint runs in a worker thread; the primary path is bounded by the
    settle and export budgets from :class:`RenderConfig`.
    """

    def __init__(self, config: RenderConfig) -> None:
        self._config = config

    async def try_render(self, email: ParsedEmail) -> RenderResult:
        try:
            pdf, pages = await self._render_primary(email)
            return RenderResult(status=RenderStatus.OK, pdf=pdf, page_count=pages)
        except Exception as primary_error:
            logger.warning(
                "render_primary_failed",
                subject=email.subject,
                error=repr(primary_error),
            )
            try:
                pdf, pages = await self._render_fallback(email)
            except Exception as fallback_error:
                logger.error(
                    "render_fallback_failed",
                    subject=email.subject,
                    error=repr(fallback_error),
                )
                return RenderResult(status=RenderStatus.FAILED, error=primary_error)
            return RenderResult(
                status=RenderStatus.DEGRADED,
                pdf=pdf,
                page_count=pages,
                error=primary_error,
            )

    async def render(self, email: ParsedEmail) -> bytes:
        """Render or raise :class:`RenderError` carrying the primary error."""
        result = await self.try_render(email)
        if result.pdf is None:
            raise RenderError(
                f"Rendering failed: {result.error!r}",
                primary=result.error,
            )
        return result.pdf

    async def _render_primary(self, email: ParsedEmail) -> tuple[bytes, int]:
        document = embed_inline_images(build_email_html(email), email.attachments)
        fetcher = make_url_fetcher(
            email.attachments,
            allow_remote=self._config.allow_remote_images,
            timeout=self._config.remote_fetch_timeout_seconds,
        )
        rendered = await asyncio.wait_for(
            asyncio.to_thread(layout_document, document, fetcher),
            timeout=self._config.settle_timeout_seconds,
        )
        pdf = await asyncio.wait_for(
            asyncio.to_thread(export_pdf, rendered),
            timeout=self._config.export_timeout_seconds,
        )
        return pdf, len(rendered.pages)

    async def _render_fallback(self, email: ParsedEmail) -> tuple[bytes, int]:
        fetcher = make_url_fetcher(allow_remote=False, allow_static=False)
        rendered = await asyncio.to_thread(layout_document, build_plain_html(email), fetcher)
        pdf = await asyncio.to_thread(export_pdf, rendered)
        return pdf, len(rendered.pages)
