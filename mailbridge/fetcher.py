"""weasyprint URL fetcher applying the renderer's resource policy."""

from __future__ import annotations

from collections.abc import Iterable

import structlog
from weasyprint.urls import URLFetcher, URLFetcherResponse

from .parser import ParsedAttachment
from .renderer import is_fetch_allowed

logger = structlog.get_logger()


class ResourcePolicyFetcher(URLFetcher):
    """Serve ``cid:`` from the message, defer allowed URLs to weasyprint.

    Raising from :meth:`fetch` makes weasyprint skip the resource with a
    warning; the layout itself carries on.
    """

    def __init__(
        self,
        attachments: Iterable[ParsedAttachment] = (),
        *,
        allow_remote: bool,
        allow_static: bool = True,
        timeout: float = 10.0,
    ) -> None:
        super().__init__(timeout=timeout, allowed_protocols=("data", "http", "https"))
        self._by_cid = {a.content_id: a for a in attachments if a.content_id}
        self._allow_remote = allow_remote
        self._allow_static = allow_static

    @property
    def timeout(self) -> float:
        return self._timeout

    def fetch(self, url: str, headers: dict[str, str] | None = None) -> URLFetcherResponse:
        if url[:4].lower() == "cid:":
            attachment = self._by_cid.get(url[4:].strip("<>"))
            if attachment is None:
                raise ValueError(f"Unknown inline reference: {url}")
            return URLFetcherResponse(
                url,
                body=attachment.payload,
                headers={"Content-Type": attachment.content_type},
            )

        if not is_fetch_allowed(
            url, allow_remote=self._allow_remote, allow_static=self._allow_static
        ):
            logger.debug("render_resource_blocked", url=url[:80])
            raise ValueError(f"Blocked resource: {url[:80]}")
        return super().fetch(url, headers)
