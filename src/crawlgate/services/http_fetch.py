"""Default unit of work: fetch the pages listed in a job payload over HTTP.

Real crawling and extraction live outside this service; this unit exists so a
queue without a registered unit still does something observable, and so the
cancellation contract has a concrete reference implementation.

Payload shape: ``{"urls": ["https://...", ...]}`` or ``{"url": "https://..."}``.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

import httpx

from crawlgate.domain.enums import WorkOutcome
from crawlgate.errors import TerminalWorkFailure, TransientWorkFailure
from crawlgate.queue.cancellation import CancellationToken

logger = logging.getLogger(__name__)

PageCallback = Callable[[str, httpx.Response], None]


def _urls_from(payload: dict[str, Any]) -> list[str]:
    urls = payload.get("urls")
    if urls is None and "url" in payload:
        urls = [payload["url"]]
    if not urls or not all(isinstance(url, str) and url for url in urls):
        raise TerminalWorkFailure("Payload must contain a non-empty 'urls' list or a 'url'")
    return list(urls)


class HttpFetchUnit:
    """Fetch each URL in turn, checking the token between pages."""

    def __init__(
        self,
        *,
        timeout_seconds: float = 30.0,
        user_agent: str = "crawlgate/0.1",
        transport: httpx.AsyncBaseTransport | None = None,
        on_page: PageCallback | None = None,
    ) -> None:
        self._timeout = timeout_seconds
        self._headers = {"User-Agent": user_agent}
        self._transport = transport
        self._on_page = on_page

    async def __call__(self, payload: dict[str, Any], token: CancellationToken) -> WorkOutcome:
        urls = _urls_from(payload)
        async with httpx.AsyncClient(
            headers=self._headers,
            timeout=self._timeout,
            follow_redirects=True,
            transport=self._transport,
        ) as client:
            for url in urls:
                if token.cancelled:
                    logger.info("Fetch stopped before %s (%s)", url, token.reason)
                    return WorkOutcome.CANCELLED
                try:
                    response = await client.get(url)
                except httpx.TransportError as e:
                    raise TransientWorkFailure(f"{url}: {e}") from e

                if response.status_code >= 500 or response.status_code == 429:
                    raise TransientWorkFailure(f"{url}: HTTP {response.status_code}")
                if response.status_code >= 400:
                    logger.warning("Skipping %s: HTTP %s", url, response.status_code)
                    continue
                if self._on_page is not None:
                    self._on_page(url, response)
        return WorkOutcome.COMPLETED
