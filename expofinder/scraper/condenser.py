import time
import logging
from typing import Optional

import httpx
from selectolax.lexbor import LexborHTMLParser

from expofinder.scraper.errors import FetchError

logger = logging.getLogger(__name__)

# roughly 8000 tokens; the extractor prompt is sized around this ceiling
MAX_CONTENT_CHARS = 32000


class PageCondenser:
    NOISE_TAGS = ["script", "style", "nav", "header", "footer"]
    MAIN_SELECTORS = ["main", "article", ".content", "#content"]
    USER_AGENT = "Mozilla/5.0 (compatible; ExpoFinderBot/1.0)"

    def __init__(self, timeout=20.0, http2=True, max_chars: int = MAX_CONTENT_CHARS,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.timeout = timeout
        self.max_chars = max_chars
        self.client = httpx.AsyncClient(
            follow_redirects=True,
            http2=http2,
            headers={"User-Agent": self.USER_AGENT},
            timeout=self.timeout,
            transport=transport,
        )

    async def close(self):
        await self.client.aclose()

    async def __aenter__(self) -> "PageCondenser":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    # --------- Networking ----------
    async def fetch_html(self, url: str) -> str:
        logger.debug(f"[FETCH] GET {url}")
        start = time.perf_counter()
        try:
            r = await self.client.get(url)
        except httpx.HTTPError as e:
            raise FetchError(url, f"Request to {url} failed: {e}") from e

        if not r.is_success:
            raise FetchError(url, f"HTTP {r.status_code}: {r.reason_phrase}", status_code=r.status_code)

        elapsed = (time.perf_counter() - start) * 1000
        logger.info(f"[FETCH] {url} -> {r.status_code} ({len(r.text)} chars) in {elapsed:.1f}ms")
        return r.text

    # --------- Condense ----------
    @staticmethod
    def _choose_main(doc: LexborHTMLParser):
        for sel in PageCondenser.MAIN_SELECTORS:
            node = doc.css_first(sel)
            if node is not None: return node
        return doc.body

    def clean_html(self, html: str) -> str:
        """Strip page chrome and return the inner markup of the main content region, truncated."""
        doc = LexborHTMLParser(html)
        doc.strip_tags(self.NOISE_TAGS)

        main = self._choose_main(doc)
        if main is None:
            content = doc.html or ""
        else:
            content = main.inner_html or ""
        logger.debug(f"[CONDENSE] Selected {getattr(main, 'tag', 'document')} ({len(content)} chars)")
        return content[:self.max_chars]

    async def fetch_clean_content(self, url: str) -> str:
        html = await self.fetch_html(url)
        content = self.clean_html(html)
        logger.info(f"[CONDENSE] {url}: {len(html)} html chars -> {len(content)} content chars")
        return content
