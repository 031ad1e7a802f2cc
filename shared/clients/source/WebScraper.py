import re
from urllib.parse import urlparse

import httpx

from shared.clients.ClientInterface import TRANSPORT_ERRORS
from shared.exceptions import EmptyInput, ProviderFailure
from shared.helper.HelperConfig import HelperConfig

_SCRIPT_RE = re.compile(r"<script[\s\S]*?</script>", re.IGNORECASE)
_STYLE_RE = re.compile(r"<style[\s\S]*?</style>", re.IGNORECASE)
_TAG_RE = re.compile(r"<[^>]+>")
_WHITESPACE_RE = re.compile(r"\s+")


def strip_html(html: str) -> str:
    """Drop script and style blocks and all tags, collapse whitespace."""
    text = _SCRIPT_RE.sub("", html)
    text = _STYLE_RE.sub("", text)
    text = _TAG_RE.sub(" ", text)
    return _WHITESPACE_RE.sub(" ", text).strip()


class WebScraper:
    """Fetches a web page and reduces it to plain text."""

    def __init__(self, helper_config: HelperConfig) -> None:
        self.logging = helper_config.get_logger()
        self.timeout = helper_config.get_number_val("SCRAPER_TIMEOUT", default=30.0)
        self._user_agent = helper_config.get_string_val("SCRAPER_USER_AGENT", default="Mozilla/5.0 (compatible; docchat)")
        self._client: httpx.AsyncClient | None = None

    async def boot(self, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._client = httpx.AsyncClient(
            timeout=self.timeout,
            follow_redirects=True,
            headers={"User-Agent": self._user_agent},
            transport=transport,
        )

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def fetch(self, url: str) -> str:
        """Download `url` and return its visible text.

        Raises:
            EmptyInput: If the URL is not http(s) or the page has no text.
            ProviderFailure: If the page cannot be fetched.
        """
        if urlparse(url).scheme not in ("http", "https"):
            raise EmptyInput(f"Not an http(s) URL: '{url}'.")
        if self._client is None:
            raise ProviderFailure("HTTP client not initialised. Call boot() before making requests.")
        try:
            response = await self._client.get(url)
        except TRANSPORT_ERRORS as e:
            self.logging.error("Fetching %s failed: %s", url, e)
            raise ProviderFailure(f"Fetching {url} failed: {e}") from e
        if response.status_code >= 300:
            self.logging.error("Fetching %s failed with status %d", url, response.status_code)
            raise ProviderFailure(f"Fetching {url} failed with status {response.status_code}")

        text = strip_html(response.text)
        if not text:
            raise EmptyInput(f"No text found at {url}.")
        self.logging.debug("Fetched %d characters from %s.", len(text), url)
        return text
