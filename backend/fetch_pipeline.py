"""
Network fetch pipeline.

fetch_text() tries a direct GET under a hard timeout, then walks an ordered
list of CORS relays that wrap the target URL as a parameter. The first
successful attempt wins. Nothing is cached at this layer and a failed
attempt is never retried; the relay chain is the only fallback.
"""
import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Optional
from urllib.parse import quote, urlsplit

import httpx

from config import get_settings
from log_utils import redact_url

logger = logging.getLogger(__name__)

DEFAULT_FETCH_TIMEOUT_MS = 10000

# Relay hosts known to wrap the upstream body as {"contents": "..."}
ENVELOPE_RELAY_HOSTS = frozenset({"api.allorigins.win", "allorigins.win"})


class NetworkError(Exception):
    """Raised when the direct fetch and every relay attempt have failed."""

    def __init__(self, url: str, attempts: Optional[list[str]] = None):
        self.url = url
        self.attempts = attempts or []
        detail = "; ".join(self.attempts) if self.attempts else "no attempts made"
        super().__init__(f"All fetch attempts failed for {redact_url(url)}: {detail}")


@dataclass(frozen=True)
class RelayEndpoint:
    """A CORS relay URL template. '{url}' receives the percent-encoded target."""
    template: str
    unwraps_envelope: bool = False

    @classmethod
    def from_template(cls, template: str) -> "RelayEndpoint":
        host = urlsplit(template).hostname or ""
        return cls(template=template, unwraps_envelope=host in ENVELOPE_RELAY_HOSTS)

    def wrap(self, url: str) -> str:
        encoded = quote(url, safe="")
        if "{url}" in self.template:
            return self.template.replace("{url}", encoded)
        return f"{self.template}{encoded}"

    def unwrap(self, body: str) -> str:
        """Return the payload inside a relay envelope, or the body unchanged."""
        if not self.unwraps_envelope:
            return body
        try:
            data = json.loads(body)
        except ValueError:
            return body
        if isinstance(data, dict) and isinstance(data.get("contents"), str) and data["contents"]:
            return data["contents"]
        return body


class FetchPipeline:
    """
    Text fetcher with direct-then-relay fallback.

    The httpx client may be injected (tests pass one bound to a respx
    router); otherwise one is created on first use and closed by aclose().
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        relays: Optional[list[str]] = None,
        user_agent: Optional[str] = None,
        default_timeout_ms: int = DEFAULT_FETCH_TIMEOUT_MS,
    ):
        self._client = client
        self._owns_client = client is None
        self.relays = [RelayEndpoint.from_template(t) for t in (relays or [])]
        self.user_agent = user_agent
        self.default_timeout_ms = default_timeout_ms

    @classmethod
    def from_settings(cls, client: Optional[httpx.AsyncClient] = None) -> "FetchPipeline":
        settings = get_settings()
        return cls(
            client=client,
            relays=settings.cors_relays,
            user_agent=settings.manifest_user_agent,
            default_timeout_ms=settings.fetch_timeout_ms,
        )

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(follow_redirects=True)
            self._owns_client = True
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def _attempt(self, url: str, timeout_s: float, headers: dict) -> str:
        """One GET under a hard deadline; raises on timeout, a malformed URL, transport errors or non-2xx."""
        client = self._get_client()
        response = await asyncio.wait_for(
            client.get(url, headers=headers, timeout=timeout_s, follow_redirects=True),
            timeout=timeout_s,
        )
        if not response.is_success:
            raise httpx.HTTPStatusError(
                f"HTTP {response.status_code}", request=response.request, response=response
            )
        return response.text

    async def fetch_text(
        self,
        url: str,
        timeout_ms: Optional[int] = None,
        headers: Optional[dict] = None,
    ) -> str:
        """
        Fetch url as text, falling back through the configured relays.

        Args:
            url: Target URL
            timeout_ms: Hard timeout per attempt (defaults to the pipeline setting)
            headers: Extra request headers sent on every attempt

        Returns:
            Response body text (relay envelopes unwrapped)

        Raises:
            NetworkError: when every attempt failed
        """
        timeout_s = (timeout_ms or self.default_timeout_ms) / 1000.0
        request_headers = {"Accept": "*/*"}
        if self.user_agent:
            request_headers["User-Agent"] = self.user_agent
        if headers:
            request_headers.update(headers)

        attempts: list[str] = []

        try:
            text = await self._attempt(url, timeout_s, request_headers)
            logger.debug("[FETCH] Direct fetch succeeded for %s", redact_url(url))
            return text
        except asyncio.TimeoutError:
            attempts.append(f"direct: timed out after {timeout_s:.1f}s")
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            attempts.append(f"direct: {e}")

        for relay in self.relays:
            relay_url = relay.wrap(url)
            try:
                body = await self._attempt(relay_url, timeout_s, request_headers)
            except asyncio.TimeoutError:
                attempts.append(f"{relay.template}: timed out after {timeout_s:.1f}s")
                continue
            except (httpx.HTTPError, httpx.InvalidURL) as e:
                attempts.append(f"{relay.template}: {e}")
                continue
            logger.info("[FETCH] Fetched %s via relay %s", redact_url(url), relay.template)
            return relay.unwrap(body)

        logger.warning("[FETCH] All %s attempt(s) failed for %s", len(attempts), redact_url(url))
        raise NetworkError(url, attempts)


_fetcher: Optional[FetchPipeline] = None


def get_fetcher() -> FetchPipeline:
    """Get the process-wide fetch pipeline, creating it from settings on first use."""
    global _fetcher
    if _fetcher is None:
        _fetcher = FetchPipeline.from_settings()
    return _fetcher


def set_fetcher(fetcher: Optional[FetchPipeline]) -> None:
    global _fetcher
    _fetcher = fetcher
