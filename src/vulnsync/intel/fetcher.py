# Intel Module - Abstract Feed Fetcher
#
# Defines the IntelFetcher base class that both disclosure feeds
# (NVD CVE API, CISA KEV catalogue) implement. Fetchers are stateless
# adapters: they return raw feed records and leave canonicalization to
# the Normalizer.
#
# Requests use a fixed timeout and are never retried. Any failure
# surfaces as a FeedFetchError so the orchestrator can isolate it.

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx

from .errors import FeedFetchError
from .models import ThreatSource

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT_SEC = 30.0
USER_AGENT = "vulnsync-threatintel/1.0"


class IntelFetcher(ABC):
    """Abstract base class for disclosure feed fetchers.

    Lifecycle:
        1. ``configure()`` - override base URL, timeout, window, etc.
        2. ``fetch()`` - pull raw records for one ingestion cycle
        3. ``health_check()`` - verify the feed is reachable
    """

    source: ThreatSource

    def __init__(self, name: str, base_url: str):
        self.name = name
        self._base_url = base_url
        self._timeout: float = REQUEST_TIMEOUT_SEC
        self._last_fetch: Optional[str] = None
        self._fetch_count: int = 0
        self._error_count: int = 0

    # ------------------------------------------------------------------
    # Abstract interface
    # ------------------------------------------------------------------

    @abstractmethod
    def configure(self, **kwargs) -> None:
        """Configure the fetcher.

        Keyword Args:
            base_url: Override default base URL
            timeout: Request timeout in seconds
        """

    @abstractmethod
    def fetch(self) -> List[Dict[str, Any]]:
        """Fetch the raw records for one ingestion cycle."""

    # ------------------------------------------------------------------
    # Shared helpers
    # ------------------------------------------------------------------

    def _configure_common(self, kwargs: Dict[str, Any]) -> None:
        self._base_url = kwargs.get("base_url", self._base_url)
        self._timeout = float(kwargs.get("timeout", self._timeout))

    def _build_headers(self) -> Dict[str, str]:
        return {
            "Accept": "application/json",
            "User-Agent": USER_AGENT,
        }

    def _get_json(self, params: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        """Single GET against the feed; no retries."""
        try:
            resp = httpx.get(
                self._base_url,
                headers=self._build_headers(),
                params=params,
                timeout=self._timeout,
            )
        except httpx.TimeoutException as exc:
            raise FeedFetchError(self.name, f"request timed out: {exc}") from exc
        except httpx.HTTPError as exc:
            raise FeedFetchError(self.name, f"request failed: {exc}") from exc

        logger.debug("%s feed returned HTTP %d", self.name, resp.status_code)
        if resp.status_code >= 400:
            raise FeedFetchError(
                self.name,
                f"HTTP {resp.status_code}",
                status_code=resp.status_code,
            )

        try:
            data = resp.json()
        except ValueError as exc:
            raise FeedFetchError(self.name, f"invalid JSON body: {exc}") from exc
        if not isinstance(data, dict):
            raise FeedFetchError(self.name, "unexpected response shape")
        return data

    def health_check(self) -> bool:
        """Return True if the feed source answers with a 2xx status."""
        try:
            resp = httpx.get(
                self._base_url,
                headers=self._build_headers(),
                timeout=self._timeout,
            )
            return resp.status_code < 400
        except httpx.HTTPError:
            return False

    def record_fetch(self, count: int) -> None:
        """Record a successful fetch for stats tracking."""
        self._last_fetch = datetime.now(timezone.utc).isoformat()
        self._fetch_count += count

    def record_error(self) -> None:
        """Record a fetch error for stats tracking."""
        self._error_count += 1

    def get_stats(self) -> Dict[str, object]:
        """Return fetcher statistics."""
        return {
            "name": self.name,
            "source": self.source.value,
            "last_fetch": self._last_fetch,
            "total_fetched": self._fetch_count,
            "total_errors": self._error_count,
        }
