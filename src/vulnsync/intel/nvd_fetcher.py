# Intel Module - NVD (National Vulnerability Database) Feed Fetcher
#
# Concrete IntelFetcher for the NIST NVD CVE API v2.0. Each ingestion
# cycle asks for the CVEs *published* in the last N days in a single
# bounded page; records that fall outside the page are picked up by
# later cycles as the window slides.
#
# NVD API v2.0:
#   - Base URL: https://services.nvd.nist.gov/rest/json/cves/2.0
#   - No API key required
#   - pubStartDate/pubEndDate must both be given, at most 120 days apart
#   - resultsPerPage is capped at 2000 by the service

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from .fetcher import IntelFetcher
from .models import ThreatSource

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://services.nvd.nist.gov/rest/json/cves/2.0"

DEFAULT_DAYS_BACK = 7
MAX_DAYS_BACK = 119  # window end is padded to the end of the day
DEFAULT_RESULTS_PER_PAGE = 2000
MAX_RESULTS_PER_PAGE = 2000


class NVDFetcher(IntelFetcher):
    """NIST National Vulnerability Database (NVD) CVE feed fetcher.

    Usage::

        fetcher = NVDFetcher()
        fetcher.configure(days_back=3)
        records = fetcher.fetch_recent()
    """

    source = ThreatSource.NVD

    def __init__(self):
        super().__init__("nvd", DEFAULT_BASE_URL)
        self._days_back: int = DEFAULT_DAYS_BACK
        self._results_per_page: int = DEFAULT_RESULTS_PER_PAGE

    def configure(self, **kwargs) -> None:
        """Configure the NVD fetcher.

        Keyword Args:
            base_url: Override the default NVD API base URL.
            timeout: Request timeout in seconds (default 30).
            days_back: Publish-date window in days (default 7, max 120).
            results_per_page: Page size (default 2000, max 2000).
        """
        self._configure_common(kwargs)
        self._days_back = max(1, min(int(kwargs.get("days_back", self._days_back)), MAX_DAYS_BACK))
        self._results_per_page = max(
            1,
            min(int(kwargs.get("results_per_page", self._results_per_page)), MAX_RESULTS_PER_PAGE),
        )

    def fetch(self) -> List[Dict[str, Any]]:
        return self.fetch_recent()

    def fetch_recent(
        self,
        days_back: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> List[Dict[str, Any]]:
        """Fetch CVE records published within the last ``days_back`` days.

        Returns:
            The raw ``vulnerabilities`` wrappers from the API response
            (each holding a ``cve`` object).

        Raises:
            FeedFetchError: on any transport, status, or body failure.
        """
        params = self._build_query_params(days_back, now)
        try:
            data = self._get_json(params=params)
        except Exception:
            self.record_error()
            raise

        records = data.get("vulnerabilities") or []
        if not isinstance(records, list):
            records = []
        total = data.get("totalResults", len(records))
        if isinstance(total, int) and total > len(records):
            logger.warning(
                "NVD returned %d of %d CVEs in window; remainder left for later cycles",
                len(records), total,
            )
        logger.info("Retrieved %d CVEs from NVD", len(records))
        self.record_fetch(len(records))
        return records

    def _build_query_params(
        self,
        days_back: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> Dict[str, str]:
        """Build NVD API query parameters for the publish-date window."""
        days = self._days_back if days_back is None else max(1, min(days_back, MAX_DAYS_BACK))
        end = now or datetime.now(timezone.utc)
        start = end - timedelta(days=days)
        return {
            "pubStartDate": start.strftime("%Y-%m-%dT00:00:00.000"),
            "pubEndDate": end.strftime("%Y-%m-%dT23:59:59.999"),
            "resultsPerPage": str(self._results_per_page),
        }
