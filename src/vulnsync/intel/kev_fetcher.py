# Intel Module - CISA Known Exploited Vulnerabilities Feed Fetcher
#
# Concrete IntelFetcher for the CISA KEV catalogue. The catalogue is a
# single JSON document listing every disclosure CISA has confirmed as
# actively exploited; there is no windowing, so every cycle downloads
# the full snapshot and lets the store upsert absorb repeats.
#
# Record shape (fields used here):
#   cveID, vendorProject, product, vulnerabilityName, dateAdded,
#   shortDescription, requiredAction, dueDate, knownRansomwareCampaignUse

import logging
from typing import Any, Dict, List

from .fetcher import IntelFetcher
from .models import ThreatSource

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = (
    "https://www.cisa.gov/sites/default/files/feeds/"
    "known_exploited_vulnerabilities.json"
)


class KEVFetcher(IntelFetcher):
    """CISA Known Exploited Vulnerabilities snapshot fetcher."""

    source = ThreatSource.CISA_KEV

    def __init__(self):
        super().__init__("cisa_kev", DEFAULT_BASE_URL)

    def configure(self, **kwargs) -> None:
        """Configure the KEV fetcher.

        Keyword Args:
            base_url: Override the catalogue URL.
            timeout: Request timeout in seconds (default 30).
        """
        self._configure_common(kwargs)

    def fetch(self) -> List[Dict[str, Any]]:
        return self.fetch_snapshot()

    def fetch_snapshot(self) -> List[Dict[str, Any]]:
        """Download the full KEV catalogue.

        Returns:
            The catalogue's ``vulnerabilities`` entries, unmodified.

        Raises:
            FeedFetchError: on any transport, status, or body failure.
        """
        try:
            data = self._get_json()
        except Exception:
            self.record_error()
            raise

        entries = data.get("vulnerabilities") or []
        if not isinstance(entries, list):
            entries = []
        logger.info(
            "Retrieved %d KEV entries from CISA (catalog %s)",
            len(entries), data.get("catalogVersion", "unknown"),
        )
        self.record_fetch(len(entries))
        return entries
