"""Client for the Oyez case-data API"""
import logging
import os
import time
from typing import Any, Dict, List, Optional

import requests

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.oyez.org"
DEFAULT_TIMEOUT = 30


class UpstreamFetchError(Exception):
    """The provider answered with a non-2xx status or could not be reached"""

    def __init__(self, url: str, message: str, status_code: Optional[int] = None):
        super().__init__(f"{message} ({url})")
        self.url = url
        self.status_code = status_code


class OyezClient:
    """Sequential fetches against the Oyez API.

    Timeouts are enforced per request; any transport problem surfaces as
    UpstreamFetchError so callers can treat it like a failed status.
    """

    def __init__(self, base_url: str = DEFAULT_BASE_URL, timeout: float = DEFAULT_TIMEOUT,
                 request_delay: float = 0.0, session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.request_delay = request_delay
        self.session = session or requests.Session()
        self.session.headers.update({
            'User-Agent': 'SCOTUS Case Sync/1.0',
            'Accept': 'application/json',
        })

    @classmethod
    def from_env(cls) -> "OyezClient":
        return cls(
            base_url=os.environ.get('OYEZ_API_BASE', DEFAULT_BASE_URL),
            timeout=float(os.environ.get('OYEZ_REQUEST_TIMEOUT', DEFAULT_TIMEOUT)),
            request_delay=float(os.environ.get('OYEZ_REQUEST_DELAY', 0)),
        )

    def close(self) -> None:
        self.session.close()

    def get_json(self, url: str, params: Optional[Dict[str, Any]] = None) -> Any:
        if self.request_delay:
            time.sleep(self.request_delay)  # Rate limiting
        try:
            response = self.session.get(url, params=params, timeout=self.timeout)
        except requests.RequestException as e:
            raise UpstreamFetchError(url, f"Request failed: {str(e)}") from e

        if not 200 <= response.status_code < 300:
            raise UpstreamFetchError(url, f"HTTP {response.status_code}", response.status_code)

        try:
            return response.json()
        except ValueError as e:
            raise UpstreamFetchError(url, "Response body is not JSON", response.status_code) from e

    def list_term_cases(self, term: str) -> List[Dict[str, Any]]:
        """Every case the provider lists for a term, in one unpaginated call"""
        url = f"{self.base_url}/cases"
        data = self.get_json(url, params={'per_page': 0, 'filter': f"term:{term}"})
        if not isinstance(data, list):
            raise UpstreamFetchError(url, "Case listing is not a JSON array")
        return [item for item in data if isinstance(item, dict)]

    def fetch_case(self, href: str) -> Dict[str, Any]:
        data = self.get_json(href)
        if not isinstance(data, dict):
            raise UpstreamFetchError(href, "Case detail is not a JSON object")
        return data

    def case_url(self, term: str, docket_number: str) -> str:
        return f"{self.base_url}/cases/{term}/{docket_number}"

    def fetch_justice(self, href: str) -> Dict[str, Any]:
        data = self.get_json(href)
        if not isinstance(data, dict):
            raise UpstreamFetchError(href, "Justice profile is not a JSON object")
        return data

    def justice_url(self, identifier: str) -> str:
        return f"{self.base_url}/people/{identifier}"
