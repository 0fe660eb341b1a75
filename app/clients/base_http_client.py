# clients/base_http_client.py
import requests
import re

from typing import Dict, Any, Optional
from urllib.parse import urljoin
from abc import ABC
from app.utils.log import app_logger
from app.utils.retry import retry_with_backoff


def sanitize_error(exc: BaseException) -> str:
    """str(exc) without memory addresses like <HTTPSConnection(...) at 0x...>"""
    return re.sub(r'0x[0-9a-fA-F]+', '<ptr>', str(exc))


class BaseHTTPClient(ABC):
    """Base HTTP client with common functionalities like GET, retries, and error handling"""

    USER_AGENT = "treasury-appraisal-proxy/0.1 (+https://catalog.treasury.go.th)"

    def __init__(self,
                 base_url: str,
                 api_key: Optional[str] = None,
                 timeout: float = 30, max_retries: int = 3,
                 retry_delay: float = 1.0,
                 accept: Optional[str] = 'application/json'
                 ):
        self.base_url = base_url.rstrip('/')
        self.api_key = api_key
        self.timeout = timeout
        self.accept = accept
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.session = requests.Session()

        # setup default headers
        self._setup_default_headers()

    def _setup_default_headers(self):
        """setup default headers for the client"""
        self.session.headers.update({
            'User-Agent': self.USER_AGENT,
            'Accept': self.accept,
        })

        # add authentication header if api_key is provided
        if self.api_key:
            self._setup_authentication()

    def _setup_authentication(self):
        """setup authentication with API key (can be overridden)"""
        pass

    def _build_url(self, endpoint: str) -> str:
        """build full URL"""
        if not endpoint:
            return self.base_url
        return urljoin(f"{self.base_url}/", endpoint.lstrip('/'))

    def _send(self, method: str, url: str,
              params: Optional[Dict] = None,
              headers: Optional[Dict] = None) -> requests.Response:
        """single attempt; non-2xx raises requests.HTTPError"""
        response = self.session.request(
            method=method,
            url=url,
            params=params,
            headers=headers or {},
            timeout=self.timeout
        )

        if response.status_code >= 400:
            app_logger.debug("request.status", method=method, url=url, status_code=response.status_code)

        response.raise_for_status()
        return response

    def _make_request(self, method: str, endpoint: str,
                      params: Optional[Dict] = None,
                      headers: Optional[Dict] = None,
                      **log_context) -> requests.Response:
        """do HTTP request with retries

        Network errors, timeouts and non-2xx statuses are retried with a fixed
        delay. The last requests exception is re-raised once retries run out.
        """
        url = self._build_url(endpoint)
        return retry_with_backoff(
            lambda: self._send(method, url, params=params, headers=headers),
            attempts=self.max_retries,
            delay=self.retry_delay,
            retry_on=(requests.exceptions.RequestException,),
            method=method,
            url=url,
            **log_context,
        )

    def get(self, endpoint: str, params: Optional[Dict] = None,
            headers: Optional[Dict] = None, **log_context) -> Dict[str, Any]:
        """do GET request and decode the JSON body (ValueError if it isn't JSON)"""
        response = self._make_request('GET', endpoint, params=params, headers=headers, **log_context)
        return response.json()

    def close(self):
        """close HTTP session"""
        self.session.close()
