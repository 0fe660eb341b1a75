from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import requests

from app.clients.base_http_client import BaseHTTPClient, sanitize_error
from app.config.settings import settings
from app.core.exceptions.exceptions import (
    UpstreamHttpError,
    UpstreamMalformedResponseError,
    UpstreamTimeoutError,
)
from app.utils.log import app_logger


@dataclass(frozen=True)
class UpstreamPage:
    records: List[Dict[str, Any]]
    total: Optional[int]
    offset: int


class TreasuryClient(BaseHTTPClient):
    """Client for the Treasury Department CKAN `datastore_search` action."""

    def __init__(self,
                 api_url: str = settings.TREASURY_API_URL,
                 resource_id: str = settings.TREASURY_RESOURCE_ID,
                 timeout: float = settings.UPSTREAM_TIMEOUT,
                 max_retries: int = settings.UPSTREAM_MAX_RETRIES,
                 retry_delay: float = settings.UPSTREAM_RETRY_DELAY,
                 page_ceiling: int = settings.UPSTREAM_PAGE_CEILING):
        super().__init__(
            base_url=api_url,
            timeout=timeout,
            max_retries=max_retries,
            retry_delay=retry_delay,
        )
        self.resource_id = resource_id
        self.page_ceiling = page_ceiling

    def fetch_page(self, offset: int, limit: int, search: Optional[str] = None) -> UpstreamPage:
        """ Fetch one page of records starting at `offset`.

        Raises UpstreamTimeoutError, UpstreamHttpError or
        UpstreamMalformedResponseError once retries are exhausted.
        """
        if offset < 0:
            raise ValueError(f"offset must be >= 0, got {offset}")
        if limit < 1:
            raise ValueError(f"limit must be > 0, got {limit}")
        limit = min(limit, self.page_ceiling)

        params = {
            'resource_id': self.resource_id,
            'limit': limit,
            'offset': offset,
        }
        if search:
            params['q'] = search

        try:
            payload = self.get('', params=params, offset=offset, search=search or '')
        except requests.exceptions.Timeout as e:
            attempts = getattr(e, 'attempts', self.max_retries)
            app_logger.error("treasury_client.timeout", offset=offset, search=search or '',
                             attempts=attempts, timeout=self.timeout)
            raise UpstreamTimeoutError(offset, sanitize_error(e), attempts=attempts) from e
        except requests.exceptions.HTTPError as e:
            attempts = getattr(e, 'attempts', self.max_retries)
            status = e.response.status_code if e.response is not None else None
            app_logger.error("treasury_client.http_error", offset=offset, search=search or '',
                             attempts=attempts, status_code=status)
            raise UpstreamHttpError(offset, status_code=status, attempts=attempts) from e
        except requests.exceptions.JSONDecodeError as e:
            # body was not JSON; retrying a 2xx with a bad body won't help
            app_logger.error("treasury_client.invalid_json", offset=offset, search=search or '')
            raise UpstreamMalformedResponseError(offset, f"invalid JSON: {sanitize_error(e)}", attempts=1) from e
        except requests.exceptions.RequestException as e:
            attempts = getattr(e, 'attempts', self.max_retries)
            app_logger.error("treasury_client.request_failed", offset=offset, search=search or '',
                             attempts=attempts, exc_type=type(e).__name__, error=sanitize_error(e))
            raise UpstreamHttpError(offset, detail=sanitize_error(e), attempts=attempts) from e

        page = self._parse_page(payload, offset)
        app_logger.debug("treasury_client.page", offset=offset, limit=limit,
                         received=len(page.records), total=page.total)
        return page

    def fetch_total(self) -> Optional[int]:
        """size of the unfiltered dataset, from a one-record page"""
        return self.fetch_page(0, 1).total

    @staticmethod
    def _parse_page(payload: Any, offset: int) -> UpstreamPage:
        if not isinstance(payload, dict) or payload.get('success') is not True:
            detail = "missing success flag"
            if isinstance(payload, dict) and isinstance(payload.get('error'), dict):
                detail = f"upstream error: {payload['error'].get('message', payload['error'])}"
            app_logger.error("treasury_client.unsuccessful_payload", offset=offset, detail=detail)
            raise UpstreamMalformedResponseError(offset, detail)

        result = payload.get('result')
        if not isinstance(result, dict) or not isinstance(result.get('records'), list):
            app_logger.error("treasury_client.missing_records", offset=offset)
            raise UpstreamMalformedResponseError(offset, "missing result.records")

        total = result.get('total')
        return UpstreamPage(
            records=result['records'],
            total=total if isinstance(total, int) else None,
            offset=offset,
        )
