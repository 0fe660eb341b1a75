import asyncio
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from app.clients.treasury_client import TreasuryClient
from app.config.settings import settings
from app.schemas.treasury import TreasuryQuery, TreasuryResult
from app.services.dataset_cache import DatasetCache
from app.utils.log import app_logger


class QueryMode(str, Enum):
    CACHE = "cache"
    PASSTHROUGH = "passthrough"


def name_matches(record: Dict[str, Any], term: str, name_field: str) -> bool:
    """case-insensitive substring match; records without a name never match"""
    name = record.get(name_field)
    if name is None:
        return False
    return term.casefold() in str(name).casefold()


def filter_records(records: Iterable[Dict[str, Any]], term: str, name_field: str) -> List[Dict[str, Any]]:
    if not term:
        return list(records)
    return [r for r in records if name_matches(r, term, name_field)]


class TreasuryQueryService:
    """Turns a TreasuryQuery into a TreasuryResult.

    The mode is fixed at construction:
    - cache: filter and slice the full dataset held by DatasetCache
    - passthrough: forward search/offset/limit to the upstream API as-is
    """

    def __init__(self,
                 client: TreasuryClient,
                 cache: Optional[DatasetCache] = None,
                 mode: QueryMode = QueryMode(settings.QUERY_MODE),
                 name_field: str = settings.NAME_FIELD,
                 display_ceiling: int = settings.DISPLAY_TOTAL_CEILING,
                 max_limit: int = settings.MAX_LIMIT):
        self.client = client
        self.mode = QueryMode(mode)
        if self.mode is QueryMode.CACHE and cache is None:
            raise ValueError("cache mode needs a DatasetCache")
        self.cache = cache
        self.name_field = name_field
        self.display_ceiling = display_ceiling
        self.max_limit = max_limit

    async def execute(self, query: TreasuryQuery) -> TreasuryResult:
        if query.limit > self.max_limit:
            query = query.model_copy(update={"limit": self.max_limit})
        if self.mode is QueryMode.PASSTHROUGH:
            return await self._execute_passthrough(query)
        return await self._execute_cached(query)

    async def _execute_cached(self, query: TreasuryQuery) -> TreasuryResult:
        records = await self.cache.get_all()
        # local matching ignores surrounding whitespace; passthrough sends the term as given
        matched = filter_records(records, query.search.strip(), self.name_field)
        page = matched[query.offset:query.offset + query.limit]

        app_logger.debug("query.cached", search=query.search, page=query.page, limit=query.limit,
                         matched=len(matched), returned=len(page))
        return self._envelope(query, page, total=len(matched), total_records=len(records))

    async def _execute_passthrough(self, query: TreasuryQuery) -> TreasuryResult:
        upstream = await asyncio.to_thread(
            self.client.fetch_page, query.offset, query.limit, query.search or None
        )
        total = upstream.total if upstream.total is not None else query.offset + len(upstream.records)

        if query.search:
            total_records = await asyncio.to_thread(self.client.fetch_total)
        else:
            total_records = total

        app_logger.debug("query.passthrough", search=query.search, page=query.page, limit=query.limit,
                         total=total, returned=len(upstream.records))
        return self._envelope(query, upstream.records[:query.limit], total=total, total_records=total_records)

    def _envelope(self, query: TreasuryQuery, records: List[Dict[str, Any]],
                  total: int, total_records: Optional[int]) -> TreasuryResult:
        return TreasuryResult(
            records=list(records),
            total=total,
            display_total=min(total, self.display_ceiling),
            current_page=query.page,
            limit=query.limit,
            total_records=total_records,
        )
