import asyncio
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

from app.clients.treasury_client import TreasuryClient, UpstreamPage
from app.config.settings import settings
from app.core.exceptions.exceptions import UpstreamError
from app.utils.log import app_logger


Record = Dict[str, Any]


@dataclass(frozen=True)
class DatasetSnapshot:
    records: Tuple[Record, ...]
    fetched_at: float


class DatasetCache:
    """In-memory snapshot of the whole upstream dataset with a TTL.

    The snapshot is only ever replaced by a complete refill, so readers never
    see a half-filled dataset. Refills are single-flight: while one is
    running, other callers get the previous snapshot, or await that same
    refill and share its result or error when there is none yet. A failed
    refill leaves the previous snapshot in place, and for `retry_cooldown`
    seconds afterwards that snapshot keeps being served without another
    upstream attempt.

    Lives in process memory only; a restart starts empty.
    """

    def __init__(self,
                 client: TreasuryClient,
                 ttl_seconds: float = settings.CACHE_TTL_SECONDS,
                 page_size: int = settings.FETCH_PAGE_SIZE,
                 concurrency: int = settings.FETCH_CONCURRENCY,
                 max_records: int = settings.MAX_RECORDS,
                 retry_cooldown: float = settings.REFILL_RETRY_COOLDOWN,
                 clock: Callable[[], float] = time.monotonic):
        if page_size < 1 or concurrency < 1 or max_records < 1:
            raise ValueError("page_size, concurrency and max_records must be positive")
        self.client = client
        self.ttl = ttl_seconds
        self.page_size = page_size
        self.concurrency = concurrency
        self.max_records = max_records
        self.retry_cooldown = retry_cooldown
        self._clock = clock
        self._snapshot: Optional[DatasetSnapshot] = None
        self._last_failure: Optional[float] = None
        self._refill_task: Optional["asyncio.Future[DatasetSnapshot]"] = None
        self.refill_count = 0

    @property
    def snapshot(self) -> Optional[DatasetSnapshot]:
        return self._snapshot

    @property
    def refilling(self) -> bool:
        return self._refill_task is not None

    def is_stale(self) -> bool:
        if self._snapshot is None:
            return True
        return self._clock() - self._snapshot.fetched_at > self.ttl

    def _in_failure_cooldown(self) -> bool:
        if self._last_failure is None:
            return False
        return self._clock() - self._last_failure < self.retry_cooldown

    async def get_all(self) -> Tuple[Record, ...]:
        """Return every cached record, refilling first when empty or stale."""
        snapshot = self._snapshot
        if snapshot is not None and not self.is_stale():
            return snapshot.records

        if snapshot is not None and (self.refilling or self._in_failure_cooldown()):
            app_logger.debug("dataset_cache.serving_stale",
                             age=round(self._clock() - snapshot.fetched_at, 1),
                             refilling=self.refilling)
            return snapshot.records

        await self.refill()
        return self._snapshot.records

    async def refill(self) -> DatasetSnapshot:
        """Fetch the full dataset and swap it in.

        Single-flight: a call made while a refill is running awaits that
        refill and gets its snapshot or its exception. Any page failure
        aborts the refill; the old snapshot stays untouched.
        """
        if self._refill_task is None:
            self._refill_task = asyncio.ensure_future(self._run_refill())
        # shield so one cancelled request doesn't cancel the shared refill
        return await asyncio.shield(self._refill_task)

    async def _run_refill(self) -> DatasetSnapshot:
        try:
            return await self._refill_once()
        finally:
            self._refill_task = None

    async def _refill_once(self) -> DatasetSnapshot:
        started = self._clock()
        app_logger.info("dataset_cache.refill.start", page_size=self.page_size,
                        concurrency=self.concurrency, max_records=self.max_records)
        try:
            records = await self._fetch_all()
        except UpstreamError as e:
            self._last_failure = self._clock()
            app_logger.error("dataset_cache.refill.failed", offset=e.offset, attempts=e.attempts,
                             error=e.message, kept_stale=self._snapshot is not None)
            raise

        snapshot = DatasetSnapshot(records=tuple(records), fetched_at=self._clock())
        self._snapshot = snapshot
        self._last_failure = None
        self.refill_count += 1
        app_logger.info("dataset_cache.refill.done", records=len(snapshot.records),
                        seconds=round(snapshot.fetched_at - started, 2))
        return snapshot

    async def _fetch_all(self) -> List[Record]:
        # the first page tells us the dataset size, the rest are fanned out
        first: UpstreamPage = await asyncio.to_thread(self.client.fetch_page, 0, self.page_size)
        records: List[Record] = list(first.records)
        if len(first.records) < self.page_size:
            return self._truncate(records)

        target = self.max_records if first.total is None else min(first.total, self.max_records)
        offset = self.page_size

        while offset < target:
            offsets = []
            for i in range(self.concurrency):
                page_offset = offset + i * self.page_size
                if page_offset >= target:
                    break
                offsets.append(page_offset)

            # let every page of the batch finish before failing, so no fetch
            # outlives the refill that started it
            results = await asyncio.gather(
                *(asyncio.to_thread(self.client.fetch_page, o, self.page_size) for o in offsets),
                return_exceptions=True,
            )
            errors = [r for r in results if isinstance(r, BaseException)]
            if errors:
                raise errors[0]
            pages: List[UpstreamPage] = list(results)

            exhausted = False
            for page in pages:
                records.extend(page.records)
                if len(page.records) < self.page_size:
                    exhausted = True
                    break
            if exhausted:
                break
            offset += len(offsets) * self.page_size

        return self._truncate(records)

    def _truncate(self, records: List[Record]) -> List[Record]:
        if len(records) > self.max_records:
            app_logger.warning("dataset_cache.truncated", fetched=len(records), max_records=self.max_records)
            return records[:self.max_records]
        return records

    def clear(self) -> None:
        self._snapshot = None
        self._last_failure = None
