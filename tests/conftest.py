"""Shared fixtures: an in-memory stand-in for the Treasury catalog."""

import os
import threading
import time
from typing import Any, Dict, List, Optional

# keep error details visible and logs quiet before app.config is imported
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest

from app.clients.treasury_client import UpstreamPage
from app.core.exceptions.exceptions import UpstreamHttpError


def make_records(n: int, name: str = "Condo") -> List[Dict[str, Any]]:
    return [
        {"_id": i + 1, "CONDO_NAME": f"{name} {i + 1}", "OFLEVEL": "1", "USE_CATG": "residential",
         "VAL_AMT_P_MET": 50000 + i}
        for i in range(n)
    ]


class FakeTreasuryClient:
    """Serves `records` the way datastore_search would.

    Thread-safe because the cache calls it from worker threads. Set `error`
    to make every call raise it, `fail_offsets` to make only those pages
    fail (immediately, without the delay), and `delay` to keep calls in flight.
    """

    def __init__(self, records: Optional[List[Dict[str, Any]]] = None, delay: float = 0.0):
        self.records = list(records or [])
        self.delay = delay
        self.error: Optional[Exception] = None
        self.fail_offsets = set()
        self.calls: List[Dict[str, Any]] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self._lock = threading.Lock()

    def fetch_page(self, offset: int, limit: int, search: Optional[str] = None) -> UpstreamPage:
        with self._lock:
            self.calls.append({"offset": offset, "limit": limit, "search": search})
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if offset in self.fail_offsets:
                raise UpstreamHttpError(offset, status_code=503, attempts=3)
            if self.delay:
                time.sleep(self.delay)
            if self.error is not None:
                raise self.error
            rows = self.records
            if search:
                rows = [r for r in rows if search.lower() in str(r.get("CONDO_NAME") or "").lower()]
            return UpstreamPage(records=rows[offset:offset + limit], total=len(rows), offset=offset)
        finally:
            with self._lock:
                self.in_flight -= 1

    def fetch_total(self) -> Optional[int]:
        return self.fetch_page(0, 1).total

    def close(self):
        pass


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


LUMPINI_RECORDS = [
    {"_id": 1, "CONDO_NAME": "Lumpini Place Rama 4", "OFLEVEL": "2", "USE_CATG": "residential", "VAL_AMT_P_MET": 62000},
    {"_id": 2, "CONDO_NAME": "The Base Sukhumvit", "OFLEVEL": "5", "USE_CATG": "residential", "VAL_AMT_P_MET": 71000},
    {"_id": 3, "CONDO_NAME": "lumpini ville Onnut", "OFLEVEL": "10", "USE_CATG": "commercial", "VAL_AMT_P_MET": 48000},
]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def lumpini_client() -> FakeTreasuryClient:
    return FakeTreasuryClient(LUMPINI_RECORDS)


@pytest.fixture
def make_client():
    """factory for FakeTreasuryClient instances"""
    return FakeTreasuryClient


@pytest.fixture
def records_factory():
    return make_records
