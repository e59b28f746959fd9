from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from collections import deque
from collections.abc import Callable, Generator, Mapping
from concurrent import futures
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from typing import Any

from .errors import ValidationError
from .token_bucket import TokenBucket

logger = logging.getLogger(__name__)


class _NotStarted:
    def __repr__(self) -> str:  # pragma: no cover
        return "NOT_STARTED"


NOT_STARTED: Any = _NotStarted()


class AbstractFetcher[T](ABC):
    def __init__(
        self,
        client: Any,
        *,
        batch_size: int,
        buffer_capacity: int,
        limit: int | None = None,
        token_bucket: TokenBucket | None = None,
        executor: Executor | None = None,
        max_workers: int = 1,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if not isinstance(batch_size, int) or batch_size < 1:
            raise ValidationError("batch_size must be >= 1")
        if not isinstance(buffer_capacity, int) or buffer_capacity < 0:
            raise ValidationError("buffer_capacity must be >= 0")
        if limit is not None and limit <= 0:
            raise ValidationError("limit must be > 0")

        self._client = client
        self.batch_size = batch_size
        self.buffer_capacity = buffer_capacity
        self.limit = limit
        self.total_returned = 0
        self.last_evaluated_key: dict[str, Any] | None = None
        self._token_bucket = token_bucket
        self._sleep = sleep

        self._active_requests: list[Future[Any]] = []
        self._buffer_size: float = 0
        self._next_token: Any = None
        self._results: deque[T] = deque()
        self._error: Exception | None = None

        self._executor = executor
        self._owns_executor = executor is None
        self._max_workers = max(1, max_workers)

    @abstractmethod
    def fetch_strategy(self) -> Future[Any] | None:
        """Issue a new call, return one already in flight, or return None when exhausted."""

    @abstractmethod
    def process_result(self, data: Mapping[str, Any]) -> None:
        """Buffer the items of a completed call and advance the continuation token."""

    def process_error(self, err: Exception) -> None:
        self._error = err

    def fetch_next(self, *, wait: bool = True) -> None:
        self._reap()

        if self._token_bucket is not None:
            delay = self._token_bucket.wait_seconds()
            if delay > 0:
                # look-ahead fetches never block; the next blocking fetch waits instead
                if wait:
                    logger.debug(
                        "read capacity exhausted for %s, waiting %.3fs",
                        self._token_bucket.table_or_index_name,
                        delay,
                    )
                    self._sleep(delay)
                return

        request = self.fetch_strategy()
        if request is not None and request not in self._active_requests:
            self._active_requests.append(request)
            self._buffer_size += 1

        if wait and self._active_requests:
            futures.wait(self._active_requests, return_when=futures.FIRST_COMPLETED)
            self._reap()

    def execute(self) -> Generator[list[T], None, dict[str, Any] | None]:
        returned = 0
        try:
            while True:
                self._reap()
                if self._error is not None:
                    raise self._error

                if not self.has_data_ready():
                    self.fetch_next()

                # the fetch above may have recorded a failure
                if self._error is not None:
                    raise self._error

                remaining = self.batch_size if self.limit is None else self.limit - returned
                batch = self.get_result_batch(min(self.batch_size, remaining))
                returned += len(batch)

                if not self.is_done() and (self.limit is None or returned < self.limit):
                    self.fetch_next(wait=False)

                if batch:
                    yield batch

                if self.limit is not None and returned >= self.limit:
                    token = self._next_token
                    self.last_evaluated_key = token if isinstance(token, dict) else None
                    return self.last_evaluated_key

                if self.is_done():
                    return None
        finally:
            self._settle()

    def get_result_batch(self, batch_size: int) -> list[T]:
        count = min(batch_size, len(self._results))
        items = [self._results.popleft() for _ in range(count)]

        if not items:
            self._buffer_size = len(self._active_requests)
        else:
            self._buffer_size = max(0, self._buffer_size - 1)

        return items

    def has_data_ready(self) -> bool:
        return len(self._results) > 0

    def is_done(self) -> bool:
        return not self.is_active() and self._next_token is None and not self._results

    def is_active(self) -> bool:
        return len(self._active_requests) > 0

    def _submit(self, fn: Callable[..., Any], /, *args: Any) -> Future[Any]:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self._max_workers, thread_name_prefix=type(self).__name__
            )
            self._owns_executor = True
        return self._executor.submit(fn, *args)

    def _reap(self) -> None:
        done = [request for request in self._active_requests if request.done()]
        for request in done:
            self._active_requests.remove(request)
            try:
                data = request.result()
            except Exception as err:
                self.process_error(err)
                continue
            self._charge_capacity(data)
            self.process_result(data)

    def _charge_capacity(self, data: Any) -> None:
        bucket = self._token_bucket
        if bucket is None or not isinstance(data, Mapping):
            return

        consumed = data.get("ConsumedCapacity")
        if not consumed:
            return

        # batch and transact reads report one entry per table
        if isinstance(consumed, list):
            entries = [cc for cc in consumed if cc.get("TableName") == bucket.table_or_index_name]
        else:
            entries = [consumed]

        for cc in entries:
            units = cc.get("ReadCapacityUnits") or cc.get("CapacityUnits") or 0
            bucket.take(float(units), allow_deficit=True)

    def _settle(self) -> None:
        if self._active_requests:
            futures.wait(list(self._active_requests))
            self._reap()
        if self._executor is not None and self._owns_executor:
            self._executor.shutdown(wait=True)
            self._executor = None
