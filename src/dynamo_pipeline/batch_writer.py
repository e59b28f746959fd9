from __future__ import annotations

import logging
import math
import time
from collections.abc import Callable, Mapping, Sequence
from concurrent import futures
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from typing import Any

from botocore.exceptions import ClientError

from .aws_errors import map_client_error
from .chunking import chunked, split_in_half
from .errors import ValidationError
from .marshal import deserialize_map, serialize_map

logger = logging.getLogger(__name__)

MAX_BATCH_WRITE_ITEMS = 25
MIN_CONGESTED_CAPACITY = 5
MAX_SLOW_START_WAIT = 0.1

type Item = dict[str, Any]


class BatchWriter:
    def __init__(
        self,
        client: Any,
        table_name: str,
        items: Sequence[Mapping[str, Any]],
        *,
        batch_size: int = MAX_BATCH_WRITE_ITEMS,
        buffer_capacity: int = 3,
        on_unprocessed_items: Callable[[list[Item]], None] | None = None,
        retry_unprocessed: bool = True,
        disable_slow_start: bool = False,
        executor: Executor | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if not isinstance(batch_size, int) or not 1 <= batch_size <= MAX_BATCH_WRITE_ITEMS:
            raise ValidationError(f"batch_size must be between 1 and {MAX_BATCH_WRITE_ITEMS}")
        if not isinstance(buffer_capacity, int) or buffer_capacity < 0:
            raise ValidationError("buffer_capacity must be >= 0")

        self._client = client
        self.table_name = table_name
        self.batch_size = batch_size
        self.buffer_capacity = max(1, buffer_capacity)
        self.backoff_active = False
        self.unprocessed_items: list[Item] = []
        self._on_unprocessed_items = on_unprocessed_items
        self._slow_start = not disable_slow_start
        self._sleep = sleep

        self._chunks: list[list[Item]] = chunked([dict(item) for item in items], batch_size)
        self._next_token: int | None = 0 if self._chunks else None
        self._retry_chunks: list[list[Item]] | None = [] if retry_unprocessed else None
        self._active_requests: dict[Future[Any], list[Item]] = {}
        self._error: Exception | None = None

        self._executor = executor
        self._owns_executor = executor is None

    def execute(self) -> None:
        try:
            while not self.is_done() and self._error is None:
                if self._write_chunk() and self._slow_start:
                    self._sleep(self._slow_start_wait())
        finally:
            self._settle()

        if self._error is not None:
            raise self._error

    def is_done(self) -> bool:
        return not self._active_requests and self._next_token is None and not self._retry_chunks

    def _write_chunk(self) -> bool:
        self._reap()
        if self._error is not None:
            return False

        if self._retry_chunks and self._next_token is None and not self._active_requests:
            logger.debug("retrying %d chunk(s) of unprocessed items", len(self._retry_chunks))
            self._chunks = self._retry_chunks
            self._retry_chunks = None
            self._next_token = 0

        if self._next_token is None:
            self._wait_any()
            return False

        if self.backoff_active or len(self._active_requests) >= self.buffer_capacity:
            self._wait_any()
            return False

        chunk = self._chunks[self._next_token]
        self._next_token += 1
        if self._next_token >= len(self._chunks):
            self._next_token = None

        logger.debug("writing %d item(s) to %s", len(chunk), self.table_name)
        self._active_requests[self._submit(chunk)] = chunk
        return True

    def _slow_start_wait(self) -> float:
        next_chunk = self._next_token if self._next_token is not None else len(self._chunks)
        additional = max(self.buffer_capacity / 1.2 - next_chunk // 5, 0)
        remaining = self.buffer_capacity - additional
        if remaining <= 0:
            return MAX_SLOW_START_WAIT
        return min(1 / remaining, MAX_SLOW_START_WAIT)

    def _submit(self, chunk: list[Item]) -> Future[Any]:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self.buffer_capacity, thread_name_prefix="BatchWriter"
            )
            self._owns_executor = True
        return self._executor.submit(self._call, chunk)

    def _call(self, chunk: list[Item]) -> Mapping[str, Any]:
        req = {
            "RequestItems": {
                self.table_name: [{"PutRequest": {"Item": serialize_map(item)}} for item in chunk]
            }
        }
        try:
            return self._client.batch_write_item(**req)
        except ClientError as err:
            raise map_client_error(err) from err

    def _wait_any(self) -> None:
        if self._active_requests:
            futures.wait(list(self._active_requests), return_when=futures.FIRST_COMPLETED)
            self._reap()

    def _reap(self) -> None:
        done = [request for request in self._active_requests if request.done()]
        for request in done:
            chunk = self._active_requests.pop(request)
            try:
                data = request.result()
            except Exception as err:
                logger.error("batch write to %s failed: %s", self.table_name, err)
                self._report_unprocessed(chunk)
                if self._error is None:
                    self._error = err
                continue
            self._process_result(data)

        if not self._active_requests:
            self.backoff_active = False

    def _process_result(self, data: Mapping[str, Any]) -> None:
        retry_attempts = (data.get("ResponseMetadata") or {}).get("RetryAttempts") or 0
        if retry_attempts > 0:
            self._back_off()

        requests = (data.get("UnprocessedItems") or {}).get(self.table_name) or []
        items = [
            deserialize_map(request["PutRequest"]["Item"])
            for request in requests
            if "PutRequest" in request
        ]
        if not items:
            return

        if self._retry_chunks is not None:
            self._retry_chunks.extend(split_in_half(items))
        else:
            self._report_unprocessed(items)

    def _back_off(self) -> None:
        reduced = max(math.floor(self.buffer_capacity * 3 / 4), MIN_CONGESTED_CAPACITY)
        self.buffer_capacity = min(self.buffer_capacity, reduced)
        self.backoff_active = True
        logger.warning(
            "write throttling on %s, concurrency reduced to %d", self.table_name, self.buffer_capacity
        )

    def _report_unprocessed(self, items: list[Item]) -> None:
        logger.warning("%d item(s) left unprocessed for %s", len(items), self.table_name)
        if self._on_unprocessed_items is not None:
            self._on_unprocessed_items(items)
        else:
            self.unprocessed_items.extend(items)

    def _settle(self) -> None:
        if self._active_requests:
            futures.wait(list(self._active_requests))
            self._reap()
        if self._executor is not None and self._owns_executor:
            self._executor.shutdown(wait=True)
            self._executor = None
