from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping
from concurrent.futures import Executor, Future
from typing import Any, Literal

from botocore.exceptions import ClientError

from .aws_errors import map_client_error
from .cursor import encode_cursor
from .errors import ValidationError
from .fetcher import NOT_STARTED, AbstractFetcher
from .marshal import deserialize_map
from .token_bucket import TokenBucket

logger = logging.getLogger(__name__)

type Operation = Literal["query", "scan"]


class QueryFetcher(AbstractFetcher[dict[str, Any]]):
    """Pages through a Query or Scan, one call in flight at a time."""

    def __init__(
        self,
        request: Mapping[str, Any],
        client: Any,
        operation: Operation,
        *,
        batch_size: int,
        buffer_capacity: int,
        limit: int | None = None,
        token_bucket: TokenBucket | None = None,
        next_token: Mapping[str, Any] | None = None,
        executor: Executor | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if operation not in ("query", "scan"):
            raise ValidationError(f"unsupported operation: {operation}")

        super().__init__(
            client,
            batch_size=batch_size,
            buffer_capacity=buffer_capacity,
            limit=limit,
            token_bucket=token_bucket,
            executor=executor,
            max_workers=1,
            sleep=sleep,
        )

        self._operation = operation
        self._request = dict(request)
        if token_bucket is not None:
            self._request.setdefault("ReturnConsumedCapacity", "TOTAL")
        self._next_token = dict(next_token) if next_token else NOT_STARTED

    def fetch_strategy(self) -> Future[Any] | None:
        if self._active_requests or self._buffer_size > self.buffer_capacity or self._next_token is None:
            return self._active_requests[0] if self._active_requests else None

        page_size = self.batch_size
        if self.limit is not None:
            page_size = min(page_size, self.limit - self.total_returned)
            if page_size <= 0:
                return None

        req = dict(self._request)
        req["Limit"] = page_size
        if self._next_token is not NOT_STARTED:
            req["ExclusiveStartKey"] = self._next_token

        logger.debug("%s %s limit=%d", self._operation, req.get("TableName"), page_size)
        return self._submit(self._call, req)

    def _call(self, req: dict[str, Any]) -> Mapping[str, Any]:
        method = getattr(self._client, self._operation)
        try:
            return method(**req)
        except ClientError as err:
            raise map_client_error(err) from err

    def process_result(self, data: Mapping[str, Any]) -> None:
        self._next_token = data.get("LastEvaluatedKey") or None

        items = [deserialize_map(item) for item in data.get("Items") or []]
        self.total_returned += len(items)
        self._results.extend(items)

    def get_result_batch(self, batch_size: int) -> list[dict[str, Any]]:
        items = super().get_result_batch(batch_size)

        # estimate how many pages are still buffered
        if items:
            self._buffer_size = len(self._results) / len(items)
        elif not self._active_requests:
            self._buffer_size = 0

        return items

    @property
    def next_cursor(self) -> str:
        """Opaque resume token for the page boundary where a limited read stopped."""
        if not self.last_evaluated_key:
            return ""
        sort = None
        if self._operation == "query":
            sort = "ASC" if self._request.get("ScanIndexForward", True) else "DESC"
        return encode_cursor(self.last_evaluated_key, index=self._request.get("IndexName"), sort=sort)
