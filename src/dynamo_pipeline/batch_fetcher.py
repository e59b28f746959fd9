from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping, Sequence
from concurrent.futures import Executor, Future
from dataclasses import dataclass
from typing import Any, Literal

from botocore.exceptions import ClientError

from .aws_errors import map_client_error, map_transaction_error
from .chunking import chunked, split_in_half
from .errors import ValidationError
from .fetcher import AbstractFetcher
from .marshal import deserialize_map, serialize_map
from .token_bucket import TokenBucket

logger = logging.getLogger(__name__)

MAX_BATCH_GET_KEYS = 100
MAX_TRANSACT_GET_KEYS = 100

type Operation = Literal["batch_get", "transact_get"]


@dataclass(frozen=True)
class Chunk:
    table_name: str
    keys: tuple[dict[str, Any], ...]


@dataclass(frozen=True)
class TableKey:
    table_name: str
    key: dict[str, Any]


type Request = Chunk | tuple[TableKey, ...]


class BatchGetFetcher(AbstractFetcher[dict[str, Any]]):
    """Streams BatchGetItem or TransactGetItems results for a list of keys.

    Unprocessed keys are split in half and fetched once more after the first
    pass, even when ``on_unprocessed_keys`` is given; the callback only sees
    keys still unprocessed after that retry. Pass ``retry_unprocessed=False``
    to hand every unprocessed key to the callback straight away.
    """

    def __init__(
        self,
        client: Any,
        operation: Operation,
        items: Chunk | Sequence[Chunk] | Sequence[TableKey],
        *,
        batch_size: int = MAX_BATCH_GET_KEYS,
        buffer_capacity: int = 4,
        consistent_read: bool = False,
        token_bucket: TokenBucket | None = None,
        on_unprocessed_keys: Callable[[list[dict[str, Any]]], None] | None = None,
        retry_unprocessed: bool = True,
        executor: Executor | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        super().__init__(
            client,
            batch_size=batch_size,
            buffer_capacity=buffer_capacity,
            token_bucket=token_bucket,
            executor=executor,
            max_workers=buffer_capacity,
            sleep=sleep,
        )

        self._operation = operation
        self._consistent_read = consistent_read
        self._on_unprocessed_keys = on_unprocessed_keys
        self.unprocessed_keys: list[dict[str, Any]] = []

        self._chunks: list[Request]
        if operation == "batch_get":
            if batch_size > MAX_BATCH_GET_KEYS:
                raise ValidationError(f"batch_size must be <= {MAX_BATCH_GET_KEYS} for batch get")
            requested = [items] if isinstance(items, Chunk) else list(items)
            self._chunks = []
            for table_chunk in requested:
                if not isinstance(table_chunk, Chunk):
                    raise ValidationError("batch get expects Chunk(table_name, keys) entries")
                self._chunks.extend(
                    Chunk(table_chunk.table_name, tuple(keys))
                    for keys in chunked(table_chunk.keys, batch_size)
                )
        elif operation == "transact_get":
            table_keys = tuple(items) if not isinstance(items, Chunk) else ()
            if any(not isinstance(tk, TableKey) for tk in table_keys):
                raise ValidationError("transact get expects TableKey(table_name, key) entries")
            if len(table_keys) > MAX_TRANSACT_GET_KEYS:
                raise ValidationError(f"transact get supports at most {MAX_TRANSACT_GET_KEYS} keys")
            self._chunks = [table_keys] if table_keys else []
        else:
            raise ValidationError(f"unsupported operation: {operation}")

        self._next_token = 0 if self._chunks else None
        self._retry_chunks: list[Request] | None = [] if retry_unprocessed else None

    def fetch_strategy(self) -> Future[Any] | None:
        if self._retry_chunks and self._next_token is None and not self._active_requests:
            logger.debug("retrying %d chunk(s) of unprocessed keys", len(self._retry_chunks))
            self._chunks = self._retry_chunks
            self._retry_chunks = None
            self._next_token = 0

        saturated = bool(self._active_requests) and self._buffer_size >= self.buffer_capacity
        if self._next_token is None or saturated:
            return self._active_requests[0] if self._active_requests else None

        chunk = self._chunks[self._next_token]
        self._next_token = self._next_token + 1 if self._next_token + 1 < len(self._chunks) else None
        return self._submit(self._call, chunk)

    def _call(self, chunk: Request) -> Mapping[str, Any]:
        if isinstance(chunk, Chunk):
            req: dict[str, Any] = {
                "RequestItems": {
                    chunk.table_name: {
                        "Keys": [serialize_map(key) for key in chunk.keys],
                        "ConsistentRead": self._consistent_read,
                    }
                }
            }
            if self._token_bucket is not None:
                req["ReturnConsumedCapacity"] = "TOTAL"
            try:
                return self._client.batch_get_item(**req)
            except ClientError as err:
                raise map_client_error(err) from err

        req = {
            "TransactItems": [
                {"Get": {"TableName": tk.table_name, "Key": serialize_map(tk.key)}} for tk in chunk
            ]
        }
        if self._token_bucket is not None:
            req["ReturnConsumedCapacity"] = "TOTAL"
        try:
            return self._client.transact_get_items(**req)
        except ClientError as err:
            raise map_transaction_error(err) from err

    def process_result(self, data: Mapping[str, Any]) -> None:
        responses = data.get("Responses")
        raw: list[Any]
        if isinstance(responses, list):
            raw = [entry.get("Item") for entry in responses if isinstance(entry, Mapping)]
        elif isinstance(responses, Mapping):
            raw = [item for table_items in responses.values() for item in table_items]
        else:
            raw = []

        items = [deserialize_map(item) for item in raw if item]

        for table_name, entry in (data.get("UnprocessedKeys") or {}).items():
            keys = [deserialize_map(key) for key in entry.get("Keys") or []]
            if keys:
                self._handle_unprocessed(table_name, keys)

        self.total_returned += len(items)
        self._results.extend(items)

    def _handle_unprocessed(self, table_name: str, keys: list[dict[str, Any]]) -> None:
        if self._retry_chunks is not None:
            for half in split_in_half(keys):
                self._retry_chunks.append(Chunk(table_name, tuple(half)))
            return

        logger.warning("%d key(s) left unprocessed for %s", len(keys), table_name)
        if self._on_unprocessed_keys is not None:
            self._on_unprocessed_keys(keys)
        else:
            self.unprocessed_keys.extend(keys)

    def is_done(self) -> bool:
        return super().is_done() and not self._retry_chunks
