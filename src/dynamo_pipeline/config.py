from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, replace
from typing import Any, cast

import boto3
from botocore.config import Config

from .errors import ValidationError

ENV_PREFIX = "DYNAMO_PIPELINE_"


@dataclass(frozen=True)
class PipelineConfig:
    read_buffer: int = 1
    write_buffer: int = 3
    read_batch_size: int = 100
    write_batch_size: int = 25
    read_capacity_unit_limit: float | None = None

    def validate(self) -> PipelineConfig:
        if self.read_buffer < 0:
            raise ValidationError("read_buffer must be >= 0")
        if self.write_buffer < 0:
            raise ValidationError("write_buffer must be >= 0")
        if self.read_batch_size < 1:
            raise ValidationError("read_batch_size must be >= 1")
        if not 1 <= self.write_batch_size <= 25:
            raise ValidationError("write_batch_size must be between 1 and 25")
        if self.read_capacity_unit_limit is not None and self.read_capacity_unit_limit <= 0:
            raise ValidationError("read_capacity_unit_limit must be > 0")
        return self

    def with_changes(self, **changes: Any) -> PipelineConfig:
        return replace(self, **changes).validate()

    @classmethod
    def from_env(cls, environ: Mapping[str, str] = os.environ) -> PipelineConfig:
        def _int(name: str, default: int) -> int:
            raw = (environ.get(ENV_PREFIX + name) or "").strip()
            if not raw:
                return default
            try:
                return int(raw)
            except ValueError as err:
                raise ValidationError(f"{ENV_PREFIX}{name} must be an integer") from err

        raw_limit = (environ.get(ENV_PREFIX + "READ_CAPACITY_UNIT_LIMIT") or "").strip()
        limit: float | None = None
        if raw_limit:
            try:
                limit = float(raw_limit)
            except ValueError as err:
                raise ValidationError(f"{ENV_PREFIX}READ_CAPACITY_UNIT_LIMIT must be a number") from err

        return cls(
            read_buffer=_int("READ_BUFFER", cls.read_buffer),
            write_buffer=_int("WRITE_BUFFER", cls.write_buffer),
            read_batch_size=_int("READ_BATCH_SIZE", cls.read_batch_size),
            write_batch_size=_int("WRITE_BATCH_SIZE", cls.write_batch_size),
            read_capacity_unit_limit=limit,
        ).validate()


def create_boto3_config(
    *,
    connect_timeout: float = 1.0,
    read_timeout: float = 3.0,
    max_attempts: int = 3,
) -> Config:
    return Config(
        connect_timeout=connect_timeout,
        read_timeout=read_timeout,
        retries={"max_attempts": max_attempts, "mode": "adaptive"},
    )


def create_dynamodb_client(
    *,
    region: str | None = None,
    config: Config | None = None,
    session: Any | None = None,
) -> Any:
    sess = session or boto3.session.Session(region_name=region)
    return cast(Any, sess).client("dynamodb", region_name=region, config=config or create_boto3_config())
