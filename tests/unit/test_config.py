from __future__ import annotations

from typing import Any

import pytest

from dynamo_pipeline import ValidationError
from dynamo_pipeline.config import PipelineConfig, create_boto3_config, create_dynamodb_client


def test_defaults() -> None:
    cfg = PipelineConfig()
    assert (cfg.read_buffer, cfg.write_buffer, cfg.read_batch_size, cfg.write_batch_size) == (1, 3, 100, 25)
    assert cfg.read_capacity_unit_limit is None


def test_from_env_reads_prefixed_variables() -> None:
    cfg = PipelineConfig.from_env(
        {
            "DYNAMO_PIPELINE_READ_BUFFER": "4",
            "DYNAMO_PIPELINE_WRITE_BUFFER": "8",
            "DYNAMO_PIPELINE_READ_BATCH_SIZE": "50",
            "DYNAMO_PIPELINE_WRITE_BATCH_SIZE": "10",
            "DYNAMO_PIPELINE_READ_CAPACITY_UNIT_LIMIT": "12.5",
        }
    )
    assert cfg == PipelineConfig(
        read_buffer=4, write_buffer=8, read_batch_size=50, write_batch_size=10, read_capacity_unit_limit=12.5
    )


def test_from_env_ignores_blank_values() -> None:
    assert PipelineConfig.from_env({"DYNAMO_PIPELINE_READ_BUFFER": "  "}) == PipelineConfig()


@pytest.mark.parametrize(
    "environ",
    [
        {"DYNAMO_PIPELINE_READ_BUFFER": "many"},
        {"DYNAMO_PIPELINE_READ_CAPACITY_UNIT_LIMIT": "fast"},
        {"DYNAMO_PIPELINE_WRITE_BATCH_SIZE": "26"},
    ],
)
def test_from_env_rejects_bad_values(environ: dict[str, str]) -> None:
    with pytest.raises(ValidationError):
        PipelineConfig.from_env(environ)


@pytest.mark.parametrize(
    "changes",
    [
        {"read_buffer": -1},
        {"write_buffer": -1},
        {"read_batch_size": 0},
        {"write_batch_size": 0},
        {"read_capacity_unit_limit": 0},
    ],
)
def test_with_changes_validates(changes: dict[str, Any]) -> None:
    with pytest.raises(ValidationError):
        PipelineConfig().with_changes(**changes)


def test_create_boto3_config_uses_adaptive_retries() -> None:
    cfg = create_boto3_config(connect_timeout=2.0, read_timeout=4.0, max_attempts=5)
    assert cfg.connect_timeout == 2.0
    assert cfg.read_timeout == 4.0
    assert cfg.retries == {"max_attempts": 5, "mode": "adaptive"}


def test_create_dynamodb_client_uses_session() -> None:
    class _Session:
        def __init__(self) -> None:
            self.calls: list[tuple[str, dict[str, Any]]] = []

        def client(self, service: str, **kwargs: Any) -> str:
            self.calls.append((service, kwargs))
            return "client"

    session = _Session()
    assert create_dynamodb_client(region="eu-west-1", session=session) == "client"

    service, kwargs = session.calls[0]
    assert service == "dynamodb"
    assert kwargs["region_name"] == "eu-west-1"
    assert kwargs["config"].retries["mode"] == "adaptive"
