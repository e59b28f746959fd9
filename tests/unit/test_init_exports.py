from __future__ import annotations

import dynamo_pipeline


def test_all_exports_resolve() -> None:
    for name in dynamo_pipeline.__all__:
        assert getattr(dynamo_pipeline, name) is not None


def test_version_is_a_string() -> None:
    assert isinstance(dynamo_pipeline.__version__, str)
    assert dynamo_pipeline.__version__
