# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

import pytest

from seedforge.runtime import logger as runtime_logger
from seedforge.runtime import metrics


@pytest.fixture(autouse=True)
def isolated_telemetry(tmp_path, monkeypatch):
    """Route metrics and JSON logs into the test's temporary directory."""
    monkeypatch.setattr(metrics, "METRICS_PATH", tmp_path / "telemetry" / "metrics.jsonl")
    monkeypatch.setattr(runtime_logger, "DEFAULT_LOG_DIR", tmp_path / "telemetry" / "logs")
    yield tmp_path / "telemetry"
    for cached in runtime_logger._LOGGER_CACHE.values():
        cached._logger.removeHandler(cached.handler)
        cached.handler.close()
    runtime_logger._LOGGER_CACHE.clear()
