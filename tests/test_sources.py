"""Tests for metric sources."""
import pytest
from datetime import datetime
from unittest.mock import MagicMock

from monitor.sources import (
    StaticMetricSource, SimulatedMicrogridSource, HttpMetricSource, MetricSource, build_source,
)
from utils.http_client import APIError


def test_static_source():
    src = StaticMetricSource({"temperature": 30})
    src.set(batteryLevel=50)
    assert src.get_current_readings() == {"temperature": 30, "batteryLevel": 50}
    src.remove("temperature")
    assert "temperature" not in src.get_current_readings()
    src.replace({"efficiency": 90})
    assert src.get_current_readings() == {"efficiency": 90}
    assert isinstance(src, MetricSource)


def test_simulated_source_is_bounded():
    src = SimulatedMicrogridSource(seed=42, clock=lambda: datetime(2025, 6, 1, 12, 0))
    for _ in range(200):
        r = src.get_current_readings()
        assert 10 <= r["batteryLevel"] <= 95
        assert 75 <= r["efficiency"] <= 98
        assert r["totalGeneration"] == pytest.approx(r["solarGeneration"] + r["windGeneration"], abs=0.02)


def test_simulated_source_no_solar_at_night():
    src = SimulatedMicrogridSource(seed=1, clock=lambda: datetime(2025, 6, 1, 2, 0))
    readings = src.get_current_readings()
    assert readings["solarGeneration"] <= 200


def test_simulated_source_reproducible():
    clock = lambda: datetime(2025, 6, 1, 12, 0)  # noqa: E731
    a = SimulatedMicrogridSource(seed=7, clock=clock)
    b = SimulatedMicrogridSource(seed=7, clock=clock)
    assert a.get_current_readings() == b.get_current_readings()


def test_http_source_keeps_numbers():
    client = MagicMock()
    client.get.return_value = {"temperature": 36, "status": "ok", "online": True, "efficiency": 81.5}
    src = HttpMetricSource("https://grid.test/metrics", client=client)
    assert src.get_current_readings() == {"temperature": 36.0, "efficiency": 81.5}


def test_http_source_failure_yields_nothing():
    client = MagicMock()
    client.get.side_effect = APIError("HTTP 503", status_code=503)
    src = HttpMetricSource("https://grid.test/metrics", client=client)
    assert src.get_current_readings() == {}


def test_http_source_non_object_payload():
    client = MagicMock()
    client.get.return_value = [1, 2, 3]
    assert HttpMetricSource("https://grid.test", client=client).get_current_readings() == {}


def test_build_source():
    assert isinstance(build_source({"metrics_source": {"type": "simulated"}}), SimulatedMicrogridSource)
    assert isinstance(build_source({"metrics_source": {"type": "static", "readings": {"x": 1}}}),
                      StaticMetricSource)
    assert isinstance(build_source({"metrics_source": {"type": "http", "url": "https://grid.test"}}),
                      HttpMetricSource)
    with pytest.raises(ValueError):
        build_source({"metrics_source": {"type": "http"}})
    with pytest.raises(ValueError):
        build_source({"metrics_source": {"type": "modbus"}})
