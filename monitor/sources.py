"""Metric sources: pull-based providers of current microgrid readings."""
import logging
import math
import random
import threading
from datetime import datetime
from typing import Protocol, runtime_checkable

from utils.http_client import HTTPClient

logger = logging.getLogger("gridwatch.monitor.sources")


@runtime_checkable
class MetricSource(Protocol):
    def get_current_readings(self) -> dict: ...


class StaticMetricSource:
    """Returns whatever readings were last set. Useful for tests and one-shot CLI runs."""

    def __init__(self, readings=None):
        self._readings = dict(readings or {})
        self._lock = threading.Lock()

    def set(self, **readings):
        with self._lock:
            self._readings.update(readings)

    def remove(self, metric):
        with self._lock:
            self._readings.pop(metric, None)

    def replace(self, readings):
        with self._lock:
            self._readings = dict(readings)

    def get_current_readings(self):
        with self._lock:
            return dict(self._readings)


def _clamp(value, low, high):
    return max(low, min(high, value))


class SimulatedMicrogridSource:
    """Bounded random walk over solar/wind/battery telemetry.

    Solar output follows a daylight curve between 06:00 and 18:00 local time.
    """

    def __init__(self, seed=None, clock=datetime.now):
        self.rng = random.Random(seed)
        self.clock = clock
        self._lock = threading.Lock()
        self._state = self._initial()

    def _solar_multiplier(self):
        hour = self.clock().hour
        if 6 <= hour <= 18:
            return math.sin(((hour - 6) / 12) * math.pi)
        return 0.0

    def _initial(self):
        rng = self.rng
        solar = 1200 * self._solar_multiplier() + rng.random() * 200
        wind = 800 + rng.random() * 600
        return {
            "solarGeneration": solar,
            "windGeneration": wind,
            "totalConsumption": 1800 + rng.random() * 800,
            "batteryLevel": 65 + rng.random() * 30,
            "efficiency": 85 + rng.random() * 10,
            "systemHealth": 90 + rng.random() * 8,
            "temperature": 24 + rng.random() * 6,
        }

    def _step(self):
        rng = self.rng
        s = self._state
        mult = self._solar_multiplier()
        s["solarGeneration"] = max(0.0, s["solarGeneration"] + (rng.random() - 0.5) * 150 * mult)
        s["windGeneration"] = max(200.0, s["windGeneration"] + (rng.random() - 0.5) * 100)
        s["totalConsumption"] = max(1000.0, s["totalConsumption"] + (rng.random() - 0.5) * 200)
        s["batteryLevel"] = _clamp(s["batteryLevel"] + (rng.random() - 0.5) * 3, 10, 95)
        s["efficiency"] = _clamp(s["efficiency"] + (rng.random() - 0.5) * 2, 75, 98)
        s["systemHealth"] = _clamp(s["systemHealth"] + (rng.random() - 0.5), 80, 100)
        s["temperature"] = _clamp(s["temperature"] + (rng.random() - 0.5) * 1.5, -10, 60)

    def get_current_readings(self):
        with self._lock:
            self._step()
            s = dict(self._state)
        total = s["solarGeneration"] + s["windGeneration"]
        s["totalGeneration"] = total
        s["surplus"] = total - s["totalConsumption"]
        return {k: round(v, 2) for k, v in s.items()}


class HttpMetricSource:
    """Pull a flat JSON object of readings from an HTTP endpoint.

    Non-numeric values are dropped; a failed fetch yields no readings, which
    makes every rule inapplicable for that tick.
    """

    def __init__(self, url, timeout=10, max_retries=1, client=None):
        self.client = client or HTTPClient(url, timeout=timeout, max_retries=max_retries)

    def get_current_readings(self):
        try:
            data = self.client.get()
        except Exception as e:
            logger.warning(f"Metric fetch failed: {e}")
            return {}
        if not isinstance(data, dict):
            logger.warning(f"Unexpected metric payload type: {type(data).__name__}")
            return {}
        readings = {}
        for key, value in data.items():
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                continue
            readings[key] = float(value)
        return readings


def build_source(config: dict):
    """Create the metric source described by the ``metrics_source`` config section."""
    src = config.get("metrics_source", {})
    kind = src.get("type", "simulated")
    if kind == "simulated":
        return SimulatedMicrogridSource(seed=src.get("seed"))
    if kind == "http":
        if not src.get("url"):
            raise ValueError("metrics_source.url is required for type 'http'")
        return HttpMetricSource(src["url"], timeout=src.get("timeout", 10))
    if kind == "static":
        return StaticMetricSource(src.get("readings", {}))
    raise ValueError(f"Unknown metrics_source.type: {kind}")
