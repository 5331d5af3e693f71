"""Tests for configuration loading."""
import pytest
import yaml
from pathlib import Path
from unittest.mock import patch

from config import load_config, _deep_merge


@pytest.fixture(autouse=True)
def clean_env():
    with patch.dict("os.environ", {}, clear=True):
        yield


def test_defaults():
    config = load_config()
    assert config["evaluator"]["interval_seconds"] == 30
    assert config["escalation"]["tick_seconds"] == 30
    assert config["metrics_source"]["type"] == "simulated"
    assert config["notifications"]["dashboard"]["enabled"] is True
    assert Path(config["rules"]["path"]).exists()


def test_override_file(tmp_path):
    path = tmp_path / "override.yaml"
    path.write_text(yaml.safe_dump({"evaluator": {"interval_seconds": 5},
                                    "notifications": {"sms": {"enabled": True}}}))
    config = load_config(str(path))
    assert config["evaluator"]["interval_seconds"] == 5
    assert config["notifications"]["sms"]["enabled"] is True
    # untouched siblings survive the merge
    assert config["notifications"]["sms"]["sender_id"] == "GridWatch"


def test_env_overrides():
    with patch.dict("os.environ", {"GRIDWATCH_ESCALATION_INTERVAL": "10",
                                   "GRIDWATCH_DB_PATH": "/tmp/gw.db"}):
        config = load_config()
    assert config["escalation"]["tick_seconds"] == 10
    assert config["database"]["path"] == "/tmp/gw.db"


def test_invalid_interval_rejected(tmp_path):
    path = tmp_path / "bad.yaml"
    path.write_text(yaml.safe_dump({"evaluator": {"interval_seconds": 0}}))
    with pytest.raises(ValueError, match="interval_seconds"):
        load_config(str(path))


def test_unknown_source_rejected(tmp_path):
    path = tmp_path / "bad.yaml"
    path.write_text(yaml.safe_dump({"metrics_source": {"type": "carrier-pigeon"}}))
    with pytest.raises(ValueError, match="metrics_source"):
        load_config(str(path))


def test_deep_merge():
    merged = _deep_merge({"a": {"b": 1, "c": 2}, "d": 1}, {"a": {"b": 9}, "e": 5})
    assert merged == {"a": {"b": 9, "c": 2}, "d": 1, "e": 5}
