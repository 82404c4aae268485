"""Tests for configuration loading."""

import json
from pathlib import Path

import pytest
from pydantic import ValidationError

from llmscrawl.config import load_crawl_config
from llmscrawl.exceptions import ConfigError
from llmscrawl.schemas.config import CrawlConfig, ScheduleConfig, WorkerTypeConfig
from llmscrawl.schemas.task import CleanupDetails, dump_details, parse_details

EXAMPLE_CONFIG = Path(__file__).resolve().parent.parent / "crawl.example.json"


def write_config(tmp_path, data):
    path = tmp_path / "crawl.json"
    path.write_text(json.dumps(data) if not isinstance(data, str) else data)
    return str(path)


def test_example_config_loads():
    config = load_crawl_config(str(EXAMPLE_CONFIG))

    assert config.schedule.type == "weekly"
    assert config.domains[0].domain == "broadbandnow.com"
    assert config.domains[0].sitemap("bbn_state").title == "State Coverage Pages"
    assert config.worker_type("default").instances == 5
    assert config.storage.retain_versions == 3


def test_defaults(tmp_path):
    config = load_crawl_config(write_config(tmp_path, {"domains": [{"domain": "example.com"}]}))

    assert config.domains[0].segment_size == 500
    assert config.domains[0].llms_path == "llms"
    assert config.storage.paths.current == "data/current"
    assert config.workers == []


def test_missing_file(tmp_path):
    with pytest.raises(ConfigError):
        load_crawl_config(str(tmp_path / "absent.json"))


def test_invalid_json(tmp_path):
    with pytest.raises(ConfigError):
        load_crawl_config(write_config(tmp_path, "{not json"))


def test_invalid_pattern(tmp_path):
    data = {"workers": [{"name": "default", "url_patterns": ["("]}]}

    with pytest.raises(ConfigError):
        load_crawl_config(write_config(tmp_path, data))


def test_duplicate_worker_types():
    with pytest.raises(ValidationError):
        CrawlConfig(workers=[WorkerTypeConfig(name="default"), WorkerTypeConfig(name="default")])


def test_time_of_day_format():
    with pytest.raises(ValidationError):
        ScheduleConfig(time_of_day="25:00")


def test_worker_type_matches():
    worker = WorkerTypeConfig(name="state", url_patterns=[r"/state/", r"^https://example\.com/[a-z]+$"])

    assert worker.matches("https://example.com/state/texas")
    assert worker.matches("https://example.com/about")
    assert not worker.matches("https://example.com/blog/2026")


def test_task_details_round_trip_through_json_column():
    details = parse_details("cleanup", {"name": "Cleanup", "order": 6, "next_run": "2026-10-19T00:00:00"})

    assert isinstance(details, CleanupDetails)
    assert details.next_run.day == 19
    assert dump_details(details)["next_run"] == "2026-10-19T00:00:00"
    assert "type" not in dump_details(details)


def test_unknown_task_type_details():
    with pytest.raises(ValidationError):
        parse_details("mystery", {"order": 1})
