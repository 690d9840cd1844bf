import json
from pathlib import Path

import pytest
from pydantic import ValidationError

from feed_resolution.config.loader import (
    DEFAULT_COMMON_PATHS,
    Config,
    RelayEndpoint,
    load_config,
)

SHIPPED_CONFIG = Path(__file__).resolve().parent.parent / "config" / "config.yaml"


def test_defaults():
    config = Config()
    assert config.cache.success_ttl_seconds > config.cache.discovery_ttl_seconds > config.cache.failure_ttl_seconds
    assert config.discovery.common_paths == DEFAULT_COMMON_PATHS
    assert config.discovery.max_concurrency == 5
    assert [r.name for r in config.relays.endpoints][0] == "AllOrigins"


def test_shipped_config_loads():
    config = load_config(SHIPPED_CONFIG)
    assert len(config.relays.endpoints) == 4
    assert config.relays.endpoints[0].response_format == "json_contents"
    assert "/rss.xml" in config.discovery.common_paths
    assert config.duplicates.title_similarity_threshold == 0.9


def test_yaml_and_json_loading(tmp_path):
    yaml_path = tmp_path / "config.yaml"
    yaml_path.write_text("cache:\n  max_entries: 10\nretry_policy:\n  max_attempts: 1\n", encoding="utf-8")
    assert load_config(yaml_path).cache.max_entries == 10
    assert Config.from_yaml(yaml_path).retry_policy.max_attempts == 1

    json_path = tmp_path / "config.json"
    json_path.write_text(json.dumps({"discovery": {"common_paths": ["/only.xml"]}}), encoding="utf-8")
    assert load_config(json_path).discovery.common_paths == ["/only.xml"]


def test_missing_config_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "nope.yaml")


@pytest.mark.parametrize(
    "data",
    [
        {"duplicates": {"title_similarity_threshold": 1.5}},
        {"cache": {"success_ttl_seconds": 0}},
        {"discovery": {"max_concurrency": 0}},
        {"relays": {"endpoints": [{"name": "x", "url_template": "https://r/{url}", "response_format": "xml"}]}},
    ],
)
def test_invalid_values_are_rejected(data):
    with pytest.raises(ValidationError):
        Config.from_dict(data)


def test_relay_url_building():
    encoded = RelayEndpoint(name="a", url_template="https://relay.test/get?url={url}")
    assert encoded.build_url("https://example.com/rss?x=1") == (
        "https://relay.test/get?url=https%3A%2F%2Fexample.com%2Frss%3Fx%3D1"
    )
    raw = RelayEndpoint(name="b", url_template="https://relay.test/fetch/{url}", encode_url=False)
    assert raw.build_url("https://example.com/rss") == "https://relay.test/fetch/https://example.com/rss"
