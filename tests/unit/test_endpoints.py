import json

import pytest
from pydantic import ValidationError

from uptime_archive.core.exceptions import ConfigurationError
from uptime_archive.services.endpoints import CheckType, EndpointSpec, load_endpoints


def _write(tmp_path, document):
    path = tmp_path / "systems.json"
    path.write_text(json.dumps(document))
    return path


def test_defaults():
    spec = EndpointSpec(name="api", url="https://api.example.com/health")
    assert spec.type is CheckType.HTTP
    assert spec.method == "GET"
    assert spec.timeout_ms == 10_000
    assert spec.timeout_seconds == 10
    assert spec.expected_codes == (200, 301, 302)
    assert spec.max_response_time_ms == 30_000


def test_camel_case_keys(tmp_path):
    path = _write(
        tmp_path,
        {
            "systems": [
                {
                    "system": "api",
                    "url": "https://api.example.com",
                    "method": "head",
                    "timeout": 5000,
                    "expectedCodes": [204],
                    "maxResponseTime": 800,
                },
                {"name": "db", "url": "tcp://db.example.com:5432", "type": "tcp"},
                {"name": "feed", "url": "wss://feed.example.com/stream", "type": "ws"},
            ]
        },
    )
    api, db, feed = load_endpoints(path)
    assert api.name == "api"
    assert api.method == "HEAD"
    assert api.timeout_ms == 5000
    assert api.expected_codes == (204,)
    assert api.max_response_time_ms == 800
    assert db.type is CheckType.TCP
    assert feed.type is CheckType.WS


@pytest.mark.parametrize(
    "fields",
    [
        {"type": "http", "url": "tcp://host:80"},
        {"type": "tcp", "url": "tcp://host"},
        {"type": "ws", "url": "https://host"},
        {"type": "http", "url": "https:///path"},
    ],
)
def test_address_must_fit_check_type(fields):
    with pytest.raises(ValidationError):
        EndpointSpec(name="svc", **fields)


def test_duplicate_names_rejected(tmp_path):
    path = _write(
        tmp_path,
        {"systems": [{"name": "api", "url": "https://a.example.com"}, {"name": "api", "url": "https://b.example.com"}]},
    )
    with pytest.raises(ConfigurationError, match="duplicate"):
        load_endpoints(path)


def test_empty_config_rejected(tmp_path):
    with pytest.raises(ConfigurationError):
        load_endpoints(_write(tmp_path, {"systems": []}))


def test_missing_file(tmp_path):
    with pytest.raises(ConfigurationError, match="not found"):
        load_endpoints(tmp_path / "absent.json")


def test_malformed_json(tmp_path):
    path = tmp_path / "systems.json"
    path.write_text("{not json")
    with pytest.raises(ConfigurationError):
        load_endpoints(path)
