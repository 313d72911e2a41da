import json
from datetime import datetime, timedelta, timezone

import pytest
from prometheus_client import CollectorRegistry

from solarweb_exporter.config import DEFAULT_MEASUREMENT, DEFAULT_PUSH_PATH
from solarweb_exporter.metrics import SolarWebMetrics
from solarweb_exporter.push import PushDecodeError, create_app, decode_push_payload

from conftest import RecordingSink

PAYLOAD = {
    "Head": {
        "RequestArguments": {},
        "Status": {"Code": 0, "Reason": "", "UserMessage": ""},
        "Timestamp": "2024-03-07T12:00:00+01:00",
    },
    "Body": {
        "PAC": {"Unit": "W", "Values": {"1": 1234.5}},
        "DAY_ENERGY": {"Unit": "Wh", "Values": {"1": 5600}},
        "YEAR_ENERGY": {"Unit": "Wh", "Values": {"1": 120000.0}},
        "TOTAL_ENERGY": {"Unit": "Wh", "Values": {"1": 9870000.0}},
    },
}

PAYLOAD_TIME = datetime(2024, 3, 7, 12, 0, tzinfo=timezone(timedelta(hours=1)))


@pytest.fixture
def client(sink):
    app = create_app(sink)
    app.config["TESTING"] = True
    return app.test_client()


def post(client, body):
    if not isinstance(body, (str, bytes)):
        body = json.dumps(body)
    return client.post(DEFAULT_PUSH_PATH, data=body, content_type="application/json", buffered=True)


def test_valid_push_is_written(client, sink):
    """Test that a push becomes four points at the payload timestamp."""
    response = post(client, PAYLOAD)

    assert response.status_code == 200
    assert len(sink.calls) == 1
    measurement, points = sink.calls[0]
    assert measurement == DEFAULT_MEASUREMENT
    assert [p.name for p in points] == ["pac", "day", "year", "total"]
    assert points[0].value == 1234.5
    assert points[0].unit == "W"
    assert points[1].value == 5600.0
    assert all(p.time == PAYLOAD_TIME for p in points)


def test_missing_value_defaults_to_zero(client, sink):
    payload = json.loads(json.dumps(PAYLOAD))
    payload["Body"]["PAC"]["Values"] = {}

    assert post(client, payload).status_code == 200

    points = {p.name: p for p in sink.calls[0][1]}
    assert points["pac"].value == 0.0
    assert points["day"].value == 5600.0
    assert points["total"].value == 9870000.0


def test_missing_metric_defaults_to_zero():
    payload = json.loads(json.dumps(PAYLOAD))
    del payload["Body"]["YEAR_ENERGY"]

    decoded = decode_push_payload(json.dumps(payload).encode())

    assert decoded.year.value == 0.0
    assert decoded.pac.value == 1234.5


def test_lowercase_keys():
    payload = {
        "head": {"timestamp": "2024-03-07T11:00:00Z"},
        "body": {"pac": {"unit": "W", "values": {"1": 10}}},
    }

    decoded = decode_push_payload(json.dumps(payload).encode())

    assert decoded.pac.value == 10.0
    assert decoded.timestamp == PAYLOAD_TIME


@pytest.mark.parametrize("body", [
    "{not json",
    "[]",
    {"Head": {"Status": {"Code": 0}}, "Body": {}},
    {"Head": {"Timestamp": "yesterday"}, "Body": {}},
    {"Head": {"Timestamp": "2024-03-07T12:00:00Z"}, "Body": {"PAC": {"Values": {"1": "many"}}}},
    {"Head": {"Timestamp": "2024-03-07T12:00:00Z"}, "Body": {"PAC": []}},
])
def test_malformed_push_is_rejected(client, sink, body):
    """Test that undecodable pushes get a 400 and reach no sink."""
    response = post(client, body)

    assert response.status_code == 400
    assert response.mimetype == "text/plain"
    assert response.get_data(as_text=True)
    assert sink.calls == []


def test_decode_error_type():
    with pytest.raises(PushDecodeError):
        decode_push_payload(b"")


def test_sink_failure_still_acknowledged():
    """Test that a failing sink is not reported back to the device."""
    registry = CollectorRegistry()
    metrics = SolarWebMetrics(registry=registry)
    sink = RecordingSink(fail=True)
    client = create_app(sink, metrics=metrics).test_client()

    response = post(client, PAYLOAD)

    assert response.status_code == 200
    assert len(sink.calls) == 1
    assert registry.get_sample_value("solarweb_sink_write_failures_total", {"source": "push"}) == 1.0
    assert registry.get_sample_value("solarweb_push_requests_total", {"status": "200"}) == 1.0


def test_custom_path_and_measurement():
    sink = RecordingSink()
    client = create_app(sink, path="/push", measurement="pv").test_client()

    response = client.post("/push", data=json.dumps(PAYLOAD), buffered=True)

    assert response.status_code == 200
    assert sink.calls[0][0] == "pv"
    assert client.get("/push").status_code == 405


def test_deeply_nested_push_is_rejected(client, sink):
    """Test that nesting too deep for the JSON decoder gets a 400."""
    response = post(client, "[" * 200000)

    assert response.status_code == 400
    assert sink.calls == []
    with pytest.raises(PushDecodeError):
        decode_push_payload(b"[" * 200000)
