import json
from datetime import datetime, timezone

import pytest

from solarweb_exporter.series_parser import (
    NormalizedPoint,
    SeriesParseError,
    decode_series,
    epoch_millis_to_datetime,
)

from conftest import chart_json


def test_epoch_millis_keeps_remainder():
    """Test millisecond conversion."""
    dt = epoch_millis_to_datetime(1700000000123)

    assert int(dt.timestamp()) == 1700000000
    assert dt.microsecond == 123000
    assert dt.tzinfo == timezone.utc


def test_decode_chart():
    """Test decoding of a two-channel chart."""
    body = chart_json({
        "Energy": [[1700000000000, 10.0], [1700000300000, 12.5]],
        "Consumption": [[1700000000000, 3]],
    }, unit="Wh")

    series = decode_series(body.encode("utf-8"))

    assert list(series.channels) == ["Energy", "Consumption"]
    assert series.unit == "Wh"
    assert series.point_count() == 3
    first = series.channels["Energy"][0]
    assert first.time == datetime(2023, 11, 14, 22, 13, 20, tzinfo=timezone.utc)
    assert first.energy == 10.0
    assert series.channels["Consumption"][0].energy == 3.0


def test_null_energy_decodes_to_zero():
    series = decode_series(chart_json({"Energy": [[1700000000000, None]]}))
    assert series.channels["Energy"][0].energy == 0.0


def test_empty_series_list():
    series = decode_series(json.dumps({"series": [], "unit": "W"}))
    assert series.channels == {}
    assert series.point_count() == 0


def test_to_points():
    series = decode_series(chart_json({"Energy": [[1700000000000, 10.0]]}, unit="W"))

    assert series.to_points() == [
        NormalizedPoint(
            name="Energy",
            value=10.0,
            unit="W",
            time=datetime(2023, 11, 14, 22, 13, 20, tzinfo=timezone.utc),
        )
    ]


@pytest.mark.parametrize("body", [
    "<html>Log on</html>",
    "[]",
    json.dumps({"unit": "W"}),
    json.dumps({"series": {}, "unit": "W"}),
    json.dumps({"series": [{"data": []}], "unit": "W"}),
    json.dumps({"series": [{"name": "Energy", "data": [[1700000000000]]}]}),
    json.dumps({"series": [{"name": "Energy", "data": [["now", 1.0]]}]}),
    json.dumps({"series": [{"name": "Energy", "data": [[1700000000000, "1.0"]]}]}),
    json.dumps({"series": [{"name": "Energy", "data": [[1700000000000, 1.0]]}], "unit": 5}),
])
def test_malformed_chart_is_rejected(body):
    """Test that nothing partial is returned for malformed input."""
    with pytest.raises(SeriesParseError):
        decode_series(body)


def test_deeply_nested_chart_is_rejected():
    """Test that nesting too deep for the JSON decoder is a parse error."""
    with pytest.raises(SeriesParseError):
        decode_series("[" * 200000)
