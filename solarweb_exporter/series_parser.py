"""Solar.Web chart data parser module.

This module handles:
- Parsing the portal's per-day chart JSON (GetDetailData)
- Converting epoch-millisecond data points to timestamps
- Normalising channels into sink-bound points

Chart JSON format (simplified):
- unit: Unit of the energy values (e.g. "W", "kWh")
- energy: Human readable daily total (ignored)
- yAxis: Axis titles (ignored)
- series: List of {name, yAxis, data}, data being [[epochMillis, energy], ...]
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Dict, List, Optional, Union

from solarweb_exporter.exceptions import SolarWebError

logger = logging.getLogger(__name__)

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass
class DataPoint:
    """A single chart reading.

    Attributes:
        time: Timestamp of the reading (UTC, millisecond resolution)
        energy: Energy value in the chart's unit
    """
    time: datetime
    energy: float


@dataclass
class NormalizedPoint:
    """A point ready to be written to the time-series sink.

    Both the chart decoder and the push intake produce these.

    Attributes:
        name: Channel or metric name (e.g. "pac")
        value: Measured value
        unit: Unit of the value
        time: Timestamp of the reading
    """
    name: str
    value: float
    unit: str
    time: datetime


@dataclass
class Series:
    """Decoded chart data for one day.

    Attributes:
        channels: Channel name -> data points, in the order received
        unit: Unit reported by the chart
        day: Day the chart was requested for (set by the fetcher)
    """
    channels: Dict[str, List[DataPoint]] = field(default_factory=dict)
    unit: str = ""
    day: Optional[date] = None

    def point_count(self) -> int:
        return sum(len(points) for points in self.channels.values())

    def to_points(self) -> List[NormalizedPoint]:
        """Flatten all channels into sink-bound points."""
        return [
            NormalizedPoint(name=name, value=dp.energy, unit=self.unit, time=dp.time)
            for name, points in self.channels.items()
            for dp in points
        ]


class SeriesParseError(SolarWebError):
    """Exception raised for malformed chart data."""
    pass


def epoch_millis_to_datetime(millis: Union[int, float]) -> datetime:
    """Convert epoch milliseconds to an aware UTC datetime.

    The sub-second remainder is kept, so readings within the same second
    stay ordered.

    Example:
        >>> dt = epoch_millis_to_datetime(1700000000123)
        >>> int(dt.timestamp()), dt.microsecond // 1000
        (1700000000, 123)
    """
    seconds, remainder = divmod(int(millis), 1000)
    return EPOCH + timedelta(seconds=seconds, milliseconds=remainder)


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _parse_data_point(raw, name: str, index: int) -> DataPoint:
    if not isinstance(raw, list) or len(raw) != 2:
        raise SeriesParseError(f"Series {name!r}: data point {index} is not a [time, energy] pair: {raw!r}")

    millis, energy = raw
    if not _is_number(millis):
        raise SeriesParseError(f"Series {name!r}: data point {index} has invalid time {millis!r}")
    if energy is None:
        energy = 0.0
    elif not _is_number(energy):
        raise SeriesParseError(f"Series {name!r}: data point {index} has invalid energy {energy!r}")

    return DataPoint(time=epoch_millis_to_datetime(millis), energy=float(energy))


def decode_series(body: Union[bytes, str]) -> Series:
    """Parse chart JSON into a Series.

    Args:
        body: Raw response body

    Returns:
        Series with one entry per chart series

    Raises:
        SeriesParseError: If the body is not valid JSON or does not match the
            chart schema. Nothing is returned for partially valid input.
    """
    try:
        detail = json.loads(body)
    except (ValueError, TypeError, RecursionError) as e:
        raise SeriesParseError(f"Invalid chart JSON: {e}") from e

    if not isinstance(detail, dict):
        raise SeriesParseError(f"Chart JSON must be an object, got {type(detail).__name__}")

    raw_series = detail.get("series")
    if not isinstance(raw_series, list):
        raise SeriesParseError("Chart JSON has no 'series' list")

    unit = detail.get("unit") or ""
    if not isinstance(unit, str):
        raise SeriesParseError(f"Invalid unit: {unit!r}")

    series = Series(unit=unit)
    for s in raw_series:
        if not isinstance(s, dict):
            raise SeriesParseError(f"Series entry must be an object: {s!r}")
        name = s.get("name")
        data = s.get("data", [])
        if not isinstance(name, str):
            raise SeriesParseError(f"Series name must be a string: {name!r}")
        if not isinstance(data, list):
            raise SeriesParseError(f"Series {name!r}: data must be a list")

        series.channels[name] = [_parse_data_point(dp, name, i) for i, dp in enumerate(data)]

    logger.info(f"Decoded {series.point_count()} data points in {len(series.channels)} series")
    return series
