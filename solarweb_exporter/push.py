"""Push intake module.

This module handles:
- Accepting the inverter's Solar API v1 "current data" push over HTTP
- Decoding the payload into the normalised point shape
- Forwarding the points to the sink once the device has its response

The inverter expects a quick 200; sink failures are logged, never reported
back, since a retry would only duplicate the same instantaneous reading.

Payload format (simplified):
    {"Head": {"Timestamp": "2015-06-04T13:01:15+02:00",
              "Status": {"Code": 0, "Reason": "", "UserMessage": ""}},
     "Body": {"PAC": {"Unit": "W", "Values": {"1": 1234.5}},
              "DAY_ENERGY": {...}, "YEAR_ENERGY": {...}, "TOTAL_ENERGY": {...}}}
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional

from flask import Flask, Response, request

from solarweb_exporter.config import DEFAULT_MEASUREMENT, DEFAULT_PUSH_PATH
from solarweb_exporter.exceptions import SolarWebError
from solarweb_exporter.metrics import SolarWebMetrics
from solarweb_exporter.series_parser import NormalizedPoint

logger = logging.getLogger(__name__)

VALUE_KEY = "1"


class PushDecodeError(SolarWebError):
    """Exception raised when a pushed payload cannot be decoded."""
    pass


@dataclass
class PushStatus:
    code: int = 0
    reason: str = ""
    user_message: str = ""


@dataclass
class MetricValue:
    """One energy metric of the push body.

    Attributes:
        unit: Unit of the values (e.g. "W", "Wh")
        values: Values by device index; only "1" is used
    """
    unit: str = ""
    values: Dict[str, float] = field(default_factory=dict)

    @property
    def value(self) -> float:
        return self.values.get(VALUE_KEY, 0.0)


@dataclass
class PushPayload:
    """Decoded push payload."""
    timestamp: datetime
    status: PushStatus = field(default_factory=PushStatus)
    pac: MetricValue = field(default_factory=MetricValue)
    day: MetricValue = field(default_factory=MetricValue)
    year: MetricValue = field(default_factory=MetricValue)
    total: MetricValue = field(default_factory=MetricValue)

    def to_points(self) -> List[NormalizedPoint]:
        """Build the pac/day/year/total points, all at the payload timestamp."""
        return [
            NormalizedPoint(name=name, value=metric.value, unit=metric.unit, time=self.timestamp)
            for name, metric in (
                ("pac", self.pac),
                ("day", self.day),
                ("year", self.year),
                ("total", self.total),
            )
        ]


def _get(obj: dict, key: str, default=None):
    """Case-insensitive dict lookup."""
    if key in obj:
        return obj[key]
    lowered = key.lower()
    for k, v in obj.items():
        if isinstance(k, str) and k.lower() == lowered:
            return v
    return default


def _as_object(value, what: str) -> dict:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise PushDecodeError(f"{what} must be an object, got {type(value).__name__}")
    return value


def _parse_timestamp(value) -> datetime:
    if not isinstance(value, str) or not value:
        raise PushDecodeError(f"Head.Timestamp missing or not a string: {value!r}")
    text = value[:-1] + "+00:00" if value.endswith("Z") else value
    try:
        ts = datetime.fromisoformat(text)
    except ValueError as e:
        raise PushDecodeError(f"Invalid Head.Timestamp {value!r}: {e}") from e
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def _parse_metric(body: dict, key: str) -> MetricValue:
    raw = _as_object(_get(body, key), f"Body.{key}")
    unit = _get(raw, "Unit", "") or ""
    if not isinstance(unit, str):
        raise PushDecodeError(f"Body.{key}.Unit must be a string: {unit!r}")

    values = {}
    for index, value in _as_object(_get(raw, "Values"), f"Body.{key}.Values").items():
        if value is None:
            continue
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise PushDecodeError(f"Body.{key}.Values[{index!r}] must be a number: {value!r}")
        values[str(index)] = float(value)
    return MetricValue(unit=unit, values=values)


def decode_push_payload(body: bytes) -> PushPayload:
    """Decode a pushed Solar API v1 payload.

    Missing metrics (or a missing "1" value) decode to 0.0 for that metric
    only; the other metrics are unaffected.

    Args:
        body: Raw request body

    Returns:
        Decoded PushPayload

    Raises:
        PushDecodeError: On malformed JSON, wrong types or a missing timestamp
    """
    try:
        data = json.loads(body)
    except (ValueError, TypeError, RecursionError) as e:
        raise PushDecodeError(f"Invalid JSON: {e}") from e

    data = _as_object(data, "payload")
    head = _as_object(_get(data, "Head"), "Head")
    payload_body = _as_object(_get(data, "Body"), "Body")

    raw_status = _as_object(_get(head, "Status"), "Head.Status")
    try:
        status = PushStatus(
            code=int(_get(raw_status, "Code", 0) or 0),
            reason=str(_get(raw_status, "Reason", "") or ""),
            user_message=str(_get(raw_status, "UserMessage", "") or ""),
        )
    except (TypeError, ValueError) as e:
        raise PushDecodeError(f"Invalid Head.Status: {e}") from e

    return PushPayload(
        timestamp=_parse_timestamp(_get(head, "Timestamp")),
        status=status,
        pac=_parse_metric(payload_body, "PAC"),
        day=_parse_metric(payload_body, "DAY_ENERGY"),
        year=_parse_metric(payload_body, "YEAR_ENERGY"),
        total=_parse_metric(payload_body, "TOTAL_ENERGY"),
    )


def create_app(
    sink,
    path: str = DEFAULT_PUSH_PATH,
    measurement: str = DEFAULT_MEASUREMENT,
    metrics: Optional[SolarWebMetrics] = None,
    logger: Optional[logging.Logger] = None,
) -> Flask:
    """Create the push intake application.

    Args:
        sink: Object with put(measurement, *points)
        path: URL path the inverter posts to
        measurement: Measurement the points are written under
        metrics: Optional metrics to update
        logger: Logger to use instead of the module logger

    Returns:
        Flask application
    """
    log = logger or logging.getLogger(__name__)
    app = Flask(__name__)

    def forward(points: List[NormalizedPoint]) -> None:
        try:
            sink.put(measurement, *points)
        except Exception as e:
            log.error(f"Failed to write pushed batch to sink: {e}")
            if metrics:
                metrics.record_sink_failure("push")

    @app.route(path, methods=["POST"])
    def accept_current():
        raw = request.get_data()
        log.info(f"{request.method} {request.url} from {request.remote_addr}")
        log.debug(f"Headers: {dict(request.headers)}")

        try:
            payload = decode_push_payload(raw)
        except PushDecodeError as e:
            log.error(f"Cannot decode pushed payload: {e}; body={raw[:512]!r}")
            if metrics:
                metrics.record_push_request(400)
            return Response(str(e), status=400, mimetype="text/plain")

        log.debug(f"Decoded payload: {payload}")
        if payload.status.code != 0:
            log.warning(f"Device reports status {payload.status.code}: {payload.status.reason}")
        if metrics:
            metrics.record_push_request(200)

        points = payload.to_points()
        response = Response(status=200)
        # Runs after the response has been sent to the device
        response.call_on_close(lambda: forward(points))
        return response

    return app
