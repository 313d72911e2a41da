import io
import json
import threading

import pytest
from requests.adapters import BaseAdapter, HTTPAdapter
from urllib3.response import HTTPResponse

from solarweb_exporter.config import SessionConfig
from solarweb_exporter.scraper import SolarWebScraper

BASE_URL = "https://portal.test"
SYSTEM_ID = "42"
LOGON_URL = f"{BASE_URL}/Account/GuestLogOn?pvSystemId={SYSTEM_ID}"
DATA_URL_PREFIX = f"{BASE_URL}/NewCharts/GetDetailData/{SYSTEM_ID}/00000000-0000-0000-0000-000000000000/Day/"


class FakePortal(BaseAdapter):
    """Transport adapter answering requests from a table of canned responses.

    Responses registered for a URL are served in order; the last one is
    repeated. An exception instance as body is raised instead.
    """

    def __init__(self):
        super().__init__()
        self.routes = {}
        self.requests = []
        self._lock = threading.Lock()
        self._builder = HTTPAdapter()

    def add(self, url, status=200, body=b"", headers=None):
        self.routes.setdefault(url, []).append((status, body, headers or {}))

    def calls(self, url):
        return sum(1 for _, u, _ in self.requests if u == url)

    def send(self, request, stream=False, timeout=None, verify=True, cert=None, proxies=None):
        with self._lock:
            self.requests.append((request.method, request.url, timeout))
            queue = self.routes.get(request.url)
            if not queue:
                status, body, headers = 404, b"not found", {}
            elif len(queue) > 1:
                status, body, headers = queue.pop(0)
            else:
                status, body, headers = queue[0]

        if isinstance(body, Exception):
            raise body
        if isinstance(body, str):
            body = body.encode("utf-8")

        raw = HTTPResponse(
            body=io.BytesIO(body),
            headers={"Content-Length": str(len(body)), **headers},
            status=status,
            preload_content=False,
            decode_content=False,
        )
        return self._builder.build_response(request, raw)

    def close(self):
        self._builder.close()


class RecordingSink:
    """Sink stub recording every put() call."""

    def __init__(self, fail=False):
        self.fail = fail
        self.calls = []

    def put(self, measurement, *points):
        self.calls.append((measurement, list(points)))
        if self.fail:
            raise ConnectionError("sink unavailable")
        return len(points)


def chart_json(series=None, unit="W"):
    """Build a chart response body."""
    if series is None:
        series = {"Energy": [[1700000000000, 10.0], [1700000300000, 12.5]]}
    return json.dumps({
        "yAxis": [{"title": {"text": unit}}],
        "energy": "1.23 kWh",
        "unit": unit,
        "series": [{"name": name, "yAxis": 0, "data": data} for name, data in series.items()],
    })


@pytest.fixture
def portal():
    return FakePortal()


@pytest.fixture
def session_config(tmp_path):
    return SessionConfig(
        system_id=SYSTEM_ID,
        base_url=BASE_URL,
        cookie_jar_path=str(tmp_path / "fronius.cookies"),
    )


@pytest.fixture
def scraper(session_config, portal):
    s = SolarWebScraper(session_config)
    s.session_manager.session().mount(BASE_URL, portal)
    yield s
    s.close()


@pytest.fixture
def sink():
    return RecordingSink()
