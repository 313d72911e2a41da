"""Solar.Web portal fetch module.

This module handles:
- Fetching per-day chart data with the persisted portal session
- Logging on again (exactly once per fetch) when the portal asks for it
- Fetching many days concurrently, streaming results as they complete
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Iterable, Iterator, Optional

import requests

from solarweb_exporter.config import SessionConfig
from solarweb_exporter.dates import parse_days
from solarweb_exporter.exceptions import DownloadError, LogonRequiredError, SolarWebError
from solarweb_exporter.metrics import SolarWebMetrics
from solarweb_exporter.series_parser import Series, decode_series
from solarweb_exporter.session import SessionManager
from solarweb_exporter.urls import URLTemplates

# Configure module logger
logger = logging.getLogger(__name__)


class FetchState(Enum):
    """Outcome of a single portal GET."""
    SUCCESS = "success"
    LOGON_REQUIRED = "logon_required"
    FAILED = "failed"


@dataclass
class FetchResult:
    """A portal GET outcome with its response or transport error."""
    state: FetchState
    response: Optional[requests.Response] = None
    error: Optional[Exception] = None

    @property
    def status(self) -> int:
        return self.response.status_code if self.response is not None else 0

    def close(self) -> None:
        if self.response is not None:
            self.response.close()


class FirstError:
    """Keeps the first error reported by any of several concurrent tasks."""

    def __init__(self):
        self._lock = threading.Lock()
        self.error: Optional[Exception] = None

    def record(self, error: Exception) -> bool:
        """Store error if none was stored yet.

        Returns:
            True if this error became the first error
        """
        with self._lock:
            if self.error is None:
                self.error = error
                return True
            return False


class SolarWebScraper:
    """Fetches chart data for a PV system from Solar.Web.

    One session (and cookie store) is shared by every fetch, including
    concurrent ones started by fetch_days().

    Attributes:
        config: Portal session settings
        urls: Resolved logon/data URL templates
        session_manager: Owner of the HTTP session and cookie store
    """

    def __init__(
        self,
        config: SessionConfig,
        session_manager: Optional[SessionManager] = None,
        metrics: Optional[SolarWebMetrics] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config
        self._logger = logger or logging.getLogger(__name__)
        self.urls = URLTemplates(
            config.base_url,
            config.logon_url,
            config.data_url,
            config.system_id,
            logger=self._logger,
        )
        self.session_manager = session_manager or SessionManager(config, logger=self._logger)
        self.metrics = metrics

    def _get(self, url: str) -> FetchResult:
        """GET url and classify the response."""
        session = self.session_manager.session()
        self._logger.debug(f"GET {url}")
        try:
            response = session.get(url)
        except requests.RequestException as e:
            self._logger.error(f"GET {url} failed: {e}")
            return FetchResult(FetchState.FAILED, error=e)

        # The portal sometimes drops the session with a bare 302
        if session.is_logon_redirect(response) or response.status_code == 302:
            self._logger.info(f"GET {url}: logon required (HTTP {response.status_code})")
            return FetchResult(FetchState.LOGON_REQUIRED, response=response)

        if response.status_code > 299:
            self._logger.warning(
                f"GET {url}: HTTP {response.status_code} {response.reason}, headers={dict(response.headers)}"
            )
        else:
            self._logger.debug(f"GET {url}: HTTP {response.status_code}")
        return FetchResult(FetchState.SUCCESS, response=response)

    def logon(self) -> None:
        """Log on to the portal and persist the new session cookies.

        Raises:
            DownloadError: If the logon request fails
            LogonRequiredError: If the logon request itself ends on the logon page
            CookieStoreError: If the session cannot be saved
        """
        logon_url = self.urls.logon_url
        self._logger.info(f"Logging on to {self.config.base_url} for system {self.config.system_id}")

        result = self._get(logon_url)
        try:
            if result.state is FetchState.FAILED:
                raise DownloadError(f"Logon request failed: {result.error}") from result.error
            # Only a redirect to the logon page fails; other statuses are warned below
            if self.session_manager.session().is_logon_redirect(result.response):
                raise LogonRequiredError(logon_url, result.status)
            if result.status > 299:
                self._logger.warning(f"Logon returned HTTP {result.status}")
        finally:
            result.close()

        if self.metrics:
            self.metrics.record_logon()
        self.session_manager.save()

    def fetch_raw(self, data_url: str) -> bytes:
        """Fetch a data URL, logging on and retrying once if needed.

        Responses with status > 299 outside the logon flow are logged but
        their body is still returned; the decoder decides whether it is usable.

        Args:
            data_url: Fully resolved data URL

        Returns:
            Raw response body

        Raises:
            DownloadError: On transport errors (timeouts, connection failures)
            LogonRequiredError: If the portal still wants a logon after the retry
            CookieStoreError: If the refreshed session cannot be saved
        """
        result = self._get(data_url)
        try:
            if result.state is FetchState.LOGON_REQUIRED:
                result.close()
                self.logon()
                result = self._get(data_url)
                if result.state is FetchState.LOGON_REQUIRED:
                    raise LogonRequiredError(data_url, result.status)

            if result.state is FetchState.FAILED:
                raise DownloadError(f"GET {data_url} failed: {result.error}") from result.error

            return result.response.content
        finally:
            result.close()

    def fetch(self, data_url: str) -> Series:
        """Fetch and decode the chart data behind a data URL.

        Raises:
            SolarWebError: On any fetch or decode failure
        """
        return decode_series(self.fetch_raw(data_url))

    def fetch_day(self, day: date) -> Series:
        """Fetch the chart data of a single day."""
        series = self.fetch(self.urls.data_url_for(day))
        series.day = day
        return series

    def _fetch_day_task(self, day: date, first_error: FirstError) -> Optional[Series]:
        try:
            series = self.fetch_day(day)
        except SolarWebError as e:
            self._logger.error(f"Fetching {day.isoformat()} failed: {e}")
            first_error.record(e)
            if self.metrics:
                self.metrics.record_day_fetch(False)
            return None

        if self.metrics:
            self.metrics.record_day_fetch(True)
        return series

    def fetch_days(self, days: Iterable[str]) -> Iterator[Series]:
        """Fetch several days concurrently.

        One worker per day is started. Series are yielded in completion
        order, not day order. Once every fetch has finished, the first error
        any of them hit is raised; the successful days have all been yielded
        by then.

        Args:
            days: Day arguments (none = today, two = inclusive range)

        Yields:
            Series of each successfully fetched day

        Raises:
            SolarWebError: The first failure among the day fetches
        """
        dates = parse_days(days, logger=self._logger)
        if not dates:
            self._logger.warning("No valid days to fetch")
            return

        self.urls.resolve()
        first_error = FirstError()
        with ThreadPoolExecutor(max_workers=len(dates), thread_name_prefix="solarweb-day") as pool:
            futures = [pool.submit(self._fetch_day_task, day, first_error) for day in dates]
            for future in as_completed(futures):
                series = future.result()
                if series is not None:
                    yield series

        if first_error.error is not None:
            raise first_error.error

    def close(self) -> None:
        self.session_manager.close()
