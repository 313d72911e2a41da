"""Portal URL template module.

This module handles:
- Expanding {{BASE}} and {{systemID}} placeholders in the logon/data URL templates
- Locating the date-format token embedded in the data URL (e.g. {{2006/1/2}})
- Rendering a calendar day in that format for each per-day request
"""

import logging
import re
import threading
from datetime import date
from typing import Optional, Tuple

# Configure module logger
logger = logging.getLogger(__name__)

BASE_PLACEHOLDER = "{{BASE}}"
SYSTEM_ID_PLACEHOLDER = "{{systemID}}"
DEFAULT_DATE_TOKEN = "YYYY-MM-DD"

_TOKEN_SPAN = re.compile(r"\{\{(.*?)\}\}")
_YEAR_TOKEN = re.compile(r"2006|YYYY")

# Longest alternatives first so "2006" wins over "2" and "01" over "1";
# bare "1" and "2" only count when not part of a longer number (e.g. "15:04")
_DATE_FIELD = re.compile(r"January|Jan|2006|YYYY|01|02|06|MM|DD|YY|(?<!\d)[12](?!\d)|M|D")

_MONTH_NAMES = (
    "January", "February", "March", "April", "May", "June", "July",
    "August", "September", "October", "November", "December",
)

_FIELD_RENDERERS = {
    # Go reference layout (Mon Jan 2 15:04:05 MST 2006)
    "2006": lambda d: f"{d.year:04d}",
    "06": lambda d: f"{d.year % 100:02d}",
    "01": lambda d: f"{d.month:02d}",
    "1": lambda d: str(d.month),
    "02": lambda d: f"{d.day:02d}",
    "2": lambda d: str(d.day),
    "Jan": lambda d: _MONTH_NAMES[d.month - 1][:3],
    "January": lambda d: _MONTH_NAMES[d.month - 1],
    # Pattern layout
    "YYYY": lambda d: f"{d.year:04d}",
    "YY": lambda d: f"{d.year % 100:02d}",
    "MM": lambda d: f"{d.month:02d}",
    "M": lambda d: str(d.month),
    "DD": lambda d: f"{d.day:02d}",
    "D": lambda d: str(d.day),
}


def substitute(template: str, base_url: str, system_id: str) -> str:
    """Replace the base URL and system ID placeholders in a template."""
    return template.replace(BASE_PLACEHOLDER, base_url).replace(SYSTEM_ID_PLACEHOLDER, system_id)


def find_date_token(url: str) -> Tuple[str, bool]:
    """Find the date-format token in a resolved URL.

    Only the first {{...}} span is considered.

    Args:
        url: URL with base/system placeholders already substituted

    Returns:
        Tuple of (token, found). When the first span holds no year token,
        returns (DEFAULT_DATE_TOKEN, False).
    """
    match = _TOKEN_SPAN.search(url)
    if match and _YEAR_TOKEN.search(match.group(1)):
        return match.group(1), True
    return DEFAULT_DATE_TOKEN, False


def resolve(template: str, base_url: str, system_id: str) -> Tuple[str, str, bool]:
    """Resolve a URL template.

    Args:
        template: URL template with {{BASE}}/{{systemID}} placeholders
        base_url: Portal base URL
        system_id: PV system identifier

    Returns:
        Tuple of (resolved_url, date_token, found)

    Example:
        >>> resolve("{{BASE}}/Day/{{2006/1/2}}", "https://x", "42")
        ('https://x/Day/{{2006/1/2}}', '2006/1/2', True)
    """
    resolved = substitute(template, base_url, system_id)
    token, found = find_date_token(resolved)
    return resolved, token, found


def format_day(day: date, token: str) -> str:
    """Render a day using a Go reference layout or a YYYY-MM-DD style pattern.

    Example:
        >>> format_day(date(2024, 3, 7), "2006/1/2")
        '2024/3/7'
        >>> format_day(date(2024, 3, 7), "YYYY-MM-DD")
        '2024-03-07'
    """
    return _DATE_FIELD.sub(lambda m: _FIELD_RENDERERS[m.group(0)](day), token)


class URLTemplates:
    """Lazily resolved logon and data URLs for one PV system.

    Resolution runs at most once per instance, even with concurrent callers;
    later calls observe the cached result.

    Attributes:
        base_url: Portal base URL
        logon_template: Logon URL template
        data_template: Data URL template
        system_id: PV system identifier
    """

    def __init__(
        self,
        base_url: str,
        logon_template: str,
        data_template: str,
        system_id: str,
        logger: Optional[logging.Logger] = None,
    ):
        self.base_url = base_url
        self.logon_template = logon_template
        self.data_template = data_template
        self.system_id = system_id
        self._logger = logger or logging.getLogger(__name__)
        self._lock = threading.Lock()
        self._resolved = False
        self._logon_url = ""
        self._data_url = ""
        self._date_token = DEFAULT_DATE_TOKEN

    def resolve(self) -> None:
        """Resolve both templates once."""
        if self._resolved:
            return
        with self._lock:
            if self._resolved:
                return
            self._logon_url = substitute(self.logon_template, self.base_url, self.system_id)
            self._data_url, self._date_token, found = resolve(
                self.data_template, self.base_url, self.system_id
            )
            if found:
                self._logger.debug(f"Reference date format in data URL: {self._date_token}")
            else:
                self._logger.warning(
                    f"Cannot find a reference date (e.g. {{{{2006-01-02}}}}) in {self._data_url}, "
                    f"using {DEFAULT_DATE_TOKEN}"
                )
            self._resolved = True

    @property
    def logon_url(self) -> str:
        self.resolve()
        return self._logon_url

    @property
    def data_url(self) -> str:
        self.resolve()
        return self._data_url

    @property
    def date_token(self) -> str:
        self.resolve()
        return self._date_token

    def data_url_for(self, day: date) -> str:
        """Return the data URL for a specific day."""
        placeholder = "{{" + self.date_token + "}}"
        return self.data_url.replace(placeholder, format_day(day, self.date_token), 1)
