import threading
from datetime import date

from solarweb_exporter import urls
from solarweb_exporter.config import DEFAULT_DATA_URL, DEFAULT_LOGON_URL
from solarweb_exporter.urls import DEFAULT_DATE_TOKEN, URLTemplates, find_date_token, format_day, resolve


def test_resolve_finds_go_reference_token():
    """Test base/system substitution and token extraction."""
    url, token, found = resolve(DEFAULT_DATA_URL, "https://portal.test", "42")

    assert url == (
        "https://portal.test/NewCharts/GetDetailData/42"
        "/00000000-0000-0000-0000-000000000000/Day/{{2006/1/2}}"
    )
    assert token == "2006/1/2"
    assert found is True


def test_missing_token_falls_back_to_default():
    """Test a data URL without a date span."""
    assert find_date_token("https://portal.test/Day/today") == (DEFAULT_DATE_TOKEN, False)


def test_only_first_span_is_considered():
    """Test that a later span with a year token is ignored."""
    token, found = find_date_token("https://x/{{nothing}}/{{2006-01-02}}")
    assert found is False
    assert token == DEFAULT_DATE_TOKEN


def test_pattern_style_token():
    _, token, found = resolve("{{BASE}}/day/{{YYYY-MM-DD}}", "https://x", "1")
    assert (token, found) == ("YYYY-MM-DD", True)


def test_format_day():
    """Test both layout styles."""
    day = date(2024, 3, 7)
    assert format_day(day, "2006/1/2") == "2024/3/7"
    assert format_day(day, "2006-01-02") == "2024-03-07"
    assert format_day(day, "02.01.06") == "07.03.24"
    assert format_day(day, "YYYY-MM-DD") == "2024-03-07"
    assert format_day(day, "D.M.YYYY") == "7.3.2024"
    assert format_day(date(2024, 12, 25), "Jan 2, 2006") == "Dec 25, 2024"


def test_data_url_for_day():
    templates = URLTemplates("https://portal.test", DEFAULT_LOGON_URL, DEFAULT_DATA_URL, "42")

    assert templates.logon_url == "https://portal.test/Account/GuestLogOn?pvSystemId=42"
    assert templates.data_url_for(date(2024, 3, 7)).endswith("/Day/2024/3/7")


def test_concurrent_resolve_runs_once(monkeypatch):
    """Test that concurrent callers share a single resolution."""
    calls = []
    original = urls.resolve

    def counting_resolve(*args):
        calls.append(args)
        return original(*args)

    monkeypatch.setattr(urls, "resolve", counting_resolve)
    templates = URLTemplates("https://portal.test", DEFAULT_LOGON_URL, DEFAULT_DATA_URL, "42")

    barrier = threading.Barrier(8)
    results = []

    def worker():
        barrier.wait()
        results.append((templates.data_url, templates.date_token))

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(calls) == 1
    assert len(set(results)) == 1


def test_format_day_leaves_time_fields():
    """Test that digits of a longer number are not taken as month or day."""
    assert format_day(date(2024, 3, 7), "2006-01-02 15:04") == "2024-03-07 15:04"
    assert format_day(date(2024, 3, 7), "2006/1/2") == "2024/3/7"
