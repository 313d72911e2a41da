"""Configuration module.

This module handles:
- Reading settings from environment variables (after .env is loaded)
- Grouping them into the session, InfluxDB and intake configs passed to components
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Mapping, Optional

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://www.solarweb.com"
DEFAULT_LOGON_URL = "{{BASE}}/Account/GuestLogOn?pvSystemId={{systemID}}"
DEFAULT_DATA_URL = (
    "{{BASE}}/NewCharts/GetDetailData/{{systemID}}"
    "/00000000-0000-0000-0000-000000000000/Day/{{2006/1/2}}"
)
DEFAULT_LOGON_PATH = "/Account/LogOn"
DEFAULT_PUSH_PATH = "/solarapi/v1/current/"
DEFAULT_MEASUREMENT = "fronius energy"


@dataclass
class SessionConfig:
    """Portal session settings.

    Attributes:
        system_id: PV system identifier (also the cookie store passphrase)
        base_url: Portal base URL
        logon_url: Logon URL template
        data_url: Data URL template, carrying a {{date format}} token
        cookie_jar_path: Path of the persisted cookie store
        logon_path: Redirect path prefix that means "logon required"
        encrypt_cookies: Encrypt the cookie store at rest
        timeout: Per-request timeout in seconds
    """
    system_id: str = ""
    base_url: str = DEFAULT_BASE_URL
    logon_url: str = DEFAULT_LOGON_URL
    data_url: str = DEFAULT_DATA_URL
    cookie_jar_path: str = "fronius.cookies"
    logon_path: str = DEFAULT_LOGON_PATH
    encrypt_cookies: bool = True
    timeout: float = 30.0


@dataclass
class InfluxConfig:
    """InfluxDB sink settings.

    For InfluxDB 1.8 the database/retention policy pair replaces the bucket
    and the user/password pair replaces the token.
    """
    url: str = "http://localhost:8086"
    token: str = ""
    org: str = "-"
    bucket: str = "solarweb"
    database: str = ""
    retention_policy: str = ""
    username: str = ""
    password: str = ""
    measurement: str = DEFAULT_MEASUREMENT

    @property
    def write_bucket(self) -> str:
        """Bucket to write to, "database/retention_policy" in 1.x mode."""
        if not self.database:
            return self.bucket
        if self.retention_policy:
            return f"{self.database}/{self.retention_policy}"
        return self.database

    @property
    def auth_token(self) -> str:
        if self.token:
            return self.token
        if self.username:
            return f"{self.username}:{self.password}"
        return ""


@dataclass
class Config:
    """Top level configuration handed to the CLI commands."""
    session: SessionConfig = field(default_factory=SessionConfig)
    influxdb: InfluxConfig = field(default_factory=InfluxConfig)
    listen_host: str = "0.0.0.0"
    listen_port: int = 8080
    push_path: str = DEFAULT_PUSH_PATH
    exporter_port: int = 9120
    scrape_hour: int = 4


def _get_int(env: Mapping[str, str], name: str, default: int) -> int:
    try:
        return int(env.get(name, str(default)))
    except ValueError:
        logger.warning(f"Invalid {name}, using default: {default}")
        return default


def _get_bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    value = env.get(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def load_config(environ: Optional[Mapping[str, str]] = None) -> Config:
    """Load configuration from environment variables.

    Portal:
        SOLARWEB_SYSTEM_ID, SOLARWEB_BASE_URL, SOLARWEB_LOGON_URL,
        SOLARWEB_DATA_URL, SOLARWEB_COOKIEJAR, SOLARWEB_LOGON_PATH,
        SOLARWEB_ENCRYPT_COOKIES, SOLARWEB_TIMEOUT

    InfluxDB:
        INFLUXDB_URL, INFLUXDB_TOKEN, INFLUXDB_ORG, INFLUXDB_BUCKET,
        INFLUXDB_DATABASE, INFLUXDB_RETENTION_POLICY, INFLUXDB_MEASUREMENT,
        INFLUX_USER, INFLUX_PASSW

    Intake / service:
        PUSH_LISTEN_HOST, PUSH_LISTEN_PORT, PUSH_PATH, EXPORTER_PORT, SCRAPE_HOUR

    Args:
        environ: Mapping to read from (defaults to os.environ)

    Returns:
        Populated Config
    """
    env = os.environ if environ is None else environ

    try:
        timeout = float(env.get("SOLARWEB_TIMEOUT", "30"))
    except ValueError:
        logger.warning("Invalid SOLARWEB_TIMEOUT, using default: 30")
        timeout = 30.0

    session = SessionConfig(
        system_id=env.get("SOLARWEB_SYSTEM_ID", ""),
        base_url=env.get("SOLARWEB_BASE_URL", DEFAULT_BASE_URL),
        logon_url=env.get("SOLARWEB_LOGON_URL", DEFAULT_LOGON_URL),
        data_url=env.get("SOLARWEB_DATA_URL", DEFAULT_DATA_URL),
        cookie_jar_path=env.get("SOLARWEB_COOKIEJAR", "fronius.cookies"),
        logon_path=env.get("SOLARWEB_LOGON_PATH", DEFAULT_LOGON_PATH),
        encrypt_cookies=_get_bool(env, "SOLARWEB_ENCRYPT_COOKIES", True),
        timeout=timeout,
    )

    influxdb = InfluxConfig(
        url=env.get("INFLUXDB_URL", "http://localhost:8086"),
        token=env.get("INFLUXDB_TOKEN", ""),
        org=env.get("INFLUXDB_ORG", "-"),
        bucket=env.get("INFLUXDB_BUCKET", "solarweb"),
        database=env.get("INFLUXDB_DATABASE", ""),
        retention_policy=env.get("INFLUXDB_RETENTION_POLICY", ""),
        username=env.get("INFLUX_USER", ""),
        password=env.get("INFLUX_PASSW", ""),
        measurement=env.get("INFLUXDB_MEASUREMENT", DEFAULT_MEASUREMENT),
    )

    return Config(
        session=session,
        influxdb=influxdb,
        listen_host=env.get("PUSH_LISTEN_HOST", "0.0.0.0"),
        listen_port=_get_int(env, "PUSH_LISTEN_PORT", 8080),
        push_path=env.get("PUSH_PATH", DEFAULT_PUSH_PATH),
        exporter_port=_get_int(env, "EXPORTER_PORT", 9120),
        scrape_hour=_get_int(env, "SCRAPE_HOUR", 4),
    )
