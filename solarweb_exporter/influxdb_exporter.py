"""InfluxDB exporter module.

This module handles:
- Writing normalised points (chart history and push telemetry) to InfluxDB
- One batch per put() call, each point at its own timestamp
- InfluxDB 2.x buckets as well as 1.8 database/retention-policy targets
"""

import logging
from typing import List, Optional

from influxdb_client import InfluxDBClient, Point, WritePrecision
from influxdb_client.client.write_api import SYNCHRONOUS

from solarweb_exporter.config import InfluxConfig
from solarweb_exporter.series_parser import NormalizedPoint

# Configure module logger
logger = logging.getLogger(__name__)


class InfluxDBExporter:
    """InfluxDB sink for Solar.Web energy data.

    Each point is written as:
    - measurement: given per batch (e.g. "fronius energy")
    - tag name: channel or metric name
    - fields energy (value) and unit

    Attributes:
        url: InfluxDB server URL
        token: InfluxDB API token ("user:password" for 1.8)
        org: InfluxDB organization
        bucket: InfluxDB bucket name ("database/retention_policy" for 1.8)
    """

    def __init__(
        self,
        url: str = "http://localhost:8086",
        token: str = "",
        org: str = "-",
        bucket: str = "solarweb",
        logger: Optional[logging.Logger] = None,
    ):
        """Initialize the InfluxDB exporter.

        Args:
            url: InfluxDB server URL
            token: InfluxDB API token (required for writes)
            org: InfluxDB organization name
            bucket: InfluxDB bucket name
            logger: Logger to use instead of the module logger
        """
        self.url = url
        self.token = token
        self.org = org
        self.bucket = bucket
        self._logger = logger or logging.getLogger(__name__)
        self._client: Optional[InfluxDBClient] = None
        self._write_api = None

    @classmethod
    def from_config(cls, config: InfluxConfig, logger: Optional[logging.Logger] = None) -> "InfluxDBExporter":
        return cls(
            url=config.url,
            token=config.auth_token,
            org=config.org,
            bucket=config.write_bucket,
            logger=logger,
        )

    def connect(self) -> bool:
        """Connect to InfluxDB.

        Returns:
            True if connection successful, False otherwise
        """
        try:
            self._client = InfluxDBClient(
                url=self.url,
                token=self.token,
                org=self.org
            )
            self._write_api = self._client.write_api(write_options=SYNCHRONOUS)

            health = self._client.health()
            if health.status == "pass":
                self._logger.info(f"Connected to InfluxDB at {self.url}")
                return True
            else:
                self._logger.error(f"InfluxDB health check failed: {health.message}")
                return False
        except Exception as e:
            self._logger.error(f"Failed to connect to InfluxDB: {e}")
            return False

    def close(self) -> None:
        """Close the InfluxDB connection."""
        if self._client:
            self._client.close()
            self._client = None
            self._write_api = None
            self._logger.info("InfluxDB connection closed")

    @staticmethod
    def build_point(measurement: str, point: NormalizedPoint) -> Point:
        return (
            Point(measurement)
            .tag("name", point.name)
            .field("energy", float(point.value))
            .field("unit", point.unit)
            .time(point.time, WritePrecision.NS)
        )

    def put(self, measurement: str, *points: NormalizedPoint) -> int:
        """Write points to InfluxDB as one batch.

        Args:
            measurement: Measurement name for every point in the batch
            *points: Points to write

        Returns:
            Number of points written

        Raises:
            RuntimeError: If not connected to InfluxDB
        """
        if not self._write_api:
            raise RuntimeError("Not connected to InfluxDB. Call connect() first.")

        if not points:
            self._logger.warning("No points to write")
            return 0

        records: List[Point] = [self.build_point(measurement, p) for p in points]

        try:
            self._write_api.write(bucket=self.bucket, org=self.org, record=records)
            self._logger.info(f"Wrote {len(records)} points to {measurement!r}")
        except Exception as e:
            self._logger.error(f"Failed to write to InfluxDB: {e}")
            raise

        return len(records)

