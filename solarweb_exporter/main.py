"""Main entry point for the Solar.Web exporter.

This module handles:
- Loading configuration from .env / environment variables and command-line flags
- The dump, influx, serve and schedule subcommands
- Scheduling periodic fetches with APScheduler
- Wiring scraper, push intake, InfluxDB sink and Prometheus metrics together
"""

import argparse
import dataclasses
import logging
import sys
import time
from datetime import date, timedelta
from typing import Iterable, Iterator, List, Optional, TextIO

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.cron import CronTrigger
from dotenv import load_dotenv

from solarweb_exporter import __version__
from solarweb_exporter.config import Config, load_config
from solarweb_exporter.dates import utc_today
from solarweb_exporter.exceptions import SolarWebError
from solarweb_exporter.influxdb_exporter import InfluxDBExporter
from solarweb_exporter.metrics import SolarWebMetrics
from solarweb_exporter.push import create_app
from solarweb_exporter.scraper import SolarWebScraper
from solarweb_exporter.series_parser import Series

# Configure module logger
logger = logging.getLogger(__name__)


def format_series(series: Series) -> Iterator[str]:
    """Render a series as "channel";"RFC3339 timestamp";energy lines."""
    for name, points in series.channels.items():
        for dp in points:
            timestamp = dp.time.astimezone().isoformat(timespec="seconds")
            yield f'"{name}";"{timestamp}";{dp.energy}'


def run_dump(scraper: SolarWebScraper, days: Iterable[str], out: TextIO = sys.stdout) -> int:
    """Print the requested days to out.

    Returns:
        Exit code (0 if every day was fetched, 1 otherwise)
    """
    try:
        for series in scraper.fetch_days(days):
            for line in format_series(series):
                print(line, file=out)
    except SolarWebError as e:
        logger.error(f"Dump failed: {e}")
        return 1
    return 0


def run_influx(
    scraper: SolarWebScraper,
    sink,
    days: Iterable[str],
    measurement: str,
    metrics: Optional[SolarWebMetrics] = None,
) -> bool:
    """Fetch the requested days and write them to the sink.

    Sink failures are logged and do not stop the remaining days.

    Returns:
        True if every day was fetched, False otherwise
    """
    logger.info("Starting fetch")
    start_time = time.time()
    success = True

    try:
        for series in scraper.fetch_days(days):
            day = series.day.isoformat() if series.day else "?"
            try:
                count = sink.put(measurement, *series.to_points())
                logger.info(f"Wrote {count} points for {day}")
            except Exception as e:
                logger.error(f"Failed to write {day} to sink: {e}")
                if metrics:
                    metrics.record_sink_failure("fetch")
    except SolarWebError as e:
        logger.error(f"Fetch failed: {e}")
        success = False

    if metrics:
        metrics.set_scrape_success(success, time.time() - start_time)
    if success:
        logger.info("Fetch completed successfully")
    return success


def recent_days(today: Optional[date] = None) -> List[str]:
    """Yesterday and today (UTC days), as day arguments."""
    today = today or utc_today()
    return [(today - timedelta(days=1)).isoformat(), today.isoformat()]


def build_parser(config: Config) -> argparse.ArgumentParser:
    """Build the command-line parser, defaults taken from config."""
    session = config.session
    influx = config.influxdb

    portal = argparse.ArgumentParser(add_help=False)
    portal.add_argument("--cookiejar", default=session.cookie_jar_path,
                        help="path to the cookie storage file")
    portal.add_argument("--base", default=session.base_url, help="Solar.Web's base URL")
    portal.add_argument("--logon", default=session.logon_url, help="logon URL template")
    portal.add_argument("--data", default=session.data_url,
                        help="data URL template; the {{date format}} part (e.g. {{2006/1/2}} "
                             "or {{YYYY-MM-DD}}) is replaced by each requested day")
    portal.add_argument("--no-encrypt", action="store_true", default=not session.encrypt_cookies,
                        help="store cookies unencrypted")

    sink = argparse.ArgumentParser(add_help=False)
    sink.add_argument("--influxdb", default=influx.url, help="InfluxDB URL")
    sink.add_argument("--token", default=influx.token, help="InfluxDB API token")
    sink.add_argument("--org", default=influx.org, help="InfluxDB organization")
    sink.add_argument("--bucket", default=influx.bucket, help="InfluxDB bucket")
    sink.add_argument("--database", default=influx.database,
                      help="InfluxDB 1.x database (overrides --bucket)")
    sink.add_argument("--retention-policy", default=influx.retention_policy,
                      help="InfluxDB 1.x retention policy")
    sink.add_argument("--measurement", default=influx.measurement, help="measurement name")

    parser = argparse.ArgumentParser(
        prog="solarweb-exporter",
        description="Fetch Fronius Solar.Web energy data and accept inverter pushes",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    commands = parser.add_subparsers(dest="command", required=True)

    dump_cmd = commands.add_parser("dump", parents=[portal], help="print days to stdout")
    dump_cmd.add_argument("system_id", help="PV system ID")
    dump_cmd.add_argument("days", nargs="*", help="YYYY-MM-DD days (default: today; two days = range)")

    influx_cmd = commands.add_parser("influx", parents=[portal, sink], help="write days to InfluxDB")
    influx_cmd.add_argument("system_id", help="PV system ID")
    influx_cmd.add_argument("days", nargs="*", help="YYYY-MM-DD days (default: today; two days = range)")

    serve_cmd = commands.add_parser("serve", parents=[sink], help="accept inverter pushes")
    serve_cmd.add_argument("--listen", default=f"{config.listen_host}:{config.listen_port}",
                           help="host:port to listen on")
    serve_cmd.add_argument("--path", default=config.push_path, help="push endpoint path")
    serve_cmd.add_argument("--exporter-port", type=int, default=config.exporter_port,
                           help="Prometheus metrics port (0 disables)")

    schedule_cmd = commands.add_parser("schedule", parents=[portal, sink],
                                       help="write yesterday and today to InfluxDB every day")
    schedule_cmd.add_argument("system_id", nargs="?", default=session.system_id, help="PV system ID")
    schedule_cmd.add_argument("--hour", type=int, default=config.scrape_hour, help="hour of the daily run")
    schedule_cmd.add_argument("--exporter-port", type=int, default=config.exporter_port,
                              help="Prometheus metrics port (0 disables)")

    return parser


def apply_args(config: Config, args: argparse.Namespace) -> Config:
    """Return a copy of config with command-line overrides applied."""
    session = config.session
    if hasattr(args, "cookiejar"):
        session = dataclasses.replace(
            session,
            system_id=args.system_id or session.system_id,
            cookie_jar_path=args.cookiejar,
            base_url=args.base,
            logon_url=args.logon,
            data_url=args.data,
            encrypt_cookies=not args.no_encrypt,
        )

    influx = config.influxdb
    if hasattr(args, "influxdb"):
        influx = dataclasses.replace(
            influx,
            url=args.influxdb,
            token=args.token,
            org=args.org,
            bucket=args.bucket,
            database=args.database,
            retention_policy=args.retention_policy,
            measurement=args.measurement,
        )

    config = dataclasses.replace(config, session=session, influxdb=influx)
    if hasattr(args, "listen"):
        host, _, port = args.listen.rpartition(":")
        config = dataclasses.replace(
            config,
            listen_host=host or "0.0.0.0",
            listen_port=int(port),
            push_path=args.path,
        )
    if hasattr(args, "exporter_port"):
        config = dataclasses.replace(config, exporter_port=args.exporter_port)
    if hasattr(args, "hour"):
        config = dataclasses.replace(config, scrape_hour=args.hour)
    return config


def connect_sink(config: Config) -> Optional[InfluxDBExporter]:
    sink = InfluxDBExporter.from_config(config.influxdb)
    if not sink.connect():
        logger.error("Failed to connect to InfluxDB, exiting")
        return None
    return sink


def start_metrics(config: Config) -> Optional[SolarWebMetrics]:
    metrics = SolarWebMetrics(port=config.exporter_port)
    if config.exporter_port:
        metrics.start()
        logger.info(f"Prometheus metrics available at http://localhost:{config.exporter_port}/metrics")
    return metrics


def serve(config: Config) -> int:
    """Run the push intake until interrupted."""
    sink = connect_sink(config)
    if sink is None:
        return 1
    metrics = start_metrics(config)

    app = create_app(sink, path=config.push_path, measurement=config.influxdb.measurement, metrics=metrics)
    logger.info(f"Accepting pushes on http://{config.listen_host}:{config.listen_port}{config.push_path}")
    try:
        app.run(host=config.listen_host, port=config.listen_port, threaded=True)
    finally:
        sink.close()
    return 0


def schedule(config: Config) -> int:
    """Write yesterday and today to InfluxDB once a day, until interrupted."""
    sink = connect_sink(config)
    if sink is None:
        return 1
    metrics = start_metrics(config)
    scraper = SolarWebScraper(config.session, metrics=metrics)
    measurement = config.influxdb.measurement

    def job() -> None:
        run_influx(scraper, sink, recent_days(), measurement, metrics)

    scheduler = BlockingScheduler()
    trigger = CronTrigger(hour=config.scrape_hour, minute=0)
    scheduler.add_job(
        job,
        trigger=trigger,
        id="daily_fetch",
        name=f"Daily fetch at {config.scrape_hour}:00"
    )
    logger.info(f"Scheduled daily fetch at {config.scrape_hour}:00")

    logger.info("Running initial fetch at startup")
    job()

    logger.info("Starting scheduler, press Ctrl+C to exit")
    try:
        scheduler.start()
    except KeyboardInterrupt:
        logger.info("Received interrupt, shutting down")
        scheduler.shutdown()
    finally:
        scraper.close()
        sink.close()
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point.

    Returns:
        Exit code (0 for success, 1 for failure)
    """
    load_dotenv()
    config = load_config()
    args = build_parser(config).parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stderr if args.command == "dump" else sys.stdout)]
    )

    config = apply_args(config, args)
    if args.command in ("dump", "influx", "schedule") and not config.session.system_id:
        logger.error("Missing PV system ID (argument or SOLARWEB_SYSTEM_ID)")
        return 1

    if args.command == "dump":
        scraper = SolarWebScraper(config.session)
        try:
            return run_dump(scraper, args.days)
        finally:
            scraper.close()

    if args.command == "influx":
        sink = connect_sink(config)
        if sink is None:
            return 1
        scraper = SolarWebScraper(config.session)
        try:
            ok = run_influx(scraper, sink, args.days, config.influxdb.measurement)
        finally:
            scraper.close()
            sink.close()
        return 0 if ok else 1

    if args.command == "serve":
        return serve(config)

    return schedule(config)


if __name__ == "__main__":
    sys.exit(main())
