"""Solar.Web exporter package.

Fetches per-day energy charts from the Fronius Solar.Web portal (reusing a
persisted, encrypted session) and accepts live inverter pushes, writing both
to InfluxDB with their original timestamps.
"""

__version__ = "0.1.0"
