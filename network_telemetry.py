# Packages
from __future__ import annotations
import logging
import pathlib
from datetime import datetime
from typing import Dict, Optional, Protocol
import pandas as pd

logger = logging.getLogger(__name__)

# Column contract for each table served by a telemetry source
DEVICE_COLUMNS = ["device", "operator", "city", "status"]
LINK_COLUMNS = ["device1", "device2", "rtt_ns", "bandwidth_bps", "status"]
METRO_COLUMNS = ["city", "name", "latitude", "longitude"]
METRO_LATENCY_COLUMNS = ["origin", "target", "rtt_us"]
TRAFFIC_COLUMNS = ["origin", "target", "bytes"]

class TelemetrySource(Protocol):
    """
    Read-only tabular access to the current topology and its metrics.

    Implementations may raise any exception when the store is unreachable; the network
    model builder converts it into DataUnavailable.
    """

    def devices(self) -> pd.DataFrame: ...

    def links(self) -> pd.DataFrame: ...

    def metros(self) -> pd.DataFrame: ...

    def metro_latencies(self) -> pd.DataFrame: ...

    def traffic(self, since: datetime) -> pd.DataFrame: ...

def _frame(df: Optional[pd.DataFrame], columns: list) -> pd.DataFrame:
    if df is None:
        return pd.DataFrame(columns=columns)
    return df.copy()

def _aggregate_traffic(df: pd.DataFrame, since: datetime) -> pd.DataFrame:
    # Trailing-window filter only applies when rows carry a timestamp
    if "timestamp" in df.columns:
        cutoff = pd.Timestamp(since)
        cutoff = cutoff.tz_localize("UTC") if cutoff.tzinfo is None else cutoff.tz_convert("UTC")
        df = df.loc[pd.to_datetime(df["timestamp"], utc=True) >= cutoff]
    if df.empty:
        return pd.DataFrame(columns=TRAFFIC_COLUMNS)
    return df.groupby(["origin", "target"], as_index=False)["bytes"].sum()

class FrameTelemetrySource:
    """
    In-memory source backed by DataFrames, e.g. a snapshot exported from the query store.

    Missing tables are served as empty frames with the expected columns.
    """

    def __init__(
        self,
        devices: Optional[pd.DataFrame] = None,
        links: Optional[pd.DataFrame] = None,
        metros: Optional[pd.DataFrame] = None,
        metro_latencies: Optional[pd.DataFrame] = None,
        traffic: Optional[pd.DataFrame] = None,
    ) -> None:
        self._tables: Dict[str, pd.DataFrame] = {
            "devices": _frame(devices, DEVICE_COLUMNS),
            "links": _frame(links, LINK_COLUMNS),
            "metros": _frame(metros, METRO_COLUMNS),
            "metro_latencies": _frame(metro_latencies, METRO_LATENCY_COLUMNS),
            "traffic": _frame(traffic, TRAFFIC_COLUMNS),
        }

    def devices(self) -> pd.DataFrame:
        return self._tables["devices"].copy()

    def links(self) -> pd.DataFrame:
        return self._tables["links"].copy()

    def metros(self) -> pd.DataFrame:
        return self._tables["metros"].copy()

    def metro_latencies(self) -> pd.DataFrame:
        return self._tables["metro_latencies"].copy()

    def traffic(self, since: datetime) -> pd.DataFrame:
        return _aggregate_traffic(self._tables["traffic"], since)

class CsvTelemetrySource:
    """
    Source reading one CSV per table from a directory, re-read on every call.

    Files: devices.csv, links.csv (required); metros.csv, metro_latencies.csv, traffic.csv
    (optional, served empty when absent).
    """

    _REQUIRED = {"devices", "links"}
    _COLUMNS = {
        "devices": DEVICE_COLUMNS,
        "links": LINK_COLUMNS,
        "metros": METRO_COLUMNS,
        "metro_latencies": METRO_LATENCY_COLUMNS,
        "traffic": TRAFFIC_COLUMNS,
    }

    def __init__(self, directory: str | pathlib.Path) -> None:
        self.directory = pathlib.Path(directory)

    def _read(self, table: str) -> pd.DataFrame:
        path = self.directory / f"{table}.csv"
        if not path.exists() and table not in self._REQUIRED:
            logger.debug("telemetry: optional table %s missing at %s", table, path)
            return pd.DataFrame(columns=self._COLUMNS[table])
        return pd.read_csv(path)

    def devices(self) -> pd.DataFrame:
        return self._read("devices")

    def links(self) -> pd.DataFrame:
        return self._read("links")

    def metros(self) -> pd.DataFrame:
        return self._read("metros")

    def metro_latencies(self) -> pd.DataFrame:
        return self._read("metro_latencies")

    def traffic(self, since: datetime) -> pd.DataFrame:
        return _aggregate_traffic(self._read("traffic"), since)
