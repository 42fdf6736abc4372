# Packages
from __future__ import annotations
import logging
import math
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Tuple
import numpy as np
import pandas as pd

from network_errors import ComputationTimeout, DataUnavailable, EmptyTopology
from network_settings import Settings
from network_telemetry import (
    DEVICE_COLUMNS,
    LINK_COLUMNS,
    METRO_COLUMNS,
    METRO_LATENCY_COLUMNS,
    TRAFFIC_COLUMNS,
    TelemetrySource,
)

logger = logging.getLogger(__name__)

# Pseudo-operator names used by the Shapley computation
OPERATOR_PUBLIC = "Public"
OPERATOR_PRIVATE = "Private"
OPERATOR_OTHERS = "Others"

# Only activated devices and links carry traffic; drained links are excluded entirely
ACTIVE_STATUS = "activated"
DRAINED_STATUSES = ("soft-drained", "hard-drained")

# Great-circle public latency estimate
EARTH_RADIUS_KM = 6371.0
LATENCY_PER_KM = 0.01       # ms per km of fiber
LATENCY_OVERHEAD = 1.2      # 20% overhead for routing hops
LATENCY_FLOOR_MS = 5.0      # minimum latency between any two cities
LATENCY_FALLBACK_MS = 100.0  # no measurement and no coordinates

# Receivers scale with normalized traffic weight
MAX_RECEIVERS = 100
SYNTHETIC_RECEIVERS = 100

@dataclass(frozen=True, eq=False)
class NetworkModel:
    """
    Inputs to the value function, built fresh on every refresh cycle.

    Attributes
    ----------
    devices : pandas.DataFrame
        Device table `[Device, Operator, City]`
    private_links : pandas.DataFrame
        Private link table `[Device1, Device2, Latency, Bandwidth, Uptime, Shared]`
    public_links : pandas.DataFrame
        Public internet links `[City1, City2, Latency]`
    demand : pandas.DataFrame
        Demand matrix `[Start, End, Receivers, Traffic, Priority, Type, Multicast]`
    operator_uptime : float
        Reliability (between 0 - 1) of an operator in any given epoch
    contiguity_bonus : float
        Extra latency effectively added for mixing public links with private links
    demand_multiplier : float
        Extra multiplier to scale up demand
    """

    devices: pd.DataFrame
    private_links: pd.DataFrame
    public_links: pd.DataFrame
    demand: pd.DataFrame
    operator_uptime: float = 1.0
    contiguity_bonus: float = 5.0
    demand_multiplier: float = 1.0

    @property
    def operators(self) -> List[str]:
        """Coalition players: every device operator except the always-on Private backbone."""
        ops = pd.unique(self.devices["Operator"].dropna().astype(str))
        return sorted(x for x in ops if x != OPERATOR_PRIVATE)

    @property
    def cities(self) -> List[str]:
        return sorted(pd.unique(self.devices["City"].dropna().astype(str)))

@dataclass(frozen=True, eq=False)
class LiveNetwork:
    """Diagnostic summary of the last successfully built model."""

    model: NetworkModel
    device_count: int
    link_count: int
    operator_count: int
    metro_count: int

def summarize_network(model: NetworkModel) -> LiveNetwork:
    return LiveNetwork(
        model=model,
        device_count=len(model.devices),
        link_count=len(model.private_links),
        operator_count=int(model.devices["Operator"].nunique()),
        metro_count=int(model.devices["City"].nunique()),
    )

def estimate_public_latency(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Estimate public internet latency (ms) between two points from their haversine distance."""
    rlat1, rlng1, rlat2, rlng2 = map(math.radians, (lat1, lng1, lat2, lng2))
    a = (math.sin((rlat2 - rlat1) / 2) ** 2 +
         math.cos(rlat1) * math.cos(rlat2) * math.sin((rlng2 - rlng1) / 2) ** 2)
    distance = EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return round(distance * LATENCY_PER_KM * LATENCY_OVERHEAD + LATENCY_FLOOR_MS, 2)

def _check_cancel(cancel: Optional[threading.Event]) -> None:
    if cancel is not None and cancel.is_set():
        raise ComputationTimeout("network model build cancelled")

def _read_table(fetch: Callable[[], pd.DataFrame], table: str, required: bool) -> Optional[pd.DataFrame]:
    try:
        df = fetch()
    except Exception as exc:
        if required:
            raise DataUnavailable(f"telemetry source failed reading {table}: {exc}") from exc
        logger.warning("network model: %s unavailable, degrading: %s", table, exc)
        return None
    if df is None:
        if required:
            raise DataUnavailable(f"telemetry source returned no {table} table")
        return None
    return df

def _require_columns(df: pd.DataFrame, columns: List[str], table: str) -> None:
    missing = [c for c in columns if c not in df.columns]
    if missing:
        raise DataUnavailable(f"{table} table is missing columns {missing}")

def _optional_table(df: Optional[pd.DataFrame], columns: List[str], table: str) -> Optional[pd.DataFrame]:
    if df is None:
        return None
    missing = [c for c in columns if c not in df.columns]
    if missing:
        logger.warning("network model: ignoring %s table missing columns %s", table, missing)
        return None
    return df

def _clean_devices(raw: pd.DataFrame) -> pd.DataFrame:
    _require_columns(raw, DEVICE_COLUMNS, "devices")
    df = raw.loc[raw["status"].astype(str).str.lower() == ACTIVE_STATUS].copy()
    df["device"] = df["device"].astype(str)
    df["city"] = df["city"].fillna("").astype(str).str.strip().str.upper()
    df["operator"] = df["operator"].fillna("").astype(str).str.strip()

    # Drop devices that cannot be placed or attributed rather than failing the build
    no_city = df["city"] == ""
    if no_city.any():
        logger.warning("network model: dropping %d device(s) with no city: %s",
                       int(no_city.sum()), ", ".join(df.loc[no_city, "device"]))
    no_operator = df["operator"] == ""
    if no_operator.any():
        logger.warning("network model: dropping %d device(s) with no operator: %s",
                       int(no_operator.sum()), ", ".join(df.loc[no_operator, "device"]))
    reserved = df["operator"] == OPERATOR_PUBLIC
    if reserved.any():
        logger.warning("network model: dropping %d device(s) using the reserved operator name %s",
                       int(reserved.sum()), OPERATOR_PUBLIC)
    df = df.loc[~(no_city | no_operator | reserved)]

    dupes = df["device"].duplicated()
    if dupes.any():
        logger.warning("network model: ignoring %d duplicated device row(s)", int(dupes.sum()))
        df = df.loc[~dupes]

    return (pd.DataFrame({"Device": df["device"], "Operator": df["operator"], "City": df["city"]})
            .sort_values("Device").reset_index(drop=True))

def _clean_links(raw: pd.DataFrame, devices: pd.DataFrame, default_uptime: float) -> pd.DataFrame:
    _require_columns(raw, LINK_COLUMNS, "links")
    status = raw["status"].astype(str).str.lower()
    drained = int(status.isin(DRAINED_STATUSES).sum())
    if drained:
        logger.info("network model: excluding %d drained link(s)", drained)
    df = raw.loc[status == ACTIVE_STATUS].copy()
    df["device1"] = df["device1"].astype(str)
    df["device2"] = df["device2"].astype(str)

    # Every link endpoint must resolve to a kept device
    known = set(devices["Device"])
    orphan = ~(df["device1"].isin(known) & df["device2"].isin(known)) | (df["device1"] == df["device2"])
    if orphan.any():
        logger.warning("network model: dropping %d link(s) with unresolved or identical endpoints",
                       int(orphan.sum()))
        df = df.loc[~orphan]

    bandwidth = pd.to_numeric(df["bandwidth_bps"], errors="coerce").fillna(0) / 1e9
    no_capacity = bandwidth <= 0
    if no_capacity.any():
        logger.warning("network model: dropping %d link(s) without bandwidth", int(no_capacity.sum()))
        df, bandwidth = df.loc[~no_capacity], bandwidth.loc[~no_capacity]

    latency = (pd.to_numeric(df["rtt_ns"], errors="coerce").fillna(0).clip(lower=0) / 1e6).round(2)
    if "uptime" in df.columns:
        uptime = pd.to_numeric(df["uptime"], errors="coerce").fillna(default_uptime).clip(0, 1)
    else:
        uptime = pd.Series(default_uptime, index=df.index)
    shared = pd.to_numeric(df["shared"], errors="coerce") if "shared" in df.columns else pd.Series(np.nan, index=df.index)

    return pd.DataFrame({
        "Device1": df["device1"],
        "Device2": df["device2"],
        "Latency": latency,
        "Bandwidth": bandwidth.round(1),
        "Uptime": uptime,
        "Shared": shared,
    }).reset_index(drop=True)

def _metro_coordinates(metros: Optional[pd.DataFrame]) -> Dict[str, Tuple[float, float]]:
    coords: Dict[str, Tuple[float, float]] = {}
    if metros is None or metros.empty:
        return coords
    for city, lat, lng in metros[["city", "latitude", "longitude"]].itertuples(index=False):
        if pd.isna(lat) or pd.isna(lng) or (lat == 0 and lng == 0):
            continue
        coords[str(city).strip().upper()] = (float(lat), float(lng))
    return coords

def _measured_latencies(latencies: Optional[pd.DataFrame]) -> Dict[Tuple[str, str], float]:
    if latencies is None or latencies.empty:
        return {}
    df = latencies.copy()
    df["rtt_us"] = pd.to_numeric(df["rtt_us"], errors="coerce")
    df = df.loc[df["rtt_us"] > 0]
    if df.empty:
        return {}
    df["origin"] = df["origin"].astype(str).str.upper()
    df["target"] = df["target"].astype(str).str.upper()

    # Average each direction first, then both directions of a metro pair
    per_direction = df.groupby(["origin", "target"], as_index=False)["rtt_us"].mean()
    forward = per_direction["origin"] < per_direction["target"]
    per_direction["City1"] = np.where(forward, per_direction["origin"], per_direction["target"])
    per_direction["City2"] = np.where(forward, per_direction["target"], per_direction["origin"])
    pairs = per_direction.groupby(["City1", "City2"])["rtt_us"].mean() / 1000.0
    return {key: float(value) for key, value in pairs.items()}

def build_public_links(
    cities: List[str],
    coords: Dict[str, Tuple[float, float]],
    measured: Dict[Tuple[str, str], float],
) -> pd.DataFrame:
    """One public link per city pair: measured latency, else haversine estimate, else fallback."""
    rows = []
    for i, c1 in enumerate(cities):
        for c2 in cities[i + 1:]:
            key = (c1, c2) if c1 < c2 else (c2, c1)
            if key in measured:
                latency = round(measured[key], 2)
            elif c1 in coords and c2 in coords:
                latency = estimate_public_latency(*coords[c1], *coords[c2])
            else:
                latency = LATENCY_FALLBACK_MS
            rows.append(dict(City1=c1, City2=c2, Latency=latency))
    return pd.DataFrame(rows, columns=["City1", "City2", "Latency"])

def traffic_demand(traffic: Optional[pd.DataFrame], cities: List[str], min_weight: float) -> pd.DataFrame:
    """
    Derive demand from observed metro-pair traffic volume.

    Volumes are normalized by the busiest pair and floored at `min_weight`, so a pair that is
    present with zero bytes still carries some value; receivers scale with the weight (1-100).
    """
    columns = ["Start", "End", "Receivers", "Traffic", "Priority", "Type", "Multicast"]
    if traffic is None or traffic.empty:
        return pd.DataFrame(columns=columns)
    df = traffic.copy()
    df["origin"] = df["origin"].astype(str).str.strip().str.upper()
    df["target"] = df["target"].astype(str).str.strip().str.upper()
    df["bytes"] = pd.to_numeric(df["bytes"], errors="coerce").fillna(0).clip(lower=0)
    df = df.loc[(df["origin"] != df["target"]) & df["origin"].isin(cities) & df["target"].isin(cities)]
    if df.empty:
        return pd.DataFrame(columns=columns)

    df = df.groupby(["origin", "target"], as_index=False)["bytes"].sum().sort_values(["origin", "target"])
    peak = df["bytes"].max()
    weight = (df["bytes"] / peak if peak > 0 else df["bytes"] * 0.0).clip(lower=min_weight, upper=1.0)
    return pd.DataFrame({
        "Start": df["origin"].to_numpy(),
        "End": df["target"].to_numpy(),
        "Receivers": (weight * MAX_RECEIVERS).round().clip(1, MAX_RECEIVERS).astype(int).to_numpy(),
        "Traffic": weight.to_numpy(),
        "Priority": 1.0,
        "Type": np.arange(1, len(df) + 1),
        "Multicast": False,
    })

def synthetic_demand(cities: List[str], cap: int) -> pd.DataFrame:
    """Unit demand over distinct city pairs in sorted order, capped to bound coalition cost."""
    rows = []
    for i, c1 in enumerate(cities):
        for c2 in cities[i + 1:]:
            if len(rows) >= cap:
                break
            rows.append(dict(Start=c1, End=c2, Receivers=SYNTHETIC_RECEIVERS, Traffic=1.0, Priority=1.0,
                             Type=len(rows) + 1, Multicast=False))
    return pd.DataFrame(rows, columns=["Start", "End", "Receivers", "Traffic", "Priority", "Type", "Multicast"])

def build_network_model(
    source: TelemetrySource,
    settings: Optional[Settings] = None,
    now: Optional[datetime] = None,
    cancel: Optional[threading.Event] = None,
) -> NetworkModel:
    """
    Assemble a NetworkModel from the telemetry source.

    Parameters
    ----------
    source : TelemetrySource
        Read-only access to devices, links, metros, metro latencies and traffic
    settings : Settings, optional
        Model scalars and builder tunables; defaults apply when omitted
    now : datetime, optional
        End of the trailing traffic window (defaults to the current UTC time)
    cancel : threading.Event, optional
        Checked between source reads; when set the build raises ComputationTimeout

    Returns NetworkModel
        Raises DataUnavailable when devices or links cannot be read and EmptyTopology when no
        usable device remains
    """
    settings = settings or Settings()
    now = now or datetime.now(timezone.utc)

    # Devices and private links are required
    devices = _clean_devices(_read_table(source.devices, "devices", required=True))
    if devices.empty:
        raise EmptyTopology("no active device with a city and operator")
    _check_cancel(cancel)
    private_links = _clean_links(_read_table(source.links, "links", required=True), devices, settings.link_uptime)
    _check_cancel(cancel)

    # Public links across every pair of device cities
    cities = sorted(devices["City"].unique())
    coords = _metro_coordinates(_optional_table(
        _read_table(source.metros, "metros", required=False), METRO_COLUMNS, "metros"))
    _check_cancel(cancel)
    measured = _measured_latencies(_optional_table(
        _read_table(source.metro_latencies, "metro latencies", required=False), METRO_LATENCY_COLUMNS, "metro latencies"))
    _check_cancel(cancel)
    public_links = build_public_links(cities, coords, measured)

    # Demand from trailing traffic, or synthetic pairs so the value function has flows to evaluate
    since = now - timedelta(hours=settings.traffic_window_hours)
    traffic = _optional_table(_read_table(lambda: source.traffic(since), "traffic", required=False),
                              TRAFFIC_COLUMNS, "traffic")
    _check_cancel(cancel)
    demand = traffic_demand(traffic, cities, settings.min_demand_weight)
    if demand.empty:
        logger.info("network model: no traffic between active metros, using synthetic demand for %d cities",
                    len(cities))
        demand = synthetic_demand(cities, settings.max_synthetic_demands)

    logger.info("network model: %d devices, %d private links, %d public links, %d demands across %d metros",
                len(devices), len(private_links), len(public_links), len(demand), len(cities))
    return NetworkModel(
        devices=devices,
        private_links=private_links,
        public_links=public_links,
        demand=demand,
        operator_uptime=settings.operator_uptime,
        contiguity_bonus=settings.contiguity_bonus,
        demand_multiplier=settings.demand_multiplier,
    )
