"""Shared fixtures: small hand-built networks and telemetry tables."""

import pandas as pd
import pytest

from network_model import NetworkModel
from network_telemetry import FrameTelemetrySource

def make_model(devices, private_links, public_links, demand, **scalars) -> NetworkModel:
    """Build a NetworkModel from lists of row dicts, filling optional link columns."""
    private_df = pd.DataFrame(private_links, columns=["Device1", "Device2", "Latency", "Bandwidth", "Uptime", "Shared"])
    private_df["Uptime"] = private_df["Uptime"].fillna(1.0)
    return NetworkModel(
        devices=pd.DataFrame(devices, columns=["Device", "Operator", "City"]),
        private_links=private_df,
        public_links=pd.DataFrame(public_links, columns=["City1", "City2", "Latency"]),
        demand=pd.DataFrame(demand, columns=["Start", "End", "Receivers", "Traffic", "Priority", "Type", "Multicast"]),
        **scalars,
    )

def unit_demand(start, end, **overrides):
    row = dict(Start=start, End=end, Receivers=1, Traffic=1.0, Priority=1.0, Type=1, Multicast=False)
    row.update(overrides)
    return row

@pytest.fixture
def chain_model() -> NetworkModel:
    """A owns NYC-LON, B owns LON-PAR; the only private route NYC->PAR needs both."""
    return make_model(
        devices=[
            dict(Device="NYC1", Operator="A", City="NYC"),
            dict(Device="LON1", Operator="A", City="LON"),
            dict(Device="LON2", Operator="B", City="LON"),
            dict(Device="PAR1", Operator="B", City="PAR"),
        ],
        private_links=[
            dict(Device1="NYC1", Device2="LON1", Latency=20.0, Bandwidth=10.0, Uptime=0.99),
            dict(Device1="LON2", Device2="PAR1", Latency=10.0, Bandwidth=10.0, Uptime=0.99),
        ],
        public_links=[dict(City1="NYC", City2="PAR", Latency=150.0)],
        demand=[unit_demand("NYC", "PAR")],
        operator_uptime=1.0,
        contiguity_bonus=5.0,
    )

@pytest.fixture
def symmetric_model() -> NetworkModel:
    """alpha and beta each own one end of the same a-b link."""
    return make_model(
        devices=[
            dict(Device="a01-dzx-001", Operator="alpha", City="a"),
            dict(Device="b01-dzx-001", Operator="beta", City="b"),
        ],
        private_links=[
            dict(Device1="a01-dzx-001", Device2="b01-dzx-001", Latency=5.0, Bandwidth=100.0, Uptime=1.0),
            dict(Device1="b01-dzx-001", Device2="a01-dzx-001", Latency=5.0, Bandwidth=100.0, Uptime=1.0),
        ],
        public_links=[dict(City1="a", City2="b", Latency=50.0)],
        demand=[unit_demand("a", "b")],
        operator_uptime=1.0,
        contiguity_bonus=0.0,
    )

@pytest.fixture
def mesh_model() -> NetworkModel:
    """Four operators across five cities, with overlapping routes and multicast demand."""
    return make_model(
        devices=[
            dict(Device="NYC1", Operator="Alpha", City="NYC"),
            dict(Device="LON1", Operator="Alpha", City="LON"),
            dict(Device="LON2", Operator="Beta", City="LON"),
            dict(Device="FRA1", Operator="Beta", City="FRA"),
            dict(Device="FRA2", Operator="Gamma", City="FRA"),
            dict(Device="SIN1", Operator="Gamma", City="SIN"),
            dict(Device="NYC2", Operator="Delta", City="NYC"),
            dict(Device="FRA3", Operator="Delta", City="FRA"),
            dict(Device="TOK1", Operator="Private", City="TOK"),
        ],
        private_links=[
            dict(Device1="NYC1", Device2="LON1", Latency=35.0, Bandwidth=10.0, Uptime=0.99),
            dict(Device1="LON2", Device2="FRA1", Latency=8.0, Bandwidth=10.0, Uptime=0.995),
            dict(Device1="FRA2", Device2="SIN1", Latency=80.0, Bandwidth=10.0, Uptime=0.98),
            dict(Device1="NYC2", Device2="FRA3", Latency=45.0, Bandwidth=10.0, Uptime=0.97),
            dict(Device1="SIN1", Device2="TOK1", Latency=35.0, Bandwidth=10.0, Uptime=1.0),
        ],
        public_links=[
            dict(City1="NYC", City2="LON", Latency=70.0),
            dict(City1="LON", City2="FRA", Latency=12.0),
            dict(City1="FRA", City2="SIN", Latency=160.0),
            dict(City1="SIN", City2="TOK", Latency=70.0),
            dict(City1="NYC", City2="TOK", Latency=170.0),
        ],
        demand=[
            unit_demand("NYC", "FRA", Traffic=2.0),
            unit_demand("LON", "SIN", Receivers=4, Multicast=True),
            unit_demand("NYC", "TOK", Priority=2.0),
            unit_demand("FRA", "NYC", Traffic=0.5),
        ],
        operator_uptime=0.98,
        contiguity_bonus=5.0,
    )

@pytest.fixture
def telemetry_tables():
    """Raw snake_case tables as a telemetry store would serve them."""
    devices = pd.DataFrame([
        dict(device="nyc-dz01", operator="alpha", city="nyc", status="activated"),
        dict(device="lon-dz01", operator="alpha", city="lon", status="activated"),
        dict(device="lon-dz02", operator="beta", city="lon", status="activated"),
        dict(device="par-dz01", operator="beta", city="par", status="activated"),
        dict(device="ams-dz01", operator="beta", city="ams", status="pending"),
    ])
    links = pd.DataFrame([
        dict(device1="nyc-dz01", device2="lon-dz01", rtt_ns=20_000_000, bandwidth_bps=10e9, status="activated"),
        dict(device1="lon-dz02", device2="par-dz01", rtt_ns=10_000_000, bandwidth_bps=10e9, status="activated"),
        dict(device1="lon-dz01", device2="par-dz01", rtt_ns=9_000_000, bandwidth_bps=10e9, status="soft-drained"),
    ])
    metros = pd.DataFrame([
        dict(city="NYC", name="New York", latitude=40.7128, longitude=-74.0060),
        dict(city="LON", name="London", latitude=51.5074, longitude=-0.1278),
        dict(city="PAR", name="Paris", latitude=48.8566, longitude=2.3522),
    ])
    return dict(devices=devices, links=links, metros=metros)

@pytest.fixture
def frame_source(telemetry_tables) -> FrameTelemetrySource:
    return FrameTelemetrySource(**telemetry_tables)
