"""Tests for per-link value estimates of one operator."""

import math

import numpy as np
import pytest

from conftest import make_model, unit_demand
from network_linkestimate import network_linkestimate, retag_links
from network_shapley import consolidate_demand, consolidate_links

def _link_model(shared=(np.nan, np.nan), extra_links=()):
    return make_model(
        devices=[
            dict(Device="NYC1", Operator="A", City="NYC"),
            dict(Device="LON1", Operator="A", City="LON"),
            dict(Device="PAR1", Operator="A", City="PAR"),
            dict(Device="LON2", Operator="B", City="LON"),
            dict(Device="PAR2", Operator="B", City="PAR"),
        ],
        private_links=[
            dict(Device1="NYC1", Device2="LON1", Latency=20.0, Bandwidth=10.0, Uptime=1.0, Shared=shared[0]),
            dict(Device1="LON1", Device2="PAR1", Latency=10.0, Bandwidth=10.0, Uptime=1.0, Shared=shared[1]),
            dict(Device1="LON2", Device2="PAR2", Latency=50.0, Bandwidth=10.0, Uptime=1.0),
            *extra_links,
        ],
        public_links=[
            dict(City1="NYC", City2="PAR", Latency=150.0),
            dict(City1="LON", City2="PAR", Latency=40.0),
        ],
        demand=[unit_demand("NYC", "PAR")],
        operator_uptime=0.5,
        contiguity_bonus=5.0,
    )

class TestRetagLinks:
    def test_players_per_focus_link(self):
        model = _link_model()
        demand_df = consolidate_demand(model.demand, 1.0)
        links = retag_links(consolidate_links(model, demand_df), "A")

        owners = set(links["Operator1"]) | set(links["Operator2"])
        assert owners == {"Public", "Private", "Others", "1", "2"}

        private = links.loc[links["Kind"] == "private"]
        assert set(private.loc[private["Link"] == 0, "Operator1"]) == {"1"}
        assert set(private.loc[private["Link"] == 1, "Operator2"]) == {"2"}
        assert set(private.loc[private["Link"] == 2, "Operator1"]) == {"Others"}

        # Focus on/off ramps and crossovers no longer need any player
        helper = links.loc[(links["Kind"] != "private") & (links["Node1"] == "dev:NYC1")]
        assert set(helper["Operator1"]) == {"Private"}

    def test_input_not_mutated(self):
        model = _link_model()
        demand_df = consolidate_demand(model.demand, 1.0)
        links = consolidate_links(model, demand_df)
        before = links.copy()
        retag_links(links, "A")
        assert links.equals(before)

class TestNetworkLinkestimate:
    def test_exact_values(self):
        result = network_linkestimate(_link_model(), "A")

        assert list(result.columns) == ["Device1", "Device2", "Bandwidth", "Latency", "Value", "Percent"]
        assert list(zip(result["Device1"], result["Device2"])) == [("NYC1", "LON1"), ("LON1", "PAR1")]
        assert result.attrs["exact"] is True

        nyc_lon, lon_par = result["Value"]
        assert nyc_lon > lon_par > 0
        assert result["Percent"].sum() == pytest.approx(1.0)

        # Shapley over {link 1, link 2}; the B link never beats the public LON-PAR hop
        v0, v1, v12 = math.exp(-1.5), math.exp(-0.65), math.exp(-0.3)
        assert lon_par == pytest.approx((v12 - v1) / 2, rel=1e-6)
        assert nyc_lon == pytest.approx((v1 - v0) / 2 + (v12 - v0) / 2, rel=1e-6)

    def test_leave_one_out_above_link_limit(self):
        result = network_linkestimate(_link_model(), "A", max_links=1)
        assert result.attrs["exact"] is False

        nyc_lon, lon_par = result["Value"]
        assert nyc_lon == pytest.approx(math.exp(-0.3) - math.exp(-1.5), rel=1e-6)
        assert lon_par == pytest.approx(math.exp(-0.3) - math.exp(-0.65), rel=1e-6)

    def test_duplicate_links_rejected(self):
        duplicate = dict(Device1="LON1", Device2="NYC1", Latency=20.0, Bandwidth=10.0, Uptime=1.0)
        with pytest.raises(ValueError, match="Duplicate links"):
            network_linkestimate(_link_model(extra_links=[duplicate]), "A")

    def test_shared_group_rejected(self):
        with pytest.raises(ValueError, match="Shared groups"):
            network_linkestimate(_link_model(shared=(7, 7)), "A")

    def test_unknown_focus(self):
        with pytest.raises(ValueError, match="operator_focus"):
            network_linkestimate(_link_model(), "Z")
