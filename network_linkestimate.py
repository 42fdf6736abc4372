# Packages
from __future__ import annotations
import logging
import threading
from dataclasses import replace
from typing import Optional
import numpy as np
import pandas as pd

from network_model import OPERATOR_OTHERS, OPERATOR_PRIVATE, OPERATOR_PUBLIC, NetworkModel
from network_shapley import (
    DEFAULT_LATENCY_SCALE,
    MAX_EXACT_PLAYERS,
    CoalitionValuer,
    _assert,
    _check_cancel,
    check_inputs,
    consolidate_demand,
    consolidate_links,
    exact_shapley,
    path_primitives,
)

logger = logging.getLogger(__name__)

def retag_links(links: pd.DataFrame, operator_focus: str) -> pd.DataFrame:
    """
    Retags Operator so that methodology performs link-by-link calculations

    Parameters
    ----------
    links : pandas.DataFrame
        Full edge table from consolidate_links()
        `[Node1, Node2, Cost, Operator1, Operator2, Kind, Link]`
    operator_focus : str
        Operator name to focus on, in computing value of individual links

    Returns pandas.DataFrame
        A copy of the edge table where every private link of the focus operator is owned by its
        own player ("1", "2", ...), the focus operator's ramps and crossovers are always available,
        and every other operator is merged into Others
    """

    links = links.copy()
    keep = [OPERATOR_PUBLIC, OPERATOR_PRIVATE, operator_focus]

    # Collapse non-focus operators into a general private category
    links.loc[~links["Operator1"].isin(keep), "Operator1"] = OPERATOR_OTHERS
    links.loc[~links["Operator2"].isin(keep), "Operator2"] = OPERATOR_OTHERS

    # Helper edges of the focus operator (ramps, crossovers) are a fixed private pathway
    helper = links["Kind"] != "private"
    for col in ("Operator1", "Operator2"):
        links.loc[helper & (links[col] == operator_focus), col] = OPERATOR_PRIVATE

    # Each focus link, in both directions, becomes a player of its own
    focus = (links["Kind"] == "private") & (links["Operator1"].eq(operator_focus) | links["Operator2"].eq(operator_focus))
    tags = {link: str(k + 1) for k, link in enumerate(sorted(pd.unique(links.loc[focus, "Link"])))}
    for col in ("Operator1", "Operator2"):
        rows = focus & (links[col] == operator_focus)
        links.loc[rows, col] = links.loc[rows, "Link"].map(tags)
    return links

def network_linkestimate(
    model: NetworkModel,
    operator_focus: str,
    latency_scale: float = DEFAULT_LATENCY_SCALE,
    max_links: int = MAX_EXACT_PLAYERS,
    cancel: Optional[threading.Event] = None,
) -> pd.DataFrame:
    """
    Compute Shapley values per link of one operator

    Parameters
    ----------
    model : NetworkModel
        Network containing the focus operator
    operator_focus : str
        Operator name to focus on, in computing value of individual links
    latency_scale : float
        Latency (ms) at which path quality drops by a factor of e
    max_links : int
        Largest number of focus links valued exactly; above it each link gets its
        leave-one-out marginal on the grand coalition
    cancel : threading.Event, optional
        Checked between coalition evaluations

    Returns pandas.DataFrame
        `[Device1, Device2, Bandwidth, Latency, Value, Percent]` per focus link, `attrs["exact"]`
        reports whether Shapley values were enumerated exactly
    """

    # Fix operator uptime, so links are valued on what they carry rather than on operator risk
    model = replace(model, operator_uptime=1.0)
    check_inputs(model)
    _assert(operator_focus in model.operators, f"Unknown operator_focus: {operator_focus}")

    private_links = model.private_links.reset_index(drop=True)
    operators = model.devices.set_index("Device")["Operator"]
    owned = (private_links["Device1"].map(operators).eq(operator_focus) |
             private_links["Device2"].map(operators).eq(operator_focus))

    # Check that no overlapping shared-group links exist for focus operator
    _assert(not (private_links.loc[owned, "Shared"].dropna().value_counts() > 1).any(),
            "Shared groups are not allowed for links by operator_focus.")

    # Check that there are no duplicate links
    key = pd.Series([tuple(sorted(pair)) for pair in zip(private_links["Device1"], private_links["Device2"])],
                    index=private_links.index)
    _assert(not pd.DataFrame({"key": key, "Bandwidth": private_links["Bandwidth"],
                              "Latency": private_links["Latency"]}).duplicated(keep=False).any(),
            "Duplicate links found.")

    # Get consolidated map of links with the link-level operator schema
    demand_df = consolidate_demand(model.demand, model.demand_multiplier)
    full_map = retag_links(consolidate_links(model, demand_df, latency_scale), operator_focus)

    # Enumerate all players (except Private/Public tags)
    players = sorted((set(full_map["Operator1"]) | set(full_map["Operator2"])) - {OPERATOR_PUBLIC, OPERATOR_PRIVATE})
    v = CoalitionValuer(path_primitives(full_map, demand_df, players), players, latency_scale)
    tags = [p for p in players if p != OPERATOR_OTHERS]
    index = {p: k for k, p in enumerate(players)}

    exact = len(tags) <= max_links
    if exact:
        shapley = exact_shapley(v, len(players), cancel)
        values = {tag: shapley[index[tag]] for tag in tags}
    else:
        logger.warning("linkestimate: %d links for %s exceeds %d, using leave-one-out marginals",
                       len(tags), operator_focus, max_links)
        grand = v.grand_mask
        values = {}
        for tag in tags:
            _check_cancel(cancel)
            values[tag] = v(grand) - v(grand & ~(1 << index[tag]))

    # Prepare and return output, one row per focus link in link-table order
    schedule = private_links.loc[owned, ["Device1", "Device2", "Bandwidth", "Latency"]].copy()
    schedule["Value"] = [values[str(k + 1)] for k in range(len(schedule))]
    schedule = schedule.reset_index(drop=True)
    percent = np.maximum(schedule["Value"].to_numpy(dtype=float), 0.0)
    schedule["Percent"] = percent / percent.sum() if percent.sum() > 0 else percent
    schedule.attrs["exact"] = exact
    logger.info("linkestimate: valued %d link(s) of %s (%s)", len(schedule), operator_focus,
                "exact" if exact else "leave-one-out")
    return schedule
