# Packages
from __future__ import annotations
import functools
import logging
import math
import threading
import time
from dataclasses import replace
from typing import Callable, Dict, FrozenSet, Iterable, Optional, Sequence
import numpy as np
import pandas as pd
from numpy.typing import NDArray
from scipy.sparse import csr_matrix
from scipy.sparse.csgraph import dijkstra

from network_errors import ComputationTimeout, NumericalInconsistency, PlayerCountTooLarge
from network_model import OPERATOR_OTHERS, OPERATOR_PRIVATE, OPERATOR_PUBLIC, NetworkModel

logger = logging.getLogger(__name__)

# Largest player count enumerated exactly (2^15 coalitions)
MAX_EXACT_PLAYERS = 15
# Coalitions are uint64 bitmasks
MAX_BITMASK_PLAYERS = 63
# Relative tolerance for the sum-to-total post-condition
EFFICIENCY_TOLERANCE = 1e-6
# Absolute slack used only when the grand coalition is worth nothing
_ZERO_TOTAL_TOLERANCE = 1e-12
# Latency (ms) at which path quality drops by a factor of e
DEFAULT_LATENCY_SCALE = 100.0
# Sparse graphs need strictly positive weights to keep an edge
_ZERO_COST = 1e-9

# Pseudo-operators whose edges every coalition may use
ALWAYS_AVAILABLE = (OPERATOR_PUBLIC, OPERATOR_PRIVATE)

ValueFunction = Callable[[FrozenSet[str]], float]

# Helper utilities
def _assert(cond: bool, msg: str) -> None:
    if not cond:
        raise ValueError(msg)

def _bits(n_bits: int) -> NDArray:
    # return (n_bits × 2^n_bits) bitmap where column j is binary of j
    cols = np.arange(2**n_bits, dtype=np.uint64)
    return ((cols[None] >> np.arange(n_bits, dtype=np.uint64)[:, None]) & np.uint64(1)).astype(np.uint8)

def _fact(v: NDArray) -> NDArray:
    return np.vectorize(math.factorial, otypes=[float])(v)

def _flag(s: pd.Series) -> pd.Series:
    if s.dtype == bool:
        return s
    return s.astype(str).str.strip().str.upper().isin(["TRUE", "T", "1", "YES"])

def _check_cancel(cancel: Optional[threading.Event]) -> None:
    if cancel is not None and cancel.is_set():
        raise ComputationTimeout("shapley computation cancelled")

def check_efficiency(values: NDArray, total: float) -> None:
    # Relative bound; NaN anywhere fails the comparison
    residual = abs(float(np.sum(values)) - total)
    bound = EFFICIENCY_TOLERANCE * abs(total) if total != 0 else _ZERO_TOTAL_TOLERANCE
    if not residual <= bound:
        raise NumericalInconsistency(f"operator values sum to {float(np.sum(values))!r}, grand coalition is {total!r}")

def check_inputs(model: NetworkModel) -> None:
    """
    Checks for integrity in the model and raises an error when a condition fails.

    Parameters
    ----------
    model : NetworkModel
        Devices, private links, public links and demand plus the model scalars
    """

    devices, private_links = model.devices, model.private_links
    public_links, demand = model.public_links, model.demand

    # Check the reserved operator name
    _assert(OPERATOR_PUBLIC not in model.operators,
            "Public is a protected keyword for operator names; choose another.")

    # Check there are no duplicate devices and every device is placed in a city
    _assert(not devices["Device"].duplicated().any(), "There are duplicated devices in the list.")
    _assert(devices["City"].notna().all(), "Every device must be located in a city.")
    _assert(devices["Operator"].notna().all(), "Every device must belong to an operator.")

    # Check that every switch in private_links appears in devices
    _assert((set(private_links["Device1"]) | set(private_links["Device2"])).issubset(set(devices["Device"])),
            "Not all devices are in the device table.")

    # Check link attributes
    _assert(bool((private_links["Latency"] >= 0).all() and (public_links["Latency"] >= 0).all()),
            "Latencies must be non-negative.")
    _assert(bool(private_links["Uptime"].between(0, 1).all()), "Link uptime must be between 0 and 1.")

    # Check demand and scalars
    _assert(bool((demand["Traffic"] >= 0).all()), "Demand traffic must be non-negative.")
    if "Priority" in demand.columns:
        _assert(bool((demand["Priority"] >= 0).all()), "Demand priority must be non-negative.")
    _assert(0 < model.operator_uptime <= 1, "operator_uptime must be between 0 (exclusive) and 1.")
    _assert(model.contiguity_bonus >= 0, "contiguity_bonus must be non-negative.")
    _assert(model.demand_multiplier >= 0, "demand_multiplier must be non-negative.")

def collapse_small_operators(model: NetworkModel, threshold: int) -> NetworkModel:
    """
    Merge operators with fewer than `threshold` devices into the Others pseudo-operator.

    Reduces the coalition count from 2^n to 2^k (k = surviving operators + 1). Links are
    untouched; their effective ownership follows the relabeled devices, so the grand
    coalition keeps exactly the same link set. Public and Private are never collapsed.
    """
    devices = model.devices
    real = devices.loc[~devices["Operator"].isin(ALWAYS_AVAILABLE + (OPERATOR_OTHERS,))]
    counts = real.groupby("Operator").size()
    small = sorted(counts.index[counts < threshold])
    if not small:
        return model

    devices = devices.copy()
    devices.loc[devices["Operator"].isin(small), "Operator"] = OPERATOR_OTHERS
    logger.info("shapley: collapsed %d operator(s) below %d devices into %s: %s",
                len(small), threshold, OPERATOR_OTHERS, ", ".join(small))
    return replace(model, devices=devices)

def consolidate_demand(
    demand: pd.DataFrame,
    demand_multiplier: float,
) -> pd.DataFrame:
    """
    Construct the demand table used by path_primitives()

    Parameters
    ----------
    demand : pandas.DataFrame
        Demand matrix `[Start, End, Receivers, Traffic, Priority, Type, Multicast]`
    demand_multiplier: float
        Extra multiplier to scale up demand

    Returns pandas.DataFrame
        `[Start, End, Weight]` with one row per city pair, where Weight is the value of a
        perfect-quality path
    """

    # Work on a copy to avoid mutating caller data
    demand_df = demand.copy()
    if demand_df.empty:
        return pd.DataFrame(columns=["Start", "End", "Weight"])
    demand_df["Start"] = demand_df["Start"].astype(str)
    demand_df["End"] = demand_df["End"].astype(str)

    # Multicast replicates traffic to every receiver; unicast counts once
    receivers = demand_df["Receivers"].astype(float) if "Receivers" in demand_df.columns else 1.0
    multicast = _flag(demand_df["Multicast"]) if "Multicast" in demand_df.columns else False
    priority = demand_df["Priority"].astype(float) if "Priority" in demand_df.columns else 1.0
    demand_df["Weight"] = (demand_df["Traffic"].astype(float) * priority * demand_multiplier *
                           np.where(multicast, receivers, 1.0))

    # Roll up rows sharing a city pair
    return (demand_df.groupby(["Start", "End"], as_index=False)["Weight"].sum()
            .sort_values(["Start", "End"]).reset_index(drop=True))

def consolidate_links(
    model: NetworkModel,
    demand_df: pd.DataFrame,
    latency_scale: float = DEFAULT_LATENCY_SCALE,
) -> pd.DataFrame:
    """
    Construct a single directed edge table, using private links, public links and helper edges

    Parameters
    ----------
    model : NetworkModel
        Devices, private and public links, and the uptime / contiguity scalars
    demand_df : pandas.DataFrame
        Consolidated demand `[Start, End, Weight]`
    latency_scale : float
        Latency (ms) at which path quality drops by a factor of e

    Returns pandas.DataFrame
        `[Node1, Node2, Cost, Operator1, Operator2, Kind, Link]`. Private link costs carry the
        uptime discount as `latency_scale * -ln(uptime)`; crossovers between a device and its
        city's public node cost `contiguity_bonus`; demand on/off ramps cost nothing. `Link` is
        the private link row number (-1 for every other edge)
    """

    # Work on copies to avoid mutating caller data
    private_df = model.private_links.copy()
    public_df = model.public_links.copy()
    devices_df = model.devices.copy()
    devices_df["Operator"] = devices_df["Operator"].astype(str)
    devices_df["City"] = devices_df["City"].astype(str)
    columns = ["Node1", "Node2", "Cost", "Operator1", "Operator2", "Kind", "Link"]

    # Owners of each private link are the operators of its endpoints
    private_df["Link"] = np.arange(len(private_df))
    operators = devices_df.set_index("Device")["Operator"]
    private_df["Operator1"] = private_df["Device1"].map(operators)
    private_df["Operator2"] = private_df["Device2"].map(operators)

    # Fold link and operator uptime into the cost; a link that is never up is unusable
    with np.errstate(divide="ignore"):
        reliability = private_df["Uptime"].astype(float).to_numpy() * model.operator_uptime
        private_df["Cost"] = private_df["Latency"].astype(float).to_numpy() - latency_scale * np.log(reliability)
    private_df["Node1"] = "dev:" + private_df["Device1"].astype(str)
    private_df["Node2"] = "dev:" + private_df["Device2"].astype(str)
    private_df["Kind"] = "private"

    # Duplicate private links, so the edge table represents one-way flows only
    rev = private_df.copy()
    rev[["Node1", "Node2"]] = rev[["Node2", "Node1"]].to_numpy()
    rev[["Operator1", "Operator2"]] = rev[["Operator2", "Operator1"]].to_numpy()
    private_df = pd.concat([private_df, rev], ignore_index=True)[columns]

    # Duplicate public links between city public nodes
    public_df = pd.DataFrame({"Node1": "pub:" + public_df["City1"].astype(str),
                              "Node2": "pub:" + public_df["City2"].astype(str),
                              "Cost": public_df["Latency"].astype(float)})
    rev_public = public_df.rename(columns={"Node1": "Node2", "Node2": "Node1"})
    public_df = pd.concat([public_df, rev_public], ignore_index=True)
    public_df = public_df.assign(Operator1=OPERATOR_PUBLIC, Operator2=OPERATOR_PUBLIC, Kind="public", Link=-1)

    # For every device, create crossover points to its city's public node where contiguity_bonus is levied
    dev_nodes = "dev:" + devices_df["Device"].astype(str)
    pub_nodes = "pub:" + devices_df["City"]
    crossover = pd.concat([
        pd.DataFrame({"Node1": dev_nodes, "Node2": pub_nodes}),
        pd.DataFrame({"Node1": pub_nodes, "Node2": dev_nodes}),
    ], ignore_index=True)
    crossover = crossover.assign(Cost=float(model.contiguity_bonus),
                                 Operator1=pd.concat([devices_df["Operator"]] * 2, ignore_index=True),
                                 Kind="crossover", Link=-1)
    crossover["Operator2"] = crossover["Operator1"]

    # For demand starting and ending points, add direct on-ramps to public and private networks alike
    ramps = []
    for city in sorted(pd.unique(demand_df["Start"])):
        ramps.append(dict(Node1=f"src:{city}", Node2=f"pub:{city}", Operator1=OPERATOR_PUBLIC))
        for device, op in devices_df.loc[devices_df["City"] == city, ["Device", "Operator"]].itertuples(index=False):
            ramps.append(dict(Node1=f"src:{city}", Node2=f"dev:{device}", Operator1=op))
    for city in sorted(pd.unique(demand_df["End"])):
        ramps.append(dict(Node1=f"pub:{city}", Node2=f"dst:{city}", Operator1=OPERATOR_PUBLIC))
        for device, op in devices_df.loc[devices_df["City"] == city, ["Device", "Operator"]].itertuples(index=False):
            ramps.append(dict(Node1=f"dev:{device}", Node2=f"dst:{city}", Operator1=op))
    ramps_df = pd.DataFrame(ramps, columns=["Node1", "Node2", "Operator1"])
    ramps_df = ramps_df.assign(Cost=0.0, Operator2=ramps_df["Operator1"], Kind="ramp", Link=-1)

    # Return fully consolidated map of private, public and helper edges
    return pd.concat(
        [private_df, public_df[columns], crossover[columns], ramps_df[columns]],
        ignore_index=True
    )

def path_primitives(
    link_df: pd.DataFrame,
    demand_df: pd.DataFrame,
    operators: Sequence[str],
) -> Dict[str, object]:
    """
    Translate the edge table and demand into arrays evaluated once per coalition

    Parameters
    ----------
    link_df : pandas.DataFrame
        Full edge table from consolidate_links() `[Node1, Node2, Cost, Operator1, Operator2, ...]`
    demand_df : pandas.DataFrame
        Consolidated demand `[Start, End, Weight]`
    operators : sequence of str
        Coalition players; player k owns bit k of a coalition mask

    Returns dict with keys:
        n_nodes        : int     – number of graph nodes
        rows/cols/cost : ndarray – edges sorted by (row, col, cost)
        key            : ndarray – row * n_nodes + col per edge
        req            : ndarray – uint64 mask of players an edge needs (0 = always available)
        sources        : ndarray – node index of every distinct demand origin
        demand_src     : ndarray – per demand, row in the distance matrix of its origin
        demand_dst     : ndarray – per demand, node index of its destination
        weight         : ndarray – per demand, value of a perfect path
    """

    _assert(len(operators) <= MAX_BITMASK_PLAYERS, "Too many players for a 64-bit coalition mask.")
    bit = {op: np.uint64(1) << np.uint64(k) for k, op in enumerate(operators)}
    bit.update({op: np.uint64(0) for op in ALWAYS_AVAILABLE})
    owners = set(link_df["Operator1"]) | set(link_df["Operator2"])
    _assert(owners.issubset(bit.keys()), f"Edges owned by unknown operators: {sorted(owners - bit.keys())}")

    # Drop edges that can never be used
    link_df = link_df.loc[np.isfinite(link_df["Cost"].astype(float))]

    # Enumerate all nodes with indices
    src_nodes = "src:" + demand_df["Start"].astype(str)
    dst_nodes = "dst:" + demand_df["End"].astype(str)
    nodes = np.sort(pd.unique(np.concatenate([link_df["Node1"].to_numpy(), link_df["Node2"].to_numpy(),
                                              src_nodes.to_numpy(), dst_nodes.to_numpy()])))
    node_idx = {n: i for i, n in enumerate(nodes)}
    n_nodes = len(nodes)

    # Sort edges so the first occurrence of a (row, col) pair is its cheapest parallel edge
    rows = link_df["Node1"].map(node_idx).to_numpy(dtype=np.int64)
    cols = link_df["Node2"].map(node_idx).to_numpy(dtype=np.int64)
    cost = np.maximum(link_df["Cost"].to_numpy(dtype=float), _ZERO_COST)
    req = (link_df["Operator1"].map(bit).to_numpy(dtype=np.uint64) |
           link_df["Operator2"].map(bit).to_numpy(dtype=np.uint64))
    key = rows * n_nodes + cols
    order = np.lexsort((cost, key))

    # Shortest paths are solved once per distinct origin
    sources = np.sort(pd.unique(src_nodes.map(node_idx).to_numpy(dtype=np.int64)))
    src_row = {s: i for i, s in enumerate(sources)}

    return dict(
        n_nodes=n_nodes,
        rows=rows[order],
        cols=cols[order],
        cost=cost[order],
        key=key[order],
        req=req[order],
        sources=sources,
        demand_src=np.array([src_row[node_idx[n]] for n in src_nodes], dtype=np.int64),
        demand_dst=dst_nodes.map(node_idx).to_numpy(dtype=np.int64),
        weight=demand_df["Weight"].to_numpy(dtype=float),
    )

class CoalitionValuer:
    """
    Network value of a coalition, memoized per bitmask within one computation.

    For each demand the best path from its origin to its destination uses only edges the
    coalition may use: public links and Public/Private-owned edges always, other edges only
    when every owning operator is a member. Path quality is exp(-cost / latency_scale), so it
    equals exp(-latency / scale) times the product of traversed uptimes times a contiguity
    factor for every private/public crossover. A demand with no path is worth zero.
    """

    def __init__(self, prim: Dict[str, object], operators: Sequence[str],
                 latency_scale: float = DEFAULT_LATENCY_SCALE) -> None:
        _assert(latency_scale > 0, "latency_scale must be positive.")
        self.prim = prim
        self.operators = list(operators)
        self.latency_scale = latency_scale
        self._bit = {op: 1 << k for k, op in enumerate(self.operators)}
        self.value = functools.lru_cache(maxsize=None)(self._evaluate)

    @classmethod
    def for_model(cls, model: NetworkModel, operators: Optional[Sequence[str]] = None,
                  latency_scale: float = DEFAULT_LATENCY_SCALE) -> "CoalitionValuer":
        operators = model.operators if operators is None else list(operators)
        demand_df = consolidate_demand(model.demand, model.demand_multiplier)
        link_df = consolidate_links(model, demand_df, latency_scale)
        return cls(path_primitives(link_df, demand_df, operators), operators, latency_scale)

    @property
    def grand_mask(self) -> int:
        return (1 << len(self.operators)) - 1

    def mask_of(self, coalition: Iterable[str]) -> int:
        mask = 0
        for op in coalition:
            if op in ALWAYS_AVAILABLE:
                continue
            _assert(op in self._bit, f"Unknown operator in coalition: {op}")
            mask |= self._bit[op]
        return mask

    def __call__(self, mask: int) -> float:
        return self.value(mask)

    def _evaluate(self, mask: int) -> float:
        p = self.prim
        if len(p["weight"]) == 0:
            return 0.0

        # Keep edges whose owners are all in the coalition, cheapest per node pair
        available = np.flatnonzero((p["req"] & ~np.uint64(mask)) == 0)
        _, first = np.unique(p["key"][available], return_index=True)
        idx = available[first]
        graph = csr_matrix((p["cost"][idx], (p["rows"][idx], p["cols"][idx])),
                           shape=(p["n_nodes"], p["n_nodes"]))

        # Best path per demand; unreachable destinations have infinite cost and zero quality
        dist = dijkstra(graph, directed=True, indices=p["sources"])
        quality = np.exp(-dist[p["demand_src"], p["demand_dst"]] / self.latency_scale)
        return float(np.dot(p["weight"], quality))

def coalition_value(
    model: NetworkModel,
    coalition: Iterable[str],
    latency_scale: float = DEFAULT_LATENCY_SCALE,
) -> float:
    """
    Network value realized by a coalition of operators

    Parameters
    ----------
    model : NetworkModel
        Network to evaluate
    coalition : iterable of str
        Operator names; Public and Private are always implied
    latency_scale : float
        Latency (ms) at which path quality drops by a factor of e

    Returns float
        Sum over demands of weight × path quality; the empty coalition still has the public
        internet, so its value is generally positive
    """
    check_inputs(model)
    valuer = CoalitionValuer.for_model(model, latency_scale=latency_scale)
    return valuer(valuer.mask_of(coalition))

def exact_shapley(v: Callable[[int], float], n_ops: int,
                  cancel: Optional[threading.Event] = None) -> NDArray:
    """Shapley values by enumerating all 2^n coalitions of n players."""

    # Construct coalitions bitmap: bitmap[i, j] = 1 iff operator i is in coalition j
    bitmap = _bits(n_ops)
    n_coal = 2 ** n_ops
    size = bitmap.sum(axis=0).astype(int)

    # Iterate over coalitions and record the value of each set of operators (plus public links)
    svalue = np.zeros(n_coal)
    for idx in range(n_coal):
        _check_cancel(cancel)
        svalue[idx] = v(idx)

    # Compute per-operator Shapley value by comparing coalitions with/without operator
    shapley = np.zeros(n_ops)
    fact_n = math.factorial(n_ops)
    for k in range(n_ops):
        with_op = np.where(bitmap[k] == 1)[0] # coalitions with operator
        without_op = with_op - (1 << k) # bitshift for coalitions without operator
        w = _fact(size[with_op] - 1) * _fact(n_ops - size[with_op]) / fact_n # do weight calculation
        shapley[k] = np.sum(w * (svalue[with_op] - svalue[without_op]))
    return shapley

def sampled_shapley(v: Callable[[int], float], n_ops: int, samples: int, seed: int = 0,
                    cancel: Optional[threading.Event] = None) -> NDArray:
    """
    Shapley values estimated from `samples` random join orders.

    Each order's marginal contributions telescope to v(N) - v(∅), so the estimate keeps the
    sum-to-total property exactly.
    """
    rng = np.random.default_rng(seed)
    shapley = np.zeros(n_ops)
    empty = v(0)
    for _ in range(samples):
        _check_cancel(cancel)
        mask, prev = 0, empty
        for k in rng.permutation(n_ops):
            mask |= 1 << int(k)
            cur = v(mask)
            shapley[k] += cur - prev
            prev = cur
    return shapley / samples

def network_shapley(
    model: NetworkModel,
    max_players: int = MAX_EXACT_PLAYERS,
    approximate: bool = False,
    samples: int = 2000,
    seed: int = 0,
    latency_scale: float = DEFAULT_LATENCY_SCALE,
    value_function: Optional[ValueFunction] = None,
    cancel: Optional[threading.Event] = None,
) -> pd.DataFrame:
    """
    Compute Shapley values per operator

    Parameters
    ----------
    model : NetworkModel
        Network to attribute, usually after collapse_small_operators()
    max_players : int
        Largest player count enumerated exactly
    approximate : bool
        Above max_players, sample join orders instead of raising PlayerCountTooLarge
    samples : int
        Number of sampled join orders when approximating
    seed : int
        Seed for the join-order sampler
    latency_scale : float
        Latency (ms) at which path quality drops by a factor of e
    value_function : callable, optional
        Replacement for the path-quality value function, called with a frozenset of operators
    cancel : threading.Event, optional
        Checked between coalition evaluations; when set the computation raises ComputationTimeout

    Returns pandas.DataFrame
        Value and percent of value ascribed to each operator, led by a Public row carrying the
        public-internet baseline v(∅), so that Value sums to v(N). `attrs` holds `total`,
        `exact` and `players`
    """
    started = time.monotonic()

    # Check integrity in inputs
    check_inputs(model)

    # Enumerate all operators (except Private/Public tags)
    operators = model.operators
    n_ops = len(operators)
    exact = n_ops <= max_players
    if not exact and not approximate:
        raise PlayerCountTooLarge(n_ops, max_players)
    _assert(n_ops <= MAX_BITMASK_PLAYERS, "Too many operators for a 64-bit coalition mask.")

    # Build the value function over coalition bitmasks
    if value_function is None:
        v = CoalitionValuer.for_model(model, operators, latency_scale)
    else:
        bits = {op: 1 << k for k, op in enumerate(operators)}
        v = functools.lru_cache(maxsize=None)(
            lambda mask: float(value_function(frozenset(op for op, b in bits.items() if mask & b))))

    if exact:
        shapley = exact_shapley(v, n_ops, cancel)
    else:
        logger.warning("shapley: %d players exceeds %d, sampling %d join orders", n_ops, max_players, samples)
        shapley = sampled_shapley(v, n_ops, samples, seed, cancel)

    # The public baseline is what the empty coalition already achieves
    baseline = v(0)
    total = v((1 << n_ops) - 1)
    values = np.concatenate(([baseline], shapley))

    # Values must add up to the grand coalition
    check_efficiency(values, total)

    # Cast into percentages
    percent = np.maximum(values, 0)
    percent = percent / percent.sum() if percent.sum() > 0 else percent

    result = pd.DataFrame({
        "Operator": [OPERATOR_PUBLIC] + list(operators),
        "Value": values,
        "Percent": percent,
    })
    result.attrs.update(total=total, exact=exact, players=n_ops)
    logger.info("shapley: %d players (%s), v(N)=%.4f, v(∅)=%.4f in %.2fs",
                n_ops, "exact" if exact else "sampled", total, baseline, time.monotonic() - started)
    return result

def compare_networks(
    baseline: NetworkModel,
    modified: NetworkModel,
    **options,
) -> pd.DataFrame:
    """
    Attribute two versions of a network and report per-operator deltas

    Parameters
    ----------
    baseline : NetworkModel
        Network as it is
    modified : NetworkModel
        Network with proposed changes (added links, removed operators, ...)
    **options
        Forwarded to network_shapley()

    Returns pandas.DataFrame
        `[Operator, BaselineValue, ModifiedValue, ValueDelta, BaselinePercent, ModifiedPercent,
        PercentDelta]` sorted by operator; operators missing on one side count as zero.
        `attrs` holds `baseline_total` and `modified_total`
    """
    base = network_shapley(baseline, **options)
    mod = network_shapley(modified, **options)

    merged = base.rename(columns={"Value": "BaselineValue", "Percent": "BaselinePercent"}).merge(
        mod.rename(columns={"Value": "ModifiedValue", "Percent": "ModifiedPercent"}),
        on="Operator", how="outer",
    ).fillna(0.0).sort_values("Operator").reset_index(drop=True)
    merged["ValueDelta"] = merged["ModifiedValue"] - merged["BaselineValue"]
    merged["PercentDelta"] = merged["ModifiedPercent"] - merged["BaselinePercent"]

    merged = merged[["Operator", "BaselineValue", "ModifiedValue", "ValueDelta",
                     "BaselinePercent", "ModifiedPercent", "PercentDelta"]]
    merged.attrs.update(baseline_total=base.attrs["total"], modified_total=mod.attrs["total"])
    return merged
