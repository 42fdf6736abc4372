"""
A minimal, self-contained demonstration of operator and link attribution.

Run from the repo root with:
    python example_run.py
"""

from __future__ import annotations
import logging
import pandas as pd

from network_linkestimate import network_linkestimate
from network_model import NetworkModel
from network_shapley import collapse_small_operators, network_shapley

def build_sample_model() -> NetworkModel:
    """Return a small four-city network run by two operators."""
    private_links = pd.DataFrame(
        {
            "Device1":   ["SIN1", "FRA1", "FRA1"],
            "Device2":   ["FRA1", "AMS1", "LON1"],
            "Latency":   [50, 3, 5],
            "Bandwidth": [10, 10, 10],
            "Uptime":    [1, 1, 1],
            "Shared":    [pd.NA, pd.NA, pd.NA],
        }
    )

    devices = pd.DataFrame(
        {
            "Device":   ["SIN1", "FRA1", "AMS1", "LON1"],
            "Operator": ["Alpha", "Alpha", "Beta", "Beta"],
            "City":     ["SIN", "FRA", "AMS", "LON"],
        }
    )

    public_links = pd.DataFrame(
        {
            "City1":   ["SIN", "SIN", "FRA", "FRA"],
            "City2":   ["FRA", "AMS", "LON", "AMS"],
            "Latency": [100, 102, 7, 5],
        }
    )

    demand = pd.DataFrame(
        {
            "Start":     ["SIN", "SIN", "AMS", "AMS"],
            "End":       ["AMS", "LON", "LON", "FRA"],
            "Receivers": [1, 5, 2, 1],
            "Traffic":   [1, 1, 3, 3],
            "Priority":  [1, 2, 1, 1],
            "Type":      [1, 1, 2, 2],
            "Multicast": [True, True, False, False]
        }
    )

    return NetworkModel(
        devices=devices,
        private_links=private_links,
        public_links=public_links,
        demand=demand,
        operator_uptime=0.98,
        contiguity_bonus=5.0,
        demand_multiplier=1.0,
    )

def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    model = build_sample_model()

    result = network_shapley(collapse_small_operators(model, threshold=1))
    print("\nShapley results:\n")
    print(result.to_string(index=False))
    print(f"\nTotal network value: {result.attrs['total']:.4f}")

    links = network_linkestimate(model, operator_focus="Alpha")
    print("\nLink estimates for Alpha:\n")
    print(links.to_string(index=False))

if __name__ == "__main__":
    main()
