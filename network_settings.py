# Packages
from __future__ import annotations
import os
from dataclasses import dataclass, fields
from typing import Any, Callable, Dict, Optional
from dotenv import load_dotenv

# Environment variable prefix for every setting (e.g. ATTRIBUTION_POLL_INTERVAL)
ENV_PREFIX = "ATTRIBUTION_"

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}

def _parse_bool(raw: str) -> bool:
    value = raw.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ValueError(f"not a boolean: {raw!r}")

_PARSERS: Dict[type, Callable[[str], Any]] = {int: int, float: float, bool: _parse_bool}

@dataclass(frozen=True)
class Settings:
    """
    Tunables for the attribution service. Durations are in seconds.

    Model scalars (operator_uptime, contiguity_bonus, demand_multiplier) are copied onto
    every NetworkModel the builder produces; the remaining fields drive the builder,
    the Shapley computation and the cache.
    """

    # Cache scheduling
    poll_interval: float = 3600.0
    refresh_timeout: float = 600.0
    stop_timeout: float = 5.0
    epoch_timeout: float = 30.0

    # Coalition size control
    collapse_threshold: int = 5
    max_players: int = 15
    approximate: bool = False
    samples: int = 2000
    seed: int = 0

    # Value function
    latency_scale: float = 100.0
    operator_uptime: float = 0.98
    contiguity_bonus: float = 5.0
    demand_multiplier: float = 1.0

    # Network model builder
    link_uptime: float = 0.99
    traffic_window_hours: float = 24.0
    min_demand_weight: float = 0.01
    max_synthetic_demands: int = 10

    def __post_init__(self) -> None:
        for name in ("poll_interval", "refresh_timeout", "stop_timeout", "epoch_timeout",
                     "latency_scale", "traffic_window_hours"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        if not 0 < self.operator_uptime <= 1 or not 0 < self.link_uptime <= 1:
            raise ValueError("uptimes must be in (0, 1]")
        if not 0 < self.min_demand_weight <= 1:
            raise ValueError("min_demand_weight must be in (0, 1]")
        if self.collapse_threshold < 0 or self.max_players < 1 or self.samples < 1:
            raise ValueError("collapse_threshold, max_players and samples must be non-negative counts")
        if self.contiguity_bonus < 0 or self.demand_multiplier < 0 or self.max_synthetic_demands < 0:
            raise ValueError("contiguity_bonus, demand_multiplier and max_synthetic_demands must be non-negative")

    @classmethod
    def from_env(cls, env: Optional[Dict[str, str]] = None, dotenv_path: Optional[str] = None) -> "Settings":
        """
        Build settings from ATTRIBUTION_* environment variables.

        Parameters
        ----------
        env : dict, optional
            Mapping to read instead of os.environ; skips loading the .env file
        dotenv_path : str, optional
            Explicit .env file; by default python-dotenv searches upward from the cwd
        """
        if env is None:
            load_dotenv(dotenv_path)
            env = dict(os.environ)

        overrides: Dict[str, Any] = {}
        for f in fields(cls):
            raw = env.get(ENV_PREFIX + f.name.upper())
            if raw is None or raw.strip() == "":
                continue
            parser = _PARSERS[type(f.default)]
            try:
                overrides[f.name] = parser(raw)
            except ValueError as exc:
                raise ValueError(f"invalid {ENV_PREFIX + f.name.upper()}={raw!r}: {exc}") from exc
        return cls(**overrides)

    def simulate_options(self) -> Dict[str, Any]:
        """Keyword arguments forwarded to network_shapley()."""
        return dict(max_players=self.max_players, approximate=self.approximate, samples=self.samples,
                    seed=self.seed, latency_scale=self.latency_scale)
