"""
Background cache of the latest operator attribution.

One polling thread watches the epoch and owns every write; readers take the current
immutable Snapshot without waiting on an in-flight refresh.
"""

# Packages
from __future__ import annotations
import logging
import threading
import time
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Tuple
import pandas as pd

from network_errors import AttributionError, ComputationTimeout
from network_model import LiveNetwork, NetworkModel, build_network_model, summarize_network
from network_settings import Settings
from network_shapley import collapse_small_operators, network_shapley
from network_telemetry import TelemetrySource

logger = logging.getLogger(__name__)

# Granularity of deadline and stop checks while a worker runs
_JOIN_SLICE = 0.25

Simulate = Callable[..., pd.DataFrame]

@dataclass(frozen=True)
class OperatorValue:
    operator: str
    value: float
    proportion: float

@dataclass(frozen=True, eq=False)
class Snapshot:
    """Everything a reader sees, replaced together on each successful refresh."""

    values: Tuple[OperatorValue, ...]
    total: float
    computed_at: datetime
    epoch: int
    exact: bool
    live_network: Optional[LiveNetwork]

class _Worker:
    """Runs one callable on a daemon thread and keeps its outcome."""

    def __init__(self, name: str, fn: Callable[[], Any]) -> None:
        self.result: Any = None
        self.error: Optional[BaseException] = None
        self._fn = fn
        self.thread = threading.Thread(target=self._run, name=name, daemon=True)
        self.thread.start()

    def _run(self) -> None:
        try:
            self.result = self._fn()
        except BaseException as exc:
            self.error = exc

    def alive(self) -> bool:
        return self.thread.is_alive()

class AttributionCache:
    """
    Epoch-driven cache of Shapley attributions.

    Parameters
    ----------
    source : TelemetrySource
        Read-only topology and traffic tables
    epoch_source : callable
        Returns the current epoch as an int; may raise
    settings : Settings, optional
        Poll interval, timeouts and computation options
    simulate : callable, optional
        Replacement for network_shapley(), called as
        `simulate(model, cancel=event, **settings.simulate_options())`
    """

    def __init__(
        self,
        source: TelemetrySource,
        epoch_source: Callable[[], int],
        settings: Optional[Settings] = None,
        simulate: Optional[Simulate] = None,
    ) -> None:
        self.source = source
        self.epoch_source = epoch_source
        self.settings = settings or Settings()
        self.simulate = simulate or network_shapley

        self._lock = threading.Lock()
        self._snapshot: Optional[Snapshot] = None
        self._last_epoch = 0

        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._inflight: Optional[_Worker] = None

        self._failures: Counter = Counter()
        self._refreshes = 0

    # Lifecycle

    def start(self) -> bool:
        """
        Begin polling in the background; the first refresh runs asynchronously.

        Returns False without starting when a polling loop is running, including one that
        outlived a timed-out stop().
        """
        if self._thread is not None and self._thread.is_alive():
            if self._stop.is_set():
                logger.warning("attribution cache: previous polling loop still shutting down, not restarting")
            else:
                logger.warning("attribution cache: already started")
            return False
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="attribution-cache", daemon=True)
        self._thread.start()
        logger.info("attribution cache: started (polling every %.0fs)", self.settings.poll_interval)
        return True

    def stop(self) -> None:
        """Cancel polling and wait up to stop_timeout for the loop to exit."""
        logger.info("attribution cache: stopping...")
        self._stop.set()
        thread = self._thread
        if thread is None:
            return
        thread.join(self.settings.stop_timeout)
        if thread.is_alive():
            logger.warning("attribution cache: stop timed out after %.1fs, continuing shutdown",
                           self.settings.stop_timeout)
        else:
            self._thread = None
            logger.info("attribution cache: stopped")

    # Reads

    def snapshot(self) -> Optional[Snapshot]:
        with self._lock:
            return self._snapshot

    def is_ready(self) -> bool:
        return self.snapshot() is not None

    def get_simulation(self) -> Tuple[Tuple[OperatorValue, ...], float, Optional[datetime], int]:
        """Cached values, total value, computation time and epoch; empty until the first refresh."""
        snap = self.snapshot()
        if snap is None:
            return (), 0.0, None, 0
        return snap.values, snap.total, snap.computed_at, snap.epoch

    def get_live_network(self) -> Optional[LiveNetwork]:
        snap = self.snapshot()
        return snap.live_network if snap is not None else None

    def stats(self) -> Dict[str, Any]:
        """Successful refresh count and failure counts keyed by error class name."""
        with self._lock:
            return {"refreshes": self._refreshes, "failures": dict(self._failures)}

    # Write path

    def _loop(self) -> None:
        # Run immediately on startup
        while not self._stop.is_set():
            try:
                self.check_and_refresh()
            except Exception:
                logger.exception("attribution cache: unexpected error in polling loop")
            if self._stop.wait(self.settings.poll_interval):
                break

    def check_and_refresh(self) -> None:
        """Read the epoch and refresh when nothing is cached yet or the epoch advanced."""
        if self._inflight is not None and self._inflight.alive():
            logger.warning("attribution cache: previous refresh still winding down, skipping this poll")
            return

        try:
            epoch = int(self._run_bounded("epoch", self.epoch_source, self.settings.epoch_timeout))
        except Exception as exc:
            self._record_failure(exc, "epoch query")
            # On first run with no cached data, still try to compute
            if not self.is_ready() and not self._stop.is_set():
                logger.info("attribution cache: no cached data yet, computing anyway...")
                self.refresh(0)
            return

        with self._lock:
            last_epoch, ready = self._last_epoch, self._snapshot is not None
        if not ready or epoch > last_epoch:
            logger.info("attribution cache: epoch %d detected (last=%d), computing...", epoch, last_epoch)
            self.refresh(epoch)

    def refresh(self, epoch: int) -> bool:
        """
        Recompute and publish attribution for `epoch`.

        Returns True when a new snapshot was published. Every failure is logged and counted;
        the previous snapshot stays in place.
        """
        started = time.monotonic()
        cancel = threading.Event()
        try:
            live, result = self._run_bounded("refresh", lambda: self._compute(cancel), self.settings.refresh_timeout,
                                             cancel)
        except Exception as exc:
            self._record_failure(exc, f"refresh for epoch {epoch}")
            return False

        values = tuple(OperatorValue(str(op), float(value), float(pct))
                       for op, value, pct in result[["Operator", "Value", "Percent"]].itertuples(index=False))
        total = float(result.attrs.get("total", sum(v.value for v in values)))
        snap = Snapshot(
            values=values,
            total=total,
            computed_at=datetime.now(timezone.utc),
            epoch=epoch,
            exact=bool(result.attrs.get("exact", True)),
            live_network=live,
        )
        with self._lock:
            self._snapshot = snap
            self._last_epoch = epoch
            self._refreshes += 1

        logger.info("attribution cache: refreshed in %.1fs (epoch=%d, operators=%d, total=%.4f)",
                    time.monotonic() - started, epoch, len(values), total)
        return True

    def _compute(self, cancel: threading.Event) -> Tuple[LiveNetwork, pd.DataFrame]:
        model: NetworkModel = build_network_model(self.source, self.settings, cancel=cancel)
        live = summarize_network(model)

        # Collapse small operators to keep coalition count tractable (2^n)
        reduced = collapse_small_operators(model, self.settings.collapse_threshold)
        result = self.simulate(reduced, cancel=cancel, **self.settings.simulate_options())
        return live, result

    def _run_bounded(self, name: str, fn: Callable[[], Any], timeout: float,
                     cancel: Optional[threading.Event] = None) -> Any:
        # Runs fn on a worker; on deadline or stop the worker is abandoned with its cancel event set
        worker = _Worker(f"attribution-{name}", fn)
        self._inflight = worker
        deadline = time.monotonic() + timeout
        while worker.alive():
            if self._stop.is_set():
                if cancel is not None:
                    cancel.set()
                raise ComputationTimeout(f"{name} abandoned: cache stopping")
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                if cancel is not None:
                    cancel.set()
                raise ComputationTimeout(f"{name} exceeded {timeout:.1f}s")
            worker.thread.join(min(_JOIN_SLICE, remaining))

        if worker.error is not None:
            raise worker.error
        return worker.result

    def _record_failure(self, exc: BaseException, what: str) -> None:
        with self._lock:
            self._failures[type(exc).__name__] += 1
        if isinstance(exc, AttributionError):
            if exc.retryable:
                logger.warning("attribution cache: %s failed: %s", what, exc)
            else:
                logger.error("attribution cache: %s failed: %s", what, exc)
        else:
            logger.error("attribution cache: %s failed: %s", what, exc, exc_info=exc)
