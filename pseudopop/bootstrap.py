from __future__ import annotations

import dataclasses
import logging
import os
import time
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable

import numpy as np

from ._exceptions import BootstrapError
from .estimators.outcome import EstimateRecord
from .table import ObservationTable

logger = logging.getLogger(__name__)

_BOOTSTRAP_N       = 1000
_BOOTSTRAP_SEED    = 42
_FAILURE_THRESHOLD = 0.10
_ALPHA             = 0.05

INTERVAL_METHODS = ("percentile", "t")
POINT_ESTIMATES  = ("apparent", "mean")

APPARENT_ID = 0

RefitFn = Callable[[ObservationTable, int], EstimateRecord]


# ── Configuration ─────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class BootstrapConfig:
    """
    Settings for a bootstrap run.

    The defaults give 1000 replicates, a studentized 95% interval centred on
    the apparent-sample estimate, a 10% failure tolerance and a fixed seed,
    so repeated runs on the same data reproduce the same interval.
    """

    replicate_count: int = _BOOTSTRAP_N
    interval_method: str = "t"
    failure_threshold: float = _FAILURE_THRESHOLD
    alpha: float = _ALPHA
    point_estimate: str = "apparent"
    seed: int | None = _BOOTSTRAP_SEED
    n_jobs: int | None = None
    timeout: float | None = None

    def __post_init__(self) -> None:
        _validate(
            self.replicate_count, self.interval_method, self.failure_threshold,
            self.alpha, self.point_estimate, self.n_jobs, self.timeout,
        )


def _validate(replicate_count, interval_method, failure_threshold, alpha, point_estimate, n_jobs, timeout) -> None:
    if int(replicate_count) < 2:
        raise ValueError(f"replicate_count must be at least 2, got {replicate_count}.")
    if interval_method not in INTERVAL_METHODS:
        raise ValueError(f"interval_method must be one of {INTERVAL_METHODS}, got {interval_method!r}.")
    if not 0.0 <= failure_threshold < 1.0:
        raise ValueError(f"failure_threshold must lie in [0, 1), got {failure_threshold}.")
    if not 0.0 < alpha < 1.0:
        raise ValueError(f"alpha must lie in (0, 1), got {alpha}.")
    if point_estimate not in POINT_ESTIMATES:
        raise ValueError(f"point_estimate must be one of {POINT_ESTIMATES}, got {point_estimate!r}.")
    if n_jobs is not None and n_jobs < 1:
        raise ValueError(f"n_jobs must be a positive integer, got {n_jobs}.")
    if timeout is not None and not timeout > 0:
        raise ValueError(f"timeout must be positive, got {timeout}.")


# ── Replicates ────────────────────────────────────────────────────────────────

class ReplicateStatus(str, Enum):
    PENDING = "pending"
    FITTED  = "fitted"
    FAILED  = "failed"


@dataclass
class Replicate:
    """
    One bootstrap resample, identified by row positions into the original table.

    Replicate ``0`` is the apparent sample: the original rows, in order.
    """

    id: int
    indices: np.ndarray = field(repr=False)
    apparent: bool = False
    status: ReplicateStatus = ReplicateStatus.PENDING
    record: EstimateRecord | None = None
    error: Exception | None = None


def generate_replicates(n_rows: int, replicate_count: int, rng=None) -> list[Replicate]:
    """
    Draw ``replicate_count`` with-replacement resamples of ``n_rows`` rows.

    The apparent replicate comes first, followed by replicates ``1..N``.
    ``rng`` may be a seed or a ``numpy.random.Generator``; all row indices are
    drawn up front, so the resamples depend only on the generator state and
    never on how replicates are scheduled.
    """
    if n_rows < 1:
        raise ValueError("Cannot resample an empty table.")
    if replicate_count < 1:
        raise ValueError(f"replicate_count must be positive, got {replicate_count}.")

    rng = np.random.default_rng(rng)
    replicates = [Replicate(APPARENT_ID, np.arange(n_rows), apparent=True)]
    for b in range(1, replicate_count + 1):
        replicates.append(Replicate(b, rng.integers(0, n_rows, size=n_rows)))
    return replicates


def _fit_replicate(table: ObservationTable, refit_fn: RefitFn, replicate: Replicate) -> EstimateRecord:
    data = table if replicate.apparent else table.take(replicate.indices)
    record = refit_fn(data, replicate.id)
    if not isinstance(record, EstimateRecord):
        raise TypeError(
            f"refit_fn must return an EstimateRecord, got {type(record).__name__}."
        )
    if record.replicate != replicate.id:
        record = dataclasses.replace(record, replicate=replicate.id)
    return record


def _settle(replicate: Replicate, outcome: Callable[[], EstimateRecord]) -> None:
    try:
        replicate.record = outcome()
        replicate.status = ReplicateStatus.FITTED
    except Exception as e:
        replicate.error = e
        replicate.status = ReplicateStatus.FAILED
        logger.debug("Replicate %d failed: %s: %s", replicate.id, type(e).__name__, e)


def _timed_out(timeout: float, n_unfinished: int, replicate_count: int) -> BootstrapError:
    return BootstrapError(
        f"Bootstrap timed out after {timeout:g}s with {n_unfinished} replicate(s) "
        f"unfinished; partial results were discarded.",
        replicate_count=replicate_count,
    )


def _run_replicates(
    table: ObservationTable,
    refit_fn: RefitFn,
    replicates: list[Replicate],
    n_jobs: int | None,
    timeout: float | None,
) -> None:
    n_boot = len(replicates) - 1
    pending = [r for r in replicates if r.status is ReplicateStatus.PENDING]

    if n_jobs == 1:
        deadline = None if timeout is None else time.monotonic() + timeout
        for i, rep in enumerate(pending):
            if deadline is not None and time.monotonic() > deadline:
                raise _timed_out(timeout, len(pending) - i, n_boot)
            _settle(rep, lambda rep=rep: _fit_replicate(table, refit_fn, rep))
        return

    workers = n_jobs or os.cpu_count() or 1
    executor = ThreadPoolExecutor(max_workers=workers)
    try:
        futures = {
            executor.submit(_fit_replicate, table, refit_fn, rep): rep for rep in pending
        }
        done, not_done = wait(futures, timeout=timeout)
        if not_done:
            executor.shutdown(wait=False, cancel_futures=True)
            raise _timed_out(timeout, len(not_done), n_boot)
        for future in done:
            _settle(futures[future], future.result)
    finally:
        executor.shutdown(wait=False, cancel_futures=True)


# ── Intervals ─────────────────────────────────────────────────────────────────

def percentile_interval(estimates, alpha: float = _ALPHA) -> tuple[float, float]:
    """Empirical ``alpha/2`` and ``1 - alpha/2`` quantiles of the replicate estimates."""
    lo, hi = np.quantile(np.asarray(estimates, dtype=float), [alpha / 2, 1 - alpha / 2])
    return float(lo), float(hi)


def studentized_interval(
    estimates,
    std_errs,
    apparent_estimate: float,
    alpha: float = _ALPHA,
) -> tuple[float, float]:
    """
    Bootstrap-t interval.

    Each replicate contributes the pivot ``(estimate - apparent) / std_err``.
    The pivot quantiles are scaled by the standard deviation of the replicate
    estimates and subtracted from the apparent estimate.
    """
    est = np.asarray(estimates, dtype=float)
    se = np.asarray(std_errs, dtype=float)
    bad = ~np.isfinite(se) | (se <= 0.0)
    if np.any(bad):
        raise BootstrapError(
            f"Studentized interval needs a positive standard error on every "
            f"replicate; {int(bad.sum())} replicate(s) have none. Use "
            f"interval_method='percentile' or a refit that reports standard errors."
        )
    pivots = (est - apparent_estimate) / se
    q_lo, q_hi = np.quantile(pivots, [alpha / 2, 1 - alpha / 2])
    scale = float(np.std(est, ddof=1))
    return float(apparent_estimate - q_hi * scale), float(apparent_estimate - q_lo * scale)


# ── Result ────────────────────────────────────────────────────────────────────

class BootstrapResult:
    """
    The outcome of a successful bootstrap run.

    Holds the apparent-sample record, the surviving replicate records and
    the failures that were tolerated. The interval is computed on
    construction; ``interval()`` recomputes it for another confidence level
    or method over the same replicate set.
    """

    status = "succeeded"

    def __init__(
        self,
        apparent: EstimateRecord,
        records: list[EstimateRecord],
        failures: list[tuple[int, Exception]],
        replicate_count: int,
        interval_method: str = "t",
        alpha: float = _ALPHA,
        point_estimate: str = "apparent",
    ) -> None:
        self._apparent = apparent
        self._records = sorted(records, key=lambda r: r.replicate)
        self._failures = list(failures)
        self._replicate_count = replicate_count
        self._interval_method = interval_method
        self._alpha = alpha
        self._point_estimate = point_estimate
        self._estimates = np.array([r.estimate for r in self._records], dtype=float)
        self._std_errs = np.array(
            [np.nan if r.std_err is None else r.std_err for r in self._records], dtype=float
        )
        self._lower, self._upper = self.interval()

    @property
    def point_estimate(self) -> float:
        """Apparent-sample estimate, or the replicate mean when configured so."""
        if self._point_estimate == "mean":
            return float(np.mean(self._estimates))
        return float(self._apparent.estimate)

    @property
    def lower(self) -> float:
        return self._lower

    @property
    def upper(self) -> float:
        return self._upper

    @property
    def conf_int(self) -> tuple[float, float]:
        return (self._lower, self._upper)

    @property
    def n_used(self) -> int:
        """Replicates that entered the interval (the apparent sample excluded)."""
        return len(self._records)

    @property
    def n_failed(self) -> int:
        return len(self._failures)

    @property
    def replicate_count(self) -> int:
        return self._replicate_count

    @property
    def failures(self) -> list[tuple[int, Exception]]:
        """``(replicate_id, exception)`` for each tolerated failure."""
        return list(self._failures)

    @property
    def apparent(self) -> EstimateRecord:
        return self._apparent

    @property
    def records(self) -> list[EstimateRecord]:
        return list(self._records)

    @property
    def estimates(self) -> np.ndarray:
        """Replicate estimates ordered by replicate id, for diagnostics."""
        return self._estimates.copy()

    @property
    def std_err(self) -> float:
        """Bootstrap standard error: standard deviation of the replicate estimates."""
        return float(np.std(self._estimates, ddof=1))

    @property
    def bias(self) -> float:
        """Mean replicate estimate minus the apparent estimate."""
        return float(np.mean(self._estimates) - self._apparent.estimate)

    @property
    def interval_method(self) -> str:
        return self._interval_method

    @property
    def alpha(self) -> float:
        return self._alpha

    def interval(self, alpha: float | None = None, method: str | None = None) -> tuple[float, float]:
        alpha = self._alpha if alpha is None else alpha
        method = self._interval_method if method is None else method
        if method not in INTERVAL_METHODS:
            raise ValueError(f"method must be one of {INTERVAL_METHODS}, got {method!r}.")
        if method == "percentile":
            return percentile_interval(self._estimates, alpha)
        return studentized_interval(self._estimates, self._std_errs, self._apparent.estimate, alpha)

    def to_dict(self) -> dict:
        return {
            "point_estimate": self.point_estimate,
            "lower": self._lower,
            "upper": self._upper,
            "n_used": self.n_used,
            "n_failed": self.n_failed,
        }

    def summary(self) -> str:
        method = "studentized (t)" if self._interval_method == "t" else "percentile"
        level = 100 * (1 - self._alpha)
        lines = [
            "",
            "Bootstrap Estimate",
            "─" * 50,
            f"  Point estimate       : {self.point_estimate:>10.4f}  ({self._point_estimate})",
            f"  Apparent estimate    : {self._apparent.estimate:>10.4f}",
            f"  Bootstrap bias       : {self.bias:>+10.4f}",
            f"  Bootstrap std. error : {self.std_err:>10.4f}",
            f"  {f'{level:g}% CI':<21}: [{self._lower:.4f}, {self._upper:.4f}]  ({method})",
            f"  Replicates used      : {self.n_used:>10d}  of {self._replicate_count}",
            f"  Replicates failed    : {self.n_failed:>10d}",
            "",
        ]
        return "\n".join(lines)

    def __repr__(self) -> str:
        return self.summary()


# ── Driver ────────────────────────────────────────────────────────────────────

def bootstrap_estimate(
    table: ObservationTable,
    refit_fn: RefitFn,
    replicate_count: int = _BOOTSTRAP_N,
    interval_method: str = "t",
    failure_threshold: float = _FAILURE_THRESHOLD,
    alpha: float = _ALPHA,
    point_estimate: str = "apparent",
    seed=_BOOTSTRAP_SEED,
    n_jobs: int | None = None,
    timeout: float | None = None,
    apparent: EstimateRecord | None = None,
) -> BootstrapResult:
    """
    Bootstrap the full estimation procedure and build a confidence interval.

    ``refit_fn(table, replicate_id)`` is applied to the apparent sample and to
    ``replicate_count`` resamples. It must refit everything that was estimated
    from the data (exposure model, weights and outcome model) so the interval
    reflects propensity-model uncertainty, and return an ``EstimateRecord``.

    Parameters
    ----------
    table : ObservationTable
        The original sample.
    refit_fn : callable
        ``(ObservationTable, int) -> EstimateRecord``.
    replicate_count : int
        Number of resamples, not counting the apparent sample.
    interval_method : str
        ``"t"`` (studentized, needs ``std_err`` on every record) or ``"percentile"``.
    failure_threshold : float
        Largest tolerated fraction of failed replicates.
    alpha : float
        One minus the confidence level.
    point_estimate : str
        ``"apparent"`` or ``"mean"`` of the replicate estimates.
    seed : int or numpy.random.Generator, optional
        Source of randomness for the resamples.
    n_jobs : int, optional
        Worker threads; defaults to the CPU count. ``1`` runs in-process.
    timeout : float, optional
        Seconds before the run is abandoned.
    apparent : EstimateRecord, optional
        An existing fit of ``refit_fn`` on the original sample. It becomes
        replicate ``0`` and the apparent sample is not refitted.

    Raises
    ------
    ``BootstrapError``
        If the refit fails on the apparent sample, more than
        ``failure_threshold`` of the replicates fail, fewer than two
        replicates survive, the studentized interval lacks standard errors,
        or the run times out.
    """
    _validate(replicate_count, interval_method, failure_threshold, alpha, point_estimate, n_jobs, timeout)

    replicates = generate_replicates(len(table), replicate_count, seed)
    if apparent is not None:
        replicates[0].record = dataclasses.replace(apparent, replicate=APPARENT_ID)
        replicates[0].status = ReplicateStatus.FITTED
    started = time.monotonic()
    _run_replicates(table, refit_fn, replicates, n_jobs, timeout)

    first, resamples = replicates[0], replicates[1:]
    failures = [(r.id, r.error) for r in resamples if r.status is ReplicateStatus.FAILED]

    if first.status is ReplicateStatus.FAILED:
        raise BootstrapError(
            f"Refit failed on the apparent (original) sample: "
            f"{type(first.error).__name__}: {first.error}",
            failures=[(first.id, first.error)] + failures,
            replicate_count=replicate_count,
        )

    n_failed = len(failures)
    if n_failed / replicate_count > failure_threshold:
        causes = sorted({type(e).__name__ for _, e in failures})
        raise BootstrapError(
            f"{n_failed} of {replicate_count} bootstrap replicates failed "
            f"(> {failure_threshold:.0%} allowed). Failure types: {causes}. "
            f"Systematic failure usually means the exposure model is misspecified "
            f"or positivity is violated.",
            failures=failures,
            replicate_count=replicate_count,
        )
    if n_failed:
        logger.warning(
            "%d of %d bootstrap replicates failed and were excluded", n_failed, replicate_count
        )

    records = [r.record for r in resamples if r.status is ReplicateStatus.FITTED]
    if len(records) < 2:
        raise BootstrapError(
            f"Only {len(records)} replicate(s) succeeded; at least 2 are needed.",
            failures=failures,
            replicate_count=replicate_count,
        )

    result = BootstrapResult(
        first.record,
        records,
        failures,
        replicate_count,
        interval_method=interval_method,
        alpha=alpha,
        point_estimate=point_estimate,
    )
    logger.info(
        "Bootstrap finished in %.1fs: %d replicates used, %d failed",
        time.monotonic() - started, result.n_used, result.n_failed,
    )
    return result
