from __future__ import annotations


class DomainError(ValueError):
    """
    Raised when weight computation receives numerically invalid input.

    Typical causes are a fitted probability of exactly 0 or 1 for a unit whose
    observed exposure sits at that boundary (a positivity violation), or a
    non-positive residual scale for a continuous exposure model.

    ``index`` is the position of the first offending observation, or ``None``
    when the problem is not tied to a single observation.
    """

    def __init__(self, message: str, index: int | None = None) -> None:
        super().__init__(message)
        self.index = index


class EstimationError(Exception):
    """
    Raised when the weighted outcome model cannot be fitted.

    Carries the rank of the weighted design matrix and the number of NaN
    weights, so the cause can be read off the exception directly.
    """

    def __init__(self, message: str, rank: int | None = None, nan_count: int = 0) -> None:
        super().__init__(message)
        self.rank = rank
        self.nan_count = nan_count


class BootstrapError(Exception):
    """
    Raised when a bootstrap run is aborted.

    A handful of failing replicates is resampling noise and is tolerated.
    More than the configured fraction points at a misspecified exposure model,
    and the whole run fails. ``failures`` lists ``(replicate_id, exception)``
    pairs for every replicate that failed.
    """

    status = "aborted"

    def __init__(
        self,
        message: str,
        failures: list[tuple[int, BaseException]] | None = None,
        replicate_count: int | None = None,
    ) -> None:
        super().__init__(message)
        self.failures = list(failures or [])
        self.replicate_count = replicate_count

    @property
    def n_failed(self) -> int:
        return len(self.failures)
