from .outcome import EstimateRecord, fit_weighted_outcome
from .ipw import IPWEstimator, IPWResult

__all__ = ["EstimateRecord", "fit_weighted_outcome", "IPWEstimator", "IPWResult"]
