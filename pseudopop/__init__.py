from ._exceptions import BootstrapError, DomainError, EstimationError
from .table import ObservationTable
from .models import FittedModel, ModelSpec, Term, fit_model
from .weights import WeightVector, compute_weights, weights_from_model
from .estimators import EstimateRecord, IPWEstimator, IPWResult, fit_weighted_outcome
from .bootstrap import (
    BootstrapConfig,
    BootstrapResult,
    Replicate,
    ReplicateStatus,
    bootstrap_estimate,
    generate_replicates,
    percentile_interval,
    studentized_interval,
)
from .diagnostics import Assumption, DiagnosticCheck, WeightDiagnosticsReport, diagnose_weights

__version__ = "0.1.0"

__all__ = [
    "DomainError", "EstimationError", "BootstrapError",
    "ObservationTable",
    "FittedModel", "ModelSpec", "Term", "fit_model",
    "WeightVector", "compute_weights", "weights_from_model",
    "EstimateRecord", "fit_weighted_outcome",
    "IPWEstimator", "IPWResult",
    "BootstrapConfig", "BootstrapResult", "Replicate", "ReplicateStatus",
    "bootstrap_estimate", "generate_replicates", "percentile_interval", "studentized_interval",
    "Assumption", "DiagnosticCheck", "WeightDiagnosticsReport", "diagnose_weights",
]
