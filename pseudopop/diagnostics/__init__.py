from ._check import Assumption, DiagnosticCheck, DiagnosticReport
from .weights import (
    WeightDiagnosticsReport,
    diagnose_weights,
    standardized_mean_difference,
    weighted_correlation,
)

__all__ = [
    "Assumption", "DiagnosticCheck", "DiagnosticReport",
    "WeightDiagnosticsReport", "diagnose_weights",
    "standardized_mean_difference", "weighted_correlation",
]
