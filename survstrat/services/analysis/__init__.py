"""
Analysis services for survstrat.

All services return 3-tuples (result, Dict, AnalysisStep) for provenance tracking.
"""

from survstrat.services.analysis.signature_scoring_service import (
    SignatureScoringError,
    SignatureScoringService,
)
from survstrat.services.analysis.survival_stratification_service import (
    SurvivalStratificationService,
)

__all__ = [
    # Signature scores
    "SignatureScoringService",
    "SignatureScoringError",
    # Stratified survival
    "SurvivalStratificationService",
]
