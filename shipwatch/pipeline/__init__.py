"""
Shipwatch extraction and reconciliation pipeline.

pre-filter -> deterministic extraction -> (generative fallback) ->
normalization -> age-based status inference -> reconciliation
"""

from shipwatch.pipeline.deterministic import extract_deterministic, needs_generative
from shipwatch.pipeline.normalizer import normalize
from shipwatch.pipeline.reconciler import (
    KeyedLocks,
    ReconcileOutcome,
    ShipmentReconciler,
    absorb_duplicate,
    merge_extraction,
)
from shipwatch.pipeline.status_inference import infer_status, sweep_statuses

__all__ = [
    "extract_deterministic",
    "needs_generative",
    "normalize",
    "KeyedLocks",
    "ReconcileOutcome",
    "ShipmentReconciler",
    "absorb_duplicate",
    "merge_extraction",
    "infer_status",
    "sweep_statuses",
]
