"""Reconciliation, viewport and the end-to-end triage pipeline."""

from .pipeline import TriagePipeline, TriageResult
from .reconcile import ReconciledView, filter_by_group, reconcile
from .viewport import (
    ItemRow,
    SectionHeader,
    Viewport,
    build_rows,
    compute_viewport,
    viewport_height,
)

__all__ = [
    "ItemRow",
    "ReconciledView",
    "SectionHeader",
    "TriagePipeline",
    "TriageResult",
    "Viewport",
    "build_rows",
    "compute_viewport",
    "filter_by_group",
    "reconcile",
    "viewport_height",
]
