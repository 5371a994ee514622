"""
Analytics components for FOURCAST.
"""
from .performance import (
    MetricsEngine,
    compute_metrics,
    estimate_win_rate,
)

__all__ = [
    "MetricsEngine",
    "compute_metrics",
    "estimate_win_rate",
]
