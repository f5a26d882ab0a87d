"""Normalization of loosely structured agent output"""

from .extraction import (
    BraceBlock,
    CanonicalShape,
    FencedJsonBlock,
    PayloadExtractor,
    WrapperFields,
)
from .funnel import FunnelRun, FunnelStep, StepType, infer_step_type, normalize_funnel
from .metrics import normalize_product_metrics, normalize_seller_metrics

__all__ = [
    "BraceBlock",
    "CanonicalShape",
    "FencedJsonBlock",
    "PayloadExtractor",
    "WrapperFields",
    "FunnelRun",
    "FunnelStep",
    "StepType",
    "infer_step_type",
    "normalize_funnel",
    "normalize_product_metrics",
    "normalize_seller_metrics",
]
