# decision_engine/services/explainability/__init__.py
from .cache import ExplanationCache
from .engine import ExplainabilityEngine, interpret_confidence
from .records import EXPLANATIONS_COLLECTION, DecisionRecords
from .trace import DecisionTraceBuilder

__all__ = [
    "EXPLANATIONS_COLLECTION",
    "DecisionRecords",
    "DecisionTraceBuilder",
    "ExplainabilityEngine",
    "ExplanationCache",
    "interpret_confidence",
]
