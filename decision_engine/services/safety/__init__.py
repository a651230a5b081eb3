# decision_engine/services/safety/__init__.py
from .audit_log import ViolationAuditLog, sanitize_context
from .checks import (
    CheckResult,
    ContentModerator,
    EthicsChecker,
    KeywordContentModerator,
    KeywordEthicsChecker,
)
from .evaluators import ENFORCEMENT_LADDER, BoundaryEvaluator, enforcement_for
from .loader import BoundaryLoader
from .manager import BOUNDARIES_COLLECTION, SafetyBoundaryManager

__all__ = [
    "BOUNDARIES_COLLECTION",
    "ENFORCEMENT_LADDER",
    "BoundaryEvaluator",
    "BoundaryLoader",
    "CheckResult",
    "ContentModerator",
    "EthicsChecker",
    "KeywordContentModerator",
    "KeywordEthicsChecker",
    "SafetyBoundaryManager",
    "ViolationAuditLog",
    "enforcement_for",
    "sanitize_context",
]
