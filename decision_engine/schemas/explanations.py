# decision_engine/schemas/explanations.py
from typing import Any, Dict, List, Literal, Optional, Union
from pydantic import BaseModel, Field
from enum import Enum

from .decisions import AudienceType


class ExplanationFormat(str, Enum):
    TEXT = "text"
    HTML = "html"
    JSON = "json"
    MARKDOWN = "markdown"


class Factor(BaseModel):
    """عامل مؤثر في القرار"""
    id: str
    description: str
    importance: float = Field(..., ge=0.0, le=1.0)
    direction: Literal["positive", "negative"] = "positive"
    source: str = "main"


class FactorAnalysis(BaseModel):
    factors: List[Factor] = Field(default_factory=list)
    primary_factor: Optional[Factor] = None
    factor_count: int = 0
    included_factor_count: int = 0


class ConfidenceMetrics(BaseModel):
    min: float
    max: float
    avg: float
    std_deviation: float


class ConfidenceAnalysis(BaseModel):
    overall_confidence: float
    confidence_metrics: ConfidenceMetrics
    consensus_level: float
    interpretation: str
    uncertainty_level: float
    source_confidences: Dict[str, float] = Field(default_factory=dict)
    confidence_factors: List[str] = Field(default_factory=list)


class Explanation(BaseModel):
    """شرح قرار موجه لجمهور ومستوى تفصيل محددين"""
    id: str
    decision_id: str
    decision_type: Optional[str] = None
    action: Optional[str] = None
    audience_type: AudienceType
    detail_level: int = Field(..., ge=1, le=5)
    format: ExplanationFormat = ExplanationFormat.TEXT
    explanation: Union[str, Dict[str, Any]]
    factor_analysis: FactorAnalysis
    confidence_analysis: ConfidenceAnalysis
    counterfactual_analysis: Optional[str] = None
    visual_elements: Dict[str, Any] = Field(default_factory=dict)
    degraded: List[str] = Field(default_factory=list)
    timestamp: str

    @property
    def is_degraded(self) -> bool:
        return bool(self.degraded)
