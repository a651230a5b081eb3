# decision_engine/schemas/decisions.py
from typing import Any, Dict, List, Literal, Optional, Union
from pydantic import BaseModel, Field, field_validator
from enum import Enum

from .boundaries import BoundaryCheckResult


class AudienceType(str, Enum):
    """الجمهور المستهدف للشرح"""
    TECHNICAL = "technical"
    BUSINESS = "business"
    EXECUTIVE = "executive"
    REGULATORY = "regulatory"
    CUSTOMER = "customer"


class RecommendationSource(str, Enum):
    ENSEMBLE = "ensemble"
    POLICY = "policy"
    FALLBACK = "fallback"
    BLOCKED = "blocked"


def action_name(action: Union[str, Dict[str, Any]]) -> Optional[str]:
    """اسم الإجراء سواء كان نصاً أو قاموساً يحتوي المفتاح action"""
    if isinstance(action, dict):
        value = action.get("action")
        return str(value) if value is not None else None
    return str(action) if action is not None else None


class DecisionRequest(BaseModel):
    """طلب قرار (غير قابل للتعديل بعد الإرسال)"""
    decision_type: str = Field(..., min_length=1)
    context: Dict[str, Any] = Field(default_factory=dict)
    actions: List[Union[str, Dict[str, Any]]] = Field(..., min_length=1)
    constraints: Dict[str, Any] = Field(default_factory=dict)
    explainable: bool = True
    audience_type: AudienceType = AudienceType.BUSINESS
    include_counterfactuals: bool = False
    operation_type: Optional[str] = None

    model_config = {"frozen": True}

    @field_validator('actions')
    def validate_actions(cls, v):
        for action in v:
            if not action_name(action):
                raise ValueError("Each action must be a non-empty string or a map with an 'action' key")
        return v

    @property
    def action_names(self) -> List[str]:
        return [action_name(a) for a in self.actions]

    @property
    def effective_operation_type(self) -> str:
        return self.operation_type or self.decision_type


class AgentRecommendation(BaseModel):
    """توصية مستقلة من المجموعة أو من محرك السياسة"""
    action: str
    confidence: float = Field(..., ge=0.0, le=1.0)
    reasoning: str = ""
    alternative_actions: List[str] = Field(default_factory=list)
    source: Optional[str] = None
    collaboration_id: Optional[str] = None

    model_config = {"frozen": True}


class DecisionSources(BaseModel):
    ensemble: Optional[AgentRecommendation] = None
    policy: Optional[AgentRecommendation] = None


class Decision(BaseModel):
    """القرار الملتزم به مع مصدره"""
    id: str
    decision_type: str
    context: Dict[str, Any] = Field(default_factory=dict)
    action: Optional[str] = None
    confidence: float = 0.0
    reasoning: str = ""
    alternative_actions: List[str] = Field(default_factory=list)
    sources: DecisionSources = Field(default_factory=DecisionSources)
    selected_source: RecommendationSource
    timestamp: str
    is_error_response: bool = False
    degraded_reason: Optional[str] = None
    collaboration_id: Optional[str] = None
    boundary_check: Optional[BoundaryCheckResult] = None

    model_config = {"frozen": True}

    @property
    def is_blocked(self) -> bool:
        return self.selected_source == RecommendationSource.BLOCKED


class DecisionResponse(Decision):
    explanation: Optional[Dict[str, Any]] = None


class OutcomeRequest(BaseModel):
    observed_result: Dict[str, Any] = Field(default_factory=dict)


class PolicyUpdateResult(BaseModel):
    success: bool
    message: str
    reward: Optional[float] = None


class TraceStep(BaseModel):
    id: str
    type: Literal[
        "initialization",
        "context_processing",
        "agent_contribution",
        "conflict_resolution",
        "final_decision",
    ]
    description: str
    timestamp: str
    timestamp_estimated: bool = False
    details: Optional[Dict[str, Any]] = None


class DecisionTrace(BaseModel):
    decision_id: str
    decision_type: Optional[str] = None
    result: Dict[str, Any] = Field(default_factory=dict)
    steps: List[TraceStep] = Field(default_factory=list)
    step_count: int = 0
    duration_ms: Optional[float] = None
    generated_at: str
