# decision_engine/schemas/boundaries.py
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from pydantic import BaseModel, Field, TypeAdapter, field_validator, model_validator
from enum import Enum
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


class BoundaryType(str, Enum):
    """أنواع حدود الأمان"""
    BUDGET = "budget"
    RATE = "rate"
    SCOPE = "scope"
    TIME = "time"
    CONTENT = "content"
    COMPLIANCE = "compliance"
    ETHICS = "ethics"


class ViolationSeverity(str, Enum):
    """درجات خطورة الانتهاك (مرتبة تصاعدياً)"""
    INFO = "info"
    WARNING = "warning"
    MODERATE = "moderate"
    SEVERE = "severe"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return SEVERITY_ORDER.index(self)


SEVERITY_ORDER = [
    ViolationSeverity.INFO,
    ViolationSeverity.WARNING,
    ViolationSeverity.MODERATE,
    ViolationSeverity.SEVERE,
    ViolationSeverity.CRITICAL,
]


class EnforcementAction(str, Enum):
    """إجراءات التنفيذ عند الانتهاك"""
    LOG = "log"
    NOTIFY = "notify"
    THROTTLE = "throttle"
    PAUSE = "pause"
    BLOCK = "block"
    ESCALATE = "escalate"
    SHUTDOWN = "shutdown"


# ==================== تعريفات الحدود ====================

class BoundaryBase(BaseModel):
    """الحقول المشتركة لكل الحدود"""
    id: Optional[str] = None
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    operation_types: List[str] = Field(..., min_length=1)
    severity: ViolationSeverity = ViolationSeverity.WARNING
    is_active: bool = True
    created_by: Optional[str] = None
    created_at: Optional[str] = None
    updated_by: Optional[str] = None
    updated_at: Optional[str] = None

    def applies_to(self, operation_type: str) -> bool:
        return self.is_active and operation_type in self.operation_types


class BudgetBoundary(BoundaryBase):
    boundary_type: Literal["budget"] = "budget"
    budget_id: Optional[str] = None
    limit: float = Field(..., ge=0)
    unit: str = "USD"


class RateBoundary(BoundaryBase):
    boundary_type: Literal["rate"] = "rate"
    limit: float = Field(..., ge=0)
    time_window_minutes: float = Field(..., gt=0)


class ScopeBoundary(BoundaryBase):
    boundary_type: Literal["scope"] = "scope"
    allowed_domains: Optional[List[str]] = None
    allowed_actions: Optional[List[str]] = None


class TimeBoundary(BoundaryBase):
    boundary_type: Literal["time"] = "time"
    allowed_days: Optional[List[int]] = None  # 0 = الأحد ... 6 = السبت
    allowed_hours_start: Optional[int] = Field(None, ge=0, le=23)
    allowed_hours_end: Optional[int] = Field(None, ge=0, le=23)
    timezone: str = "UTC"

    @field_validator('allowed_days')
    def validate_days(cls, v):
        if v is not None and any(day < 0 or day > 6 for day in v):
            raise ValueError("allowed_days must contain values between 0 (Sunday) and 6 (Saturday)")
        return v

    @field_validator('timezone')
    def validate_timezone(cls, v):
        if v.upper() == "UTC":
            return v
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"Unknown timezone: {v}")
        return v


class ContentBoundary(BoundaryBase):
    boundary_type: Literal["content"] = "content"
    prohibited_terms: List[str] = Field(default_factory=list)
    content_field: Optional[str] = None
    content_moderation: bool = False

    @model_validator(mode="after")
    def validate_moderation(self):
        if self.content_moderation and not self.content_field:
            raise ValueError("content_field is required when content_moderation is enabled")
        return self


class ComplianceBoundary(BoundaryBase):
    boundary_type: Literal["compliance"] = "compliance"
    required_fields: List[str] = Field(default_factory=list)
    required_consent: bool = False
    regulations: List[str] = Field(default_factory=list)


class EthicalGuideline(BaseModel):
    trigger: str = Field(..., min_length=1)
    description: str = ""


class EthicsBoundary(BoundaryBase):
    boundary_type: Literal["ethics"] = "ethics"
    ethical_guidelines: List[EthicalGuideline] = Field(default_factory=list)
    perform_ethics_check: bool = False


Boundary = Annotated[
    Union[
        BudgetBoundary,
        RateBoundary,
        ScopeBoundary,
        TimeBoundary,
        ContentBoundary,
        ComplianceBoundary,
        EthicsBoundary,
    ],
    Field(discriminator="boundary_type"),
]

BOUNDARY_ADAPTER = TypeAdapter(Boundary)


# ==================== نتائج التقييم ====================

class EvaluationResult(BaseModel):
    """نتيجة تقييم حد واحد"""
    compliant: bool
    message: str = ""
    blocking: bool = False
    severity: Optional[ViolationSeverity] = None
    enforcement_actions: List[EnforcementAction] = Field(default_factory=list)
    error: bool = False


class Violation(BaseModel):
    """سجل انتهاك (لا يُعدل بعد إنشائه)"""
    boundary_id: str
    boundary_name: Optional[str] = None
    boundary_type: str
    severity: ViolationSeverity
    message: str
    operation_type: str
    context: Dict[str, Any] = Field(default_factory=dict)
    enforcement_actions: List[EnforcementAction] = Field(default_factory=list)
    blocking: bool = False
    timestamp: str

    model_config = {"frozen": True}


class BoundaryCheckResult(BaseModel):
    allowed: bool
    violations: List[Violation] = Field(default_factory=list)
    enforcement_actions: List[EnforcementAction] = Field(default_factory=list)


# ==================== طلبات API ====================

class BoundaryCheckRequest(BaseModel):
    operation_type: str = Field(..., min_length=1)
    context: Dict[str, Any] = Field(default_factory=dict)


class ViolationFilters(BaseModel):
    boundary_type: Optional[str] = None
    severity: Optional[ViolationSeverity] = None
    operation_type: Optional[str] = None
    limit: int = Field(50, ge=1, le=500)
