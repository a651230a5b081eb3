# decision_engine/routers/decisions.py
import logging

from fastapi import APIRouter, Depends, Query

from decision_engine.core.errors import DecisionEngineError
from decision_engine.dependencies import get_decision_service, get_explainability, http_error
from decision_engine.schemas.decisions import (
    AudienceType,
    DecisionRequest,
    DecisionResponse,
    DecisionTrace,
    OutcomeRequest,
    PolicyUpdateResult,
)
from decision_engine.schemas.explanations import Explanation, ExplanationFormat
from decision_engine.services.decisions.service import DecisionService
from decision_engine.services.explainability.engine import ExplainabilityEngine

logger = logging.getLogger(__name__)

router = APIRouter(tags=["decisions"])


@router.post("", response_model=DecisionResponse)
async def generate_decision(
    request: DecisionRequest,
    service: DecisionService = Depends(get_decision_service),
):
    """توليد قرار (قد يكون محجوباً أو احتياطياً)"""
    try:
        return await service.generate_decision(request)
    except DecisionEngineError as e:
        logger.error(f"❌ Decision generation failed for {request.decision_type}: {e}")
        raise http_error(e)


@router.post("/{decision_id}/outcome", response_model=PolicyUpdateResult)
async def record_outcome(
    decision_id: str,
    outcome: OutcomeRequest,
    service: DecisionService = Depends(get_decision_service),
):
    """تمرير نتيجة القرار الفعلية لتحديث السياسة"""
    return await service.update_policy_from_outcome(decision_id, outcome.observed_result)


@router.get("/{decision_id}/trace", response_model=DecisionTrace)
async def get_decision_trace(
    decision_id: str,
    include_intermediate_steps: bool = False,
    detail_level: int = Query(3, ge=1, le=5),
    engine: ExplainabilityEngine = Depends(get_explainability),
):
    try:
        return await engine.generate_decision_trace(decision_id, include_intermediate_steps, detail_level)
    except DecisionEngineError as e:
        raise http_error(e)


@router.get("/{decision_id}/explanation", response_model=Explanation)
async def get_decision_explanation(
    decision_id: str,
    audience_type: AudienceType = AudienceType.BUSINESS,
    include_counterfactuals: bool = False,
    detail_level: int = Query(3, ge=1, le=5),
    format: ExplanationFormat = ExplanationFormat.TEXT,
    engine: ExplainabilityEngine = Depends(get_explainability),
):
    """شرح قرار لجمهور ومستوى تفصيل محددين"""
    try:
        return await engine.generate_decision_explanation(
            decision_id,
            audience_type=audience_type.value,
            include_counterfactuals=include_counterfactuals,
            detail_level=detail_level,
            format=format.value,
        )
    except DecisionEngineError as e:
        raise http_error(e)
