# decision_engine/services/decisions/service.py
"""
خدمة القرارات: تنسيق طلب قرار كامل

فحص الحدود -> تسجيل العملية -> التحكيم (المجموعة ∥ السياسة)
-> حفظ القرار -> الشرح (اختياري)
"""
import logging
import uuid
from typing import Any, Dict, Optional

from decision_engine.core.errors import DecisionEngineError, wrap_error
from decision_engine.core.timeutils import utc_now_iso
from decision_engine.database.store import DocumentStore
from decision_engine.schemas.decisions import (
    Decision,
    DecisionRequest,
    DecisionResponse,
    PolicyUpdateResult,
    RecommendationSource,
)
from decision_engine.services.safety.audit_log import sanitize_context
from decision_engine.services.safety.manager import SafetyBoundaryManager
from .arbiter import DecisionArbiter
from .policy import PolicyEngine
from .rewards import RewardFunction, balanced_reward

logger = logging.getLogger(__name__)

DECISION_LOGS_COLLECTION = "decision_logs"

DEFAULT_EXPLANATION_DETAIL = 3


class DecisionService:
    def __init__(
        self,
        store: DocumentStore,
        safety_manager: SafetyBoundaryManager,
        arbiter: DecisionArbiter,
        policy: PolicyEngine,
        explainability=None,
        reward_function: RewardFunction = balanced_reward,
    ):
        self.store = store
        self.safety_manager = safety_manager
        self.arbiter = arbiter
        self.policy = policy
        self.explainability = explainability
        self.reward_function = reward_function

    async def generate_decision(self, request: DecisionRequest) -> DecisionResponse:
        """
        إنتاج قرار ملتزم به لطلب

        لا يرفع استثناءات لأسباب منطقية: يعيد دائماً قراراً
        (محجوباً، أو احتياطياً، أو عادياً).
        """
        operation_type = request.effective_operation_type
        check = await self.safety_manager.check_boundaries(operation_type, request.context)

        if not check.allowed:
            messages = "; ".join(v.message for v in check.violations)
            decision = Decision(
                id=str(uuid.uuid4()),
                decision_type=request.decision_type,
                context=request.context,
                action=None,
                confidence=0.0,
                reasoning=f"Blocked by safety boundaries: {messages}",
                alternative_actions=[],
                selected_source=RecommendationSource.BLOCKED,
                timestamp=utc_now_iso(),
                boundary_check=check,
            )
            logger.warning(f"🛑 Decision {decision.id} ({request.decision_type}) blocked: {messages}")
            await self._persist(decision, request)
            return DecisionResponse(**decision.model_dump())

        try:
            await self.safety_manager.record_operation(operation_type, request.context)
        except DecisionEngineError as e:
            logger.error(f"❌ Failed to record operation {operation_type}: {e}")

        decision = await self.arbiter.arbitrate(request)
        if check.violations:
            decision = decision.model_copy(update={"boundary_check": check})

        if not decision.is_error_response:
            try:
                await self.policy.record_experience(decision, request)
            except DecisionEngineError as e:
                logger.error(f"❌ Failed to record policy experience for {decision.id}: {e}")

        await self._persist(decision, request)
        logger.info(
            f"✅ Decision {decision.id} ({request.decision_type}): {decision.action} "
            f"[{decision.selected_source.value}, {decision.confidence:.2f}]"
        )

        explanation = None
        if request.explainable and self.explainability is not None:
            try:
                result = await self.explainability.generate_decision_explanation(
                    decision.id,
                    audience_type=request.audience_type,
                    include_counterfactuals=request.include_counterfactuals,
                    detail_level=DEFAULT_EXPLANATION_DETAIL,
                )
                explanation = result.model_dump(mode="json")
            except Exception as e:
                # القرار محفوظ بالفعل، الشرح اختياري
                error = wrap_error(e, context={"decision_id": decision.id})
                logger.error(f"❌ Explanation for decision {decision.id} failed: [{error.error_type.value}] {error}")

        return DecisionResponse(**decision.model_dump(), explanation=explanation)

    async def _persist(self, decision: Decision, request: DecisionRequest):
        record = decision.model_dump(mode="json", exclude={"id"})
        record["context"] = sanitize_context(decision.context)
        record["available_actions"] = request.action_names
        record["constraints"] = sanitize_context(request.constraints)
        record["explanation_ids"] = []
        try:
            await self.store.set(DECISION_LOGS_COLLECTION, decision.id, record)
        except DecisionEngineError as e:
            logger.error(f"❌ Failed to persist decision {decision.id}: {e}")

    async def update_policy_from_outcome(self, decision_id: str, observed_result: Optional[Dict[str, Any]]) -> PolicyUpdateResult:
        """حساب المكافأة من النتيجة وتمريرها لمحرك السياسة"""
        if not decision_id:
            return PolicyUpdateResult(success=False, message="Missing decision id")
        observed_result = observed_result or {}

        try:
            reward = float(self.reward_function(observed_result))
        except (TypeError, ValueError, ArithmeticError) as e:
            logger.error(f"❌ Reward computation failed for {decision_id}: {e}")
            return PolicyUpdateResult(success=False, message=f"Reward computation failed: {e}")

        try:
            return await self.policy.update(decision_id, reward, observed_result)
        except Exception as e:
            error = wrap_error(e, context={"decision_id": decision_id})
            logger.error(f"❌ Policy update failed for {decision_id}: {error.to_dict()}")
            return PolicyUpdateResult(success=False, message=f"Policy update failed: {error.message}", reward=reward)
