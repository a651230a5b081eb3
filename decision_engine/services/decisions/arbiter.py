# decision_engine/services/decisions/arbiter.py
import asyncio
import logging
import uuid
from typing import Dict, Optional

from decision_engine.core.timeutils import utc_now_iso
from decision_engine.schemas.decisions import (
    AgentRecommendation,
    Decision,
    DecisionRequest,
    DecisionSources,
    RecommendationSource,
    action_name,
)
from .ensemble import AgentEnsemble
from .policy import PolicyEngine

logger = logging.getLogger(__name__)

FALLBACK_CONFIDENCE = 0.5
FALLBACK_REASONING = "Fallback decision due to error"
POLICY_SUFFIX = "(Reinforcement learning decision with high confidence)"
ENSEMBLE_SUFFIX = "(Multi-agent ensemble decision)"


class DecisionArbiter:
    """
    الحَكَم: يجمع توصية المجموعة وتوصية السياسة في قرار واحد

    توصية السياسة تُختار إذا كانت ثقتها >= العتبة، وإلا توصية المجموعة.
    التوصيتان تبقيان في sources للتدقيق.
    """

    def __init__(
        self,
        ensemble: AgentEnsemble,
        policy: PolicyEngine,
        confidence_threshold: float = 0.8,
        recommendation_timeout: float = 20.0,
    ):
        self.ensemble = ensemble
        self.policy = policy
        self.confidence_threshold = confidence_threshold
        self.recommendation_timeout = recommendation_timeout

    def combine(
        self,
        ensemble_rec: AgentRecommendation,
        policy_rec: AgentRecommendation,
        request: DecisionRequest,
    ) -> Decision:
        if policy_rec.confidence >= self.confidence_threshold:
            selected, other = policy_rec, ensemble_rec
            source, suffix = RecommendationSource.POLICY, POLICY_SUFFIX
        else:
            selected, other = ensemble_rec, policy_rec
            source, suffix = RecommendationSource.ENSEMBLE, ENSEMBLE_SUFFIX

        alternatives = [a for a in selected.alternative_actions if a != selected.action]
        if other.action != selected.action and other.action not in alternatives:
            alternatives.append(other.action)

        return Decision(
            id=str(uuid.uuid4()),
            decision_type=request.decision_type,
            context=request.context,
            action=selected.action,
            confidence=selected.confidence,
            reasoning=f"{selected.reasoning} {suffix}".strip(),
            alternative_actions=alternatives,
            sources=DecisionSources(ensemble=ensemble_rec, policy=policy_rec),
            selected_source=source,
            timestamp=utc_now_iso(),
            collaboration_id=ensemble_rec.collaboration_id,
        )

    def fallback(
        self,
        request: DecisionRequest,
        reason: str,
        ensemble_rec: Optional[AgentRecommendation] = None,
        policy_rec: Optional[AgentRecommendation] = None,
    ) -> Decision:
        """قرار احتياطي حتمي: أول إجراء بثقة 0.5"""
        return Decision(
            id=str(uuid.uuid4()),
            decision_type=request.decision_type,
            context=request.context,
            action=action_name(request.actions[0]),
            confidence=FALLBACK_CONFIDENCE,
            reasoning=FALLBACK_REASONING,
            alternative_actions=request.action_names[1:],
            sources=DecisionSources(ensemble=ensemble_rec, policy=policy_rec),
            selected_source=RecommendationSource.FALLBACK,
            timestamp=utc_now_iso(),
            is_error_response=True,
            degraded_reason=reason,
            collaboration_id=ensemble_rec.collaboration_id if ensemble_rec else None,
        )

    async def arbitrate(self, request: DecisionRequest) -> Decision:
        """تشغيل المصدرين بالتوازي ثم الدمج؛ أي فشل يعطي القرار الاحتياطي"""
        tasks: Dict[str, asyncio.Task] = {
            "ensemble": asyncio.create_task(
                asyncio.wait_for(self.ensemble.recommend(request), self.recommendation_timeout)
            ),
            "policy": asyncio.create_task(
                asyncio.wait_for(self.policy.recommend(request), self.recommendation_timeout)
            ),
        }

        try:
            ensemble_rec, policy_rec = await asyncio.gather(tasks["ensemble"], tasks["policy"])
        except Exception as e:
            for task in tasks.values():
                task.cancel()
            await asyncio.gather(*tasks.values(), return_exceptions=True)

            failed = [
                name for name, task in tasks.items()
                if not task.cancelled() and task.exception() is not None
            ]
            succeeded = {
                name: task.result() for name, task in tasks.items()
                if not task.cancelled() and task.exception() is None
            }
            reason = f"{'/'.join(failed) or 'recommendation'} failed: {type(e).__name__}: {e}"
            logger.error(f"❌ Arbitration for {request.decision_type} degraded to fallback: {reason}")
            return self.fallback(
                request,
                reason,
                ensemble_rec=succeeded.get("ensemble"),
                policy_rec=succeeded.get("policy"),
            )

        return self.combine(ensemble_rec, policy_rec, request)
