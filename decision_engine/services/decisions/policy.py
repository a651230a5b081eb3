# decision_engine/services/decisions/policy.py
import asyncio
import logging
import random
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import numpy as np

from decision_engine.core.retry import RetryPolicy, retry_async
from decision_engine.core.timeutils import utc_now_iso
from decision_engine.database.store import DocumentStore
from decision_engine.schemas.decisions import (
    AgentRecommendation,
    Decision,
    DecisionRequest,
    PolicyUpdateResult,
    RecommendationSource,
)
from decision_engine.services.safety.audit_log import sanitize_context

logger = logging.getLogger(__name__)

POLICY_VALUES_COLLECTION = "policy_values"
POLICY_EXPERIENCES_COLLECTION = "policy_experiences"

EXPLORATION_CONFIDENCE = 0.5


class PolicyEngine(ABC):
    """واجهة محرك السياسة (التعلم المعزز)"""

    @abstractmethod
    async def recommend(self, request: DecisionRequest) -> AgentRecommendation:
        pass

    @abstractmethod
    async def record_experience(self, decision: Decision, request: DecisionRequest) -> None:
        """حفظ (الحالة، الإجراء) لقرار حتى تصل نتيجته"""
        pass

    @abstractmethod
    async def update(self, decision_id: str, reward: float, outcome: Dict[str, Any]) -> PolicyUpdateResult:
        pass


def softmax(values: np.ndarray, temperature: float) -> np.ndarray:
    scaled = values / max(temperature, 1e-6)
    scaled = scaled - scaled.max()
    exps = np.exp(scaled)
    return exps / exps.sum()


class TabularPolicyEngine(PolicyEngine):
    """
    سياسة epsilon-greedy بجدول قيم لكل (نوع قرار، إجراء)

    الثقة هي احتمال softmax للإجراء المختار، والاستكشاف يعطي ثقة 0.5.
    """

    def __init__(
        self,
        store: DocumentStore,
        learning_rate: float = 0.1,
        exploration_rate: float = 0.1,
        min_exploration_rate: float = 0.01,
        exploration_decay: float = 0.995,
        temperature: float = 0.25,
        rng: Optional[random.Random] = None,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        self.store = store
        self.learning_rate = learning_rate
        self.exploration_rate = exploration_rate
        self.min_exploration_rate = min_exploration_rate
        self.exploration_decay = exploration_decay
        self.temperature = temperature
        self.rng = rng or random.Random()
        self.retry_policy = retry_policy or RetryPolicy()
        self._update_lock = asyncio.Lock()

    async def _load_table(self, decision_type: str) -> Dict[str, Dict[str, float]]:
        document = await retry_async(
            lambda: self.store.get(POLICY_VALUES_COLLECTION, decision_type),
            self.retry_policy,
            description=f"load policy values {decision_type}",
        )
        return dict((document or {}).get("actions") or {})

    async def recommend(self, request: DecisionRequest) -> AgentRecommendation:
        actions = request.action_names
        table = await self._load_table(request.decision_type)
        values = np.array([float(table.get(a, {}).get("value", 0.0)) for a in actions])
        ranking = [int(i) for i in np.argsort(-values, kind="stable")]

        if self.rng.random() < self.exploration_rate:
            index = self.rng.randrange(len(actions))
            confidence = EXPLORATION_CONFIDENCE
            reasoning = f"Exploratory selection of '{actions[index]}' (exploration rate {self.exploration_rate:.3f})"
        else:
            probabilities = softmax(values, self.temperature)
            index = ranking[0]
            confidence = float(probabilities[index])
            count = int(table.get(actions[index], {}).get("count", 0))
            reasoning = (
                f"Highest learned value for '{actions[index]}' "
                f"({values[index]:.3f} from {count} observed outcomes)"
            )

        return AgentRecommendation(
            action=actions[index],
            confidence=round(min(max(confidence, 0.0), 1.0), 6),
            reasoning=reasoning,
            alternative_actions=[actions[i] for i in ranking if i != index][:3],
            source=RecommendationSource.POLICY.value,
        )

    async def record_experience(self, decision: Decision, request: DecisionRequest) -> None:
        await self.store.set(POLICY_EXPERIENCES_COLLECTION, decision.id, {
            "decision_type": decision.decision_type,
            "action": decision.action,
            "available_actions": request.action_names,
            "state": sanitize_context(request.context),
            "timestamp": utc_now_iso(),
            "reward": None,
        })

    async def update(self, decision_id: str, reward: float, outcome: Dict[str, Any]) -> PolicyUpdateResult:
        async with self._update_lock:
            experience = await retry_async(
                lambda: self.store.get(POLICY_EXPERIENCES_COLLECTION, decision_id),
                self.retry_policy,
                description=f"load experience {decision_id}",
            )
            if experience is None:
                return PolicyUpdateResult(success=False, message="Experience not found", reward=reward)
            if experience.get("reward") is not None:
                logger.warning(f"⚠️ Outcome for {decision_id} already applied, ignoring duplicate")
                return PolicyUpdateResult(
                    success=False, message="Outcome already recorded", reward=experience["reward"]
                )

            decision_type = experience["decision_type"]
            action = experience["action"]
            table = await self._load_table(decision_type)
            entry = table.get(action, {"value": 0.0, "count": 0})
            value = float(entry.get("value", 0.0))
            new_entry = {
                "value": value + self.learning_rate * (reward - value),
                "count": int(entry.get("count", 0)) + 1,
            }

            # التجربة تُعلَّم أولاً، وتُعاد إن فشلت كتابة الجدول
            await self.store.update(POLICY_EXPERIENCES_COLLECTION, decision_id, {
                "reward": reward,
                "outcome": sanitize_context(outcome),
                "rewarded_at": utc_now_iso(),
            })
            try:
                await self.store.set(POLICY_VALUES_COLLECTION, decision_type, {
                    "decision_type": decision_type,
                    "actions": {**table, action: new_entry},
                    "updated_at": utc_now_iso(),
                })
            except Exception:
                await self.store.update(POLICY_EXPERIENCES_COLLECTION, decision_id, {
                    "reward": None,
                    "outcome": None,
                    "rewarded_at": None,
                })
                raise

        self.exploration_rate = max(self.min_exploration_rate, self.exploration_rate * self.exploration_decay)
        logger.info(
            f"📈 Policy updated for {decision_type}/{action}: "
            f"{value:.4f} -> {new_entry['value']:.4f} (reward {reward:.4f})"
        )
        return PolicyUpdateResult(success=True, message="Policy updated successfully", reward=reward)

