# decision_engine/services/explainability/records.py
import asyncio
import logging
from typing import Any, Dict, Optional

from decision_engine.core.retry import RetryPolicy, retry_async
from decision_engine.database.store import DocumentStore
from decision_engine.services.decisions.ensemble import COLLABORATIONS_COLLECTION
from decision_engine.services.decisions.service import DECISION_LOGS_COLLECTION

logger = logging.getLogger(__name__)

EXPLANATIONS_COLLECTION = "explanations"


def collaboration_as_decision(collaboration: Dict[str, Any]) -> Dict[str, Any]:
    """تحويل سجل تعاون إلى شكل القرار"""
    result = collaboration.get("result") or {}
    return {
        "id": collaboration["id"],
        "decision_type": collaboration.get("decision_type"),
        "action": result.get("action"),
        "confidence": result.get("confidence"),
        "reasoning": result.get("reasoning", ""),
        "alternative_actions": result.get("alternative_actions") or [],
        "context": collaboration.get("context") or {},
        "sources": {"ensemble": result},
        "timestamp": collaboration.get("end_time") or collaboration.get("start_time"),
        "collaboration_id": collaboration["id"],
        "explanation_ids": [],
    }


class DecisionRecords:
    """قراءة القرارات وسجلات التعاون من المخزن"""

    def __init__(self, store: DocumentStore, retry_policy: Optional[RetryPolicy] = None):
        self.store = store
        self.retry_policy = retry_policy or RetryPolicy()
        self._link_lock = asyncio.Lock()

    async def _get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        return await retry_async(
            lambda: self.store.get(collection, doc_id),
            self.retry_policy,
            description=f"load {collection}/{doc_id}",
        )

    async def load_decision(self, decision_id: str) -> Optional[Dict[str, Any]]:
        decision = await self._get(DECISION_LOGS_COLLECTION, decision_id)
        if decision is not None:
            return decision

        collaboration = await self._get(COLLABORATIONS_COLLECTION, decision_id)
        if collaboration is not None:
            return collaboration_as_decision(collaboration)
        return None

    async def load_collaboration(self, decision: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        collaboration_id = decision.get("collaboration_id")
        if not collaboration_id:
            return None
        return await self._get(COLLABORATIONS_COLLECTION, collaboration_id)

    async def save_explanation(self, explanation_id: str, data: Dict[str, Any]):
        await self.store.set(EXPLANATIONS_COLLECTION, explanation_id, data)

    async def link_explanation(self, decision: Dict[str, Any], explanation_id: str):
        """إضافة معرف الشرح إلى سجل القرار (إن كان القرار محفوظاً في decision_logs)"""
        if decision.get("collaboration_id") == decision.get("id"):
            return
        async with self._link_lock:
            # نسخة القرار المحملة في بداية التوليد قد تكون قديمة
            current = await self._get(DECISION_LOGS_COLLECTION, decision["id"])
            if current is None:
                return
            existing = list(current.get("explanation_ids") or [])
            if explanation_id in existing:
                return
            existing.append(explanation_id)
            await self.store.update(DECISION_LOGS_COLLECTION, decision["id"], {"explanation_ids": existing})
