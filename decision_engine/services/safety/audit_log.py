# decision_engine/services/safety/audit_log.py
"""
سجل تدقيق الانتهاكات

- كتابة إلحاقية فقط في مجموعة boundary_violations
- حلقة في الذاكرة لآخر N انتهاك للفحص السريع
- تنقية السياق من الحقول الحساسة قبل أي تخزين أو تسجيل
"""
import logging
from collections import deque
from typing import Any, Deque, Dict, List, Optional

from decision_engine.core.timeutils import utc_now_iso
from decision_engine.database.store import DocumentStore, Query
from decision_engine.schemas.boundaries import Violation, ViolationSeverity

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("audit")

VIOLATIONS_COLLECTION = "boundary_violations"
ADMIN_AUDIT_COLLECTION = "boundary_audit_log"

REDACTED = "[REDACTED]"

SENSITIVE_KEYS = {
    "password",
    "token",
    "secret",
    "key",
    "credential",
    "credentials",
    "ssn",
    "socialsecurity",
    "socialsecuritynumber",
    "creditcard",
    "cardnumber",
    "apikey",
    "accesstoken",
    "refreshtoken",
}


def _normalize_key(key: Any) -> str:
    return str(key).lower().replace("_", "").replace("-", "")


def sanitize_context(value: Any) -> Any:
    """نسخة من السياق مع إخفاء قيم الحقول الحساسة (بشكل متداخل)"""
    if isinstance(value, dict):
        return {
            k: REDACTED if _normalize_key(k) in SENSITIVE_KEYS else sanitize_context(v)
            for k, v in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [sanitize_context(item) for item in value]
    return value


class ViolationAuditLog:
    """سجل إلحاقي للانتهاكات وإجراءات الإدارة"""

    def __init__(self, store: DocumentStore, max_history: int = 100):
        self.store = store
        self.max_history = max_history
        self._history: Deque[Violation] = deque(maxlen=max_history)

    async def record(self, violations: List[Violation]) -> int:
        """
        تسجيل مجموعة انتهاكات

        السياق في كل Violation يجب أن يكون منقى مسبقاً.

        Returns:
            عدد الانتهاكات المخزنة
        """
        stored = 0
        for violation in violations:
            self._history.append(violation)
            record = violation.model_dump(mode="json")
            audit_logger.info({"event": "boundary_violation", **record})

            if violation.severity in (ViolationSeverity.SEVERE, ViolationSeverity.CRITICAL):
                logger.error(
                    f"🚨 {violation.severity.value.upper()} boundary violation: "
                    f"{violation.boundary_name or violation.boundary_id} "
                    f"[{violation.operation_type}] {violation.message}"
                )
            else:
                logger.warning(
                    f"⚠️ Boundary violation: {violation.boundary_name or violation.boundary_id} "
                    f"[{violation.operation_type}] {violation.message}"
                )

            await self.store.add(VIOLATIONS_COLLECTION, record)
            stored += 1
        return stored

    async def record_admin_action(
        self,
        action: str,
        boundary_id: str,
        boundary_type: Optional[str],
        actor_id: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> str:
        """تسجيل إجراء إداري (إنشاء/تعديل/حذف حد) منفصلاً عن الانتهاكات"""
        entry = {
            "action": action,
            "boundary_id": boundary_id,
            "boundary_type": boundary_type,
            "actor_id": actor_id,
            "details": sanitize_context(details or {}),
            "timestamp": utc_now_iso(),
        }
        audit_logger.info({"event": "boundary_admin", **entry})
        return await self.store.add(ADMIN_AUDIT_COLLECTION, entry)

    def recent(self, limit: Optional[int] = None) -> List[Violation]:
        """آخر الانتهاكات من الذاكرة (الأحدث أولاً)"""
        items = list(reversed(self._history))
        return items[:limit] if limit is not None else items

    async def query(
        self,
        boundary_type: Optional[str] = None,
        severity: Optional[ViolationSeverity] = None,
        operation_type: Optional[str] = None,
        limit: int = 50,
    ) -> List[Violation]:
        """استعلام عن الانتهاكات المخزنة، الأحدث أولاً"""
        query = Query(order_by="timestamp", descending=True, limit=limit)
        if boundary_type:
            query = query.where("boundary_type", "==", boundary_type)
        if severity:
            query = query.where("severity", "==", ViolationSeverity(severity).value)
        if operation_type:
            query = query.where("operation_type", "==", operation_type)

        documents = await self.store.query(VIOLATIONS_COLLECTION, query)
        return [
            Violation.model_validate({k: v for k, v in doc.items() if k != "id"})
            for doc in documents
        ]
