# decision_engine/services/safety/manager.py
"""
مدير حدود الأمان

- يحمل تعريفات الحدود في لقطة غير قابلة للتعديل (تستبدل كاملة عند كل تغيير)
- يستمع لتغييرات المخزن ويطبقها على اللقطة
- يقيم كل الحدود المنطبقة على عملية بالتوازي ويقرر السماح أو المنع
- أي خطأ في مسار الفحص يؤدي إلى المنع (fail-closed)
"""
import asyncio
import logging
import uuid
from contextlib import suppress
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Union

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from decision_engine.core.errors import NotFoundError, ProcessingError, ValidationError
from decision_engine.core.retry import RetryPolicy, retry_async
from decision_engine.core.timeutils import utc_now_iso
from decision_engine.database.store import ChangeEvent, ChangeType, DocumentStore, Subscription
from decision_engine.schemas.boundaries import (
    BOUNDARY_ADAPTER,
    Boundary,
    BoundaryCheckResult,
    EnforcementAction,
    EvaluationResult,
    Violation,
    ViolationSeverity,
)
from .audit_log import ViolationAuditLog, sanitize_context
from .evaluators import OPERATION_LOGS_COLLECTION, BoundaryEvaluator, merge_actions
from .loader import BoundaryLoader

logger = logging.getLogger(__name__)

BOUNDARIES_COLLECTION = "safety_boundaries"

# حقول يديرها النظام ولا تقبل من المستخدم
MANAGED_FIELDS = ("id", "created_by", "created_at", "updated_by", "updated_at")


def format_validation_errors(error: PydanticValidationError) -> str:
    parts = []
    for item in error.errors():
        location = ".".join(str(p) for p in item.get("loc", ()) if p is not None)
        parts.append(f"{location}: {item.get('msg')}" if location else str(item.get("msg")))
    return "; ".join(parts)


class SafetyBoundaryManager:
    """مدير حدود الأمان (نسخة واحدة لكل عملية، تمرر كاعتمادية)"""

    def __init__(
        self,
        store: DocumentStore,
        evaluator: Optional[BoundaryEvaluator] = None,
        audit_log: Optional[ViolationAuditLog] = None,
        evaluation_timeout: float = 5.0,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        self.store = store
        self.retry_policy = retry_policy or RetryPolicy()
        self.evaluator = evaluator or BoundaryEvaluator(store, retry_policy=self.retry_policy)
        self.audit_log = audit_log or ViolationAuditLog(store)
        self.evaluation_timeout = evaluation_timeout

        self._boundaries: Mapping[str, Boundary] = MappingProxyType({})
        self._initialized = False
        self._init_lock = asyncio.Lock()
        self._subscription: Optional[Subscription] = None
        self._watch_task: Optional[asyncio.Task] = None

    @property
    def initialized(self) -> bool:
        return self._initialized

    def snapshot(self) -> Mapping[str, Boundary]:
        """اللقطة الحالية (لا تتغير أثناء الاستخدام)"""
        return self._boundaries

    # ==================== التهيئة والمزامنة ====================

    async def initialize(self):
        """تحميل كل الحدود ثم الاشتراك في التغييرات (آمن للاستدعاء المتكرر)"""
        async with self._init_lock:
            if self._initialized:
                return

            # الاشتراك قبل التحميل حتى لا يضيع أي تغيير بينهما
            subscription = self.store.subscribe(BOUNDARIES_COLLECTION)
            try:
                documents = await retry_async(
                    lambda: self.store.list_all(BOUNDARIES_COLLECTION),
                    self.retry_policy,
                    description="load safety boundaries",
                )
            except Exception:
                subscription.close()
                raise

            boundaries = {}
            for document in documents:
                boundary = self._parse_document(document)
                if boundary is not None:
                    boundaries[boundary.id] = boundary
            self._swap(boundaries)

            self._subscription = subscription
            self._watch_task = asyncio.create_task(self._watch(subscription))
            self._initialized = True
            logger.info(f"✅ Safety boundary manager initialized with {len(boundaries)} boundaries")

    async def close(self):
        if self._watch_task:
            self._watch_task.cancel()
            with suppress(asyncio.CancelledError):
                await self._watch_task
            self._watch_task = None
        if self._subscription:
            self._subscription.close()
            self._subscription = None
        self._initialized = False

    async def _watch(self, subscription: Subscription):
        async for event in subscription:
            self.apply_event(event)

    def apply_event(self, event: ChangeEvent):
        """تطبيق حدث تغيير على نسخة جديدة من اللقطة"""
        boundaries = dict(self._boundaries)
        if event.type == ChangeType.DELETE:
            boundaries.pop(event.doc_id, None)
        else:
            boundary = self._parse_document({**(event.data or {}), "id": event.doc_id})
            if boundary is None:
                boundaries.pop(event.doc_id, None)
            else:
                boundaries[boundary.id] = boundary
        self._swap(boundaries)

    def _swap(self, boundaries: Dict[str, Boundary]):
        self._boundaries = MappingProxyType(boundaries)

    def _upsert_cached(self, boundary: Boundary):
        self._swap({**self._boundaries, boundary.id: boundary})

    def _remove_cached(self, boundary_id: str):
        boundaries = dict(self._boundaries)
        boundaries.pop(boundary_id, None)
        self._swap(boundaries)

    @staticmethod
    def _parse_document(document: Dict[str, Any]) -> Optional[Boundary]:
        try:
            return BOUNDARY_ADAPTER.validate_python(document)
        except PydanticValidationError as e:
            logger.warning(
                f"⚠️ Ignoring invalid boundary {document.get('id')}: {format_validation_errors(e)}"
            )
            return None

    # ==================== فحص العمليات ====================

    async def check_boundaries(self, operation_type: str, context: Optional[Dict[str, Any]] = None) -> BoundaryCheckResult:
        """
        فحص عملية مقابل كل الحدود النشطة المنطبقة عليها

        Args:
            operation_type: نوع العملية
            context: سياق العملية

        Returns:
            BoundaryCheckResult: allowed / violations / enforcement_actions
        """
        context = context or {}
        sanitized = sanitize_context(context)
        violations: List[Violation] = []

        try:
            if not self._initialized:
                raise ProcessingError("Safety boundary manager is not initialized")

            snapshot = self._boundaries
            applicable = [b for b in snapshot.values() if b.applies_to(operation_type)]

            results = await asyncio.gather(
                *(self._evaluate_with_timeout(b, operation_type, context) for b in applicable)
            )

            timestamp = utc_now_iso()
            for boundary, result in zip(applicable, results):
                if result.compliant:
                    continue
                violations.append(Violation(
                    boundary_id=boundary.id,
                    boundary_name=boundary.name,
                    boundary_type=boundary.boundary_type,
                    severity=result.severity or boundary.severity,
                    message=result.message,
                    operation_type=operation_type,
                    context=sanitized,
                    enforcement_actions=result.enforcement_actions,
                    blocking=result.blocking,
                    timestamp=timestamp,
                ))

            if violations:
                await self.audit_log.record(violations)

            return BoundaryCheckResult(
                allowed=not any(v.blocking for v in violations),
                violations=violations,
                enforcement_actions=merge_actions(v.enforcement_actions for v in violations),
            )

        except Exception as e:
            logger.error(f"❌ Boundary check failed for {operation_type}: {e}", extra={"context": sanitized})
            system_violation = Violation(
                boundary_id="error",
                boundary_type="system",
                severity=ViolationSeverity.SEVERE,
                message=f"Error checking boundaries: {e}",
                operation_type=operation_type,
                context=sanitized,
                enforcement_actions=[EnforcementAction.LOG, EnforcementAction.NOTIFY, EnforcementAction.BLOCK],
                blocking=True,
                timestamp=utc_now_iso(),
            )
            all_violations = [*violations, system_violation]
            return BoundaryCheckResult(
                allowed=False,
                violations=all_violations,
                enforcement_actions=merge_actions(v.enforcement_actions for v in all_violations),
            )

    async def _evaluate_with_timeout(self, boundary: Boundary, operation_type: str, context: Dict[str, Any]) -> EvaluationResult:
        try:
            return await asyncio.wait_for(
                self.evaluator.evaluate(boundary, operation_type, context),
                timeout=self.evaluation_timeout,
            )
        except asyncio.TimeoutError:
            logger.error(f"⏱️ Boundary {boundary.id} evaluation timed out after {self.evaluation_timeout}s")
            return self.evaluator.failure_result(
                boundary.severity, f"Boundary evaluation timed out after {self.evaluation_timeout}s"
            )

    async def record_operation(self, operation_type: str, context: Optional[Dict[str, Any]] = None) -> str:
        """تسجيل عملية منفذة (تستخدمها حدود المعدل)"""
        return await self.store.add(OPERATION_LOGS_COLLECTION, {
            "type": operation_type,
            "context": sanitize_context(context or {}),
            "timestamp": utc_now_iso(),
        })

    # ==================== إدارة الحدود ====================

    def validate_boundary(self, data: Dict[str, Any]) -> Boundary:
        """التحقق من شكل الحد (ValidationError عند الخطأ)"""
        try:
            return BOUNDARY_ADAPTER.validate_python(data)
        except PydanticValidationError as e:
            raise ValidationError(
                f"Invalid boundary configuration: {format_validation_errors(e)}",
                context={"errors": e.errors(include_url=False)},
            )

    @staticmethod
    def _as_dict(data: Union[Dict[str, Any], BaseModel]) -> Dict[str, Any]:
        if isinstance(data, BaseModel):
            return data.model_dump(mode="json", exclude_none=True)
        if not isinstance(data, dict):
            raise ValidationError("Boundary data must be an object")
        return dict(data)

    async def create_boundary(self, data: Union[Dict[str, Any], BaseModel], actor_id: str) -> Boundary:
        payload = {k: v for k, v in self._as_dict(data).items() if k not in MANAGED_FIELDS}
        now = utc_now_iso()
        payload.update(created_by=actor_id, created_at=now, updated_by=actor_id, updated_at=now)
        payload.setdefault("is_active", True)

        boundary = self.validate_boundary(payload)
        boundary = boundary.model_copy(update={"id": uuid.uuid4().hex})

        await self.store.set(BOUNDARIES_COLLECTION, boundary.id, boundary.model_dump(mode="json", exclude={"id"}))
        self._upsert_cached(boundary)
        await self.audit_log.record_admin_action("create", boundary.id, boundary.boundary_type, actor_id)

        logger.info(f"✅ Boundary created: {boundary.name} ({boundary.boundary_type}) by {actor_id}")
        return boundary

    async def update_boundary(self, boundary_id: str, updates: Union[Dict[str, Any], BaseModel], actor_id: str) -> Boundary:
        existing = await self.store.get(BOUNDARIES_COLLECTION, boundary_id)
        if existing is None:
            raise NotFoundError(f"Boundary {boundary_id} not found")

        changes = {k: v for k, v in self._as_dict(updates).items() if k not in MANAGED_FIELDS}
        merged = {**existing, **changes, "id": boundary_id, "updated_by": actor_id, "updated_at": utc_now_iso()}

        boundary = self.validate_boundary(merged)

        await self.store.set(BOUNDARIES_COLLECTION, boundary_id, boundary.model_dump(mode="json", exclude={"id"}))
        self._upsert_cached(boundary)
        await self.audit_log.record_admin_action(
            "update", boundary_id, boundary.boundary_type, actor_id, details={"fields": sorted(changes)}
        )

        logger.info(f"✅ Boundary updated: {boundary_id} by {actor_id}")
        return boundary

    async def delete_boundary(self, boundary_id: str, actor_id: str) -> bool:
        existing = await self.store.get(BOUNDARIES_COLLECTION, boundary_id)
        if existing is None:
            raise NotFoundError(f"Boundary {boundary_id} not found")

        await self.store.delete(BOUNDARIES_COLLECTION, boundary_id)
        self._remove_cached(boundary_id)
        await self.audit_log.record_admin_action(
            "delete", boundary_id, existing.get("boundary_type"), actor_id,
            details={"name": existing.get("name")},
        )

        logger.info(f"🗑️ Boundary deleted: {boundary_id} by {actor_id}")
        return True

    async def get_boundary(self, boundary_id: str) -> Boundary:
        boundary = self._boundaries.get(boundary_id)
        if boundary is not None:
            return boundary
        document = await retry_async(
            lambda: self.store.get(BOUNDARIES_COLLECTION, boundary_id),
            self.retry_policy,
            description=f"load boundary {boundary_id}",
        )
        if document is None:
            raise NotFoundError(f"Boundary {boundary_id} not found")
        return self.validate_boundary(document)

    def list_boundaries(self, operation_type: Optional[str] = None) -> List[Boundary]:
        boundaries = list(self._boundaries.values())
        if operation_type:
            boundaries = [b for b in boundaries if operation_type in b.operation_types]
        return sorted(boundaries, key=lambda b: b.name)

    async def get_recent_violations(
        self,
        boundary_type: Optional[str] = None,
        severity: Optional[ViolationSeverity] = None,
        operation_type: Optional[str] = None,
        limit: int = 50,
    ) -> List[Violation]:
        """الانتهاكات الأخيرة، الأحدث أولاً"""
        return await retry_async(
            lambda: self.audit_log.query(
                boundary_type=boundary_type,
                severity=severity,
                operation_type=operation_type,
                limit=limit,
            ),
            self.retry_policy,
            description="query boundary violations",
        )

    async def seed_boundaries(self, file_path: Union[str, Path], actor_id: str = "system") -> int:
        """إنشاء الحدود المعرفة في ملف إذا لم يوجد حد بنفس الاسم"""
        definitions = BoundaryLoader.load_from_file(file_path)
        existing_names = {b.name for b in self._boundaries.values()}
        if not self._initialized:
            documents = await self.store.list_all(BOUNDARIES_COLLECTION)
            existing_names |= {d.get("name") for d in documents}

        created = 0
        for definition in definitions:
            if definition.get("name") in existing_names:
                continue
            try:
                boundary = await self.create_boundary(definition, actor_id)
            except ValidationError as e:
                logger.error(f"❌ Skipping invalid seed boundary {definition.get('name')}: {e}")
                continue
            existing_names.add(boundary.name)
            created += 1

        logger.info(f"🌱 Seeded {created} boundaries from {file_path}")
        return created
