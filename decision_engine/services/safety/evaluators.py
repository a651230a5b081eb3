# decision_engine/services/safety/evaluators.py
"""
مقيم الحدود: يقيم حداً واحداً مقابل سياق عملية

الاختيار حسب نوع الحد عبر جدول توزيع (dispatch table) بدل سلسلة if/else.
أي خطأ داخلي أثناء التقييم يعتبر انتهاكاً مانعاً بدرجة SEVERE على الأقل.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple
from zoneinfo import ZoneInfo

from decision_engine.core.retry import RetryPolicy, retry_async
from decision_engine.core.timeutils import to_iso, utc_now
from decision_engine.database.store import DocumentStore, Filter
from decision_engine.schemas.boundaries import (
    BoundaryType,
    BudgetBoundary,
    ComplianceBoundary,
    ContentBoundary,
    EnforcementAction,
    EthicsBoundary,
    EvaluationResult,
    RateBoundary,
    ScopeBoundary,
    TimeBoundary,
    ViolationSeverity,
)
from .checks import ContentModerator, EthicsChecker, KeywordContentModerator, KeywordEthicsChecker, find_terms

logger = logging.getLogger(__name__)

BUDGETS_COLLECTION = "budgets"
OPERATION_LOGS_COLLECTION = "operation_logs"

# سلم الإجراءات حسب الخطورة (تصاعدي)
ENFORCEMENT_LADDER: Dict[ViolationSeverity, List[EnforcementAction]] = {
    ViolationSeverity.INFO: [EnforcementAction.LOG],
    ViolationSeverity.WARNING: [EnforcementAction.LOG, EnforcementAction.NOTIFY],
    ViolationSeverity.MODERATE: [EnforcementAction.LOG, EnforcementAction.NOTIFY, EnforcementAction.THROTTLE],
    ViolationSeverity.SEVERE: [EnforcementAction.LOG, EnforcementAction.NOTIFY, EnforcementAction.BLOCK],
    ViolationSeverity.CRITICAL: [
        EnforcementAction.LOG,
        EnforcementAction.NOTIFY,
        EnforcementAction.BLOCK,
        EnforcementAction.SHUTDOWN,
    ],
}

BLOCKING_SEVERITIES = {ViolationSeverity.SEVERE, ViolationSeverity.CRITICAL}

# ترتيب ثابت لإزالة التكرار مع الحفاظ على ترتيب السلم
ACTION_ORDER = list(EnforcementAction)


def enforcement_for(severity: Any) -> Tuple[List[EnforcementAction], bool]:
    """الإجراءات وهل هي مانعة؛ الخطورة غير المعروفة تمنع افتراضياً"""
    try:
        severity = ViolationSeverity(severity)
    except ValueError:
        return [EnforcementAction.NOTIFY, EnforcementAction.BLOCK], True
    return list(ENFORCEMENT_LADDER[severity]), severity in BLOCKING_SEVERITIES


def escalate(severity: ViolationSeverity, floor: ViolationSeverity = ViolationSeverity.SEVERE) -> ViolationSeverity:
    return severity if severity.rank >= floor.rank else floor


def merge_actions(action_lists) -> List[EnforcementAction]:
    seen = {action for actions in action_lists for action in actions}
    return [action for action in ACTION_ORDER if action in seen]


CheckOutcome = Tuple[bool, str]


class BoundaryEvaluator:
    """تقييم حد واحد مقابل سياق عملية"""

    def __init__(
        self,
        store: DocumentStore,
        moderator: Optional[ContentModerator] = None,
        ethics_checker: Optional[EthicsChecker] = None,
        clock: Callable[[], datetime] = utc_now,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        self.store = store
        self.moderator = moderator or KeywordContentModerator()
        self.ethics_checker = ethics_checker or KeywordEthicsChecker()
        self.clock = clock
        self.retry_policy = retry_policy or RetryPolicy()

        self._checks: Dict[BoundaryType, Callable[[Any, str, Dict[str, Any]], Awaitable[CheckOutcome]]] = {
            BoundaryType.BUDGET: self._check_budget,
            BoundaryType.RATE: self._check_rate,
            BoundaryType.SCOPE: self._check_scope,
            BoundaryType.TIME: self._check_time,
            BoundaryType.CONTENT: self._check_content,
            BoundaryType.COMPLIANCE: self._check_compliance,
            BoundaryType.ETHICS: self._check_ethics,
        }

    async def evaluate(self, boundary, operation_type: str, context: Dict[str, Any]) -> EvaluationResult:
        """
        تقييم الحد

        Returns:
            EvaluationResult: compliant / message / blocking / enforcement_actions
        """
        try:
            check = self._checks[BoundaryType(boundary.boundary_type)]
            compliant, message = await check(boundary, operation_type, context)
        except Exception as e:
            logger.error(f"❌ Error evaluating boundary {boundary.id} ({boundary.boundary_type}): {e}")
            return self.failure_result(boundary.severity, f"Error evaluating boundary: {e}")

        if compliant:
            return EvaluationResult(compliant=True, message=message)

        actions, blocking = enforcement_for(boundary.severity)
        return EvaluationResult(
            compliant=False,
            message=message,
            blocking=blocking,
            severity=boundary.severity,
            enforcement_actions=actions,
        )

    @staticmethod
    def failure_result(severity: ViolationSeverity, message: str) -> EvaluationResult:
        """نتيجة الفشل المغلق: غير ممتثل ومانع"""
        escalated = escalate(ViolationSeverity(severity))
        actions, _ = enforcement_for(escalated)
        return EvaluationResult(
            compliant=False,
            message=message,
            blocking=True,
            severity=escalated,
            enforcement_actions=actions,
            error=True,
        )

    # ==================== الفحوصات حسب النوع ====================

    async def _check_budget(self, boundary: BudgetBoundary, operation_type: str, context: Dict[str, Any]) -> CheckOutcome:
        if not boundary.budget_id:
            return True, "No budget referenced"

        budget = await retry_async(
            lambda: self.store.get(BUDGETS_COLLECTION, boundary.budget_id),
            self.retry_policy,
            description=f"load budget {boundary.budget_id}",
        )
        if budget is None:
            return False, f"Budget {boundary.budget_id} not found"

        cost = float(context.get("cost") or 0)
        current_spend = float(budget.get("current_spend") or 0)
        limit = boundary.limit
        if budget.get("limit") is not None:
            limit = min(limit, float(budget["limit"]))

        if current_spend + cost > limit:
            return False, (
                f"Operation would exceed budget: {current_spend + cost:.2f} > {limit:.2f} {boundary.unit}"
            )
        return True, "Within budget"

    async def _check_rate(self, boundary: RateBoundary, operation_type: str, context: Dict[str, Any]) -> CheckOutcome:
        window_start = self.clock() - timedelta(minutes=boundary.time_window_minutes)
        filters = [
            Filter("type", "==", operation_type),
            Filter("timestamp", ">=", to_iso(window_start)),
        ]
        count = await retry_async(
            lambda: self.store.count(OPERATION_LOGS_COLLECTION, filters),
            self.retry_policy,
            description=f"count operations {operation_type}",
        )
        if count >= boundary.limit:
            return False, (
                f"Rate limit exceeded: {count} operations in the last "
                f"{boundary.time_window_minutes:g} minutes (limit {boundary.limit:g})"
            )
        return True, "Within rate limit"

    async def _check_scope(self, boundary: ScopeBoundary, operation_type: str, context: Dict[str, Any]) -> CheckOutcome:
        domain = context.get("domain")
        if boundary.allowed_domains and domain and domain not in boundary.allowed_domains:
            return False, f"Domain '{domain}' is outside the allowed scope"

        action = context.get("action")
        if boundary.allowed_actions and action and action not in boundary.allowed_actions:
            return False, f"Action '{action}' is outside the allowed scope"

        return True, "Within scope"

    async def _check_time(self, boundary: TimeBoundary, operation_type: str, context: Dict[str, Any]) -> CheckOutcome:
        tz = timezone.utc if boundary.timezone.upper() == "UTC" else ZoneInfo(boundary.timezone)
        now = self.clock().astimezone(tz)

        if boundary.allowed_days is not None:
            day = (now.weekday() + 1) % 7  # 0 = الأحد
            if day not in boundary.allowed_days:
                return False, f"Operation not allowed on day {day}"

        start, end = boundary.allowed_hours_start, boundary.allowed_hours_end
        if start is not None and end is not None:
            hour = now.hour
            if start <= end:
                allowed = start <= hour < end
            else:
                # نافذة تعبر منتصف الليل
                allowed = hour >= start or hour < end
            if not allowed:
                return False, f"Operation not allowed at hour {hour} (allowed {start}:00-{end}:00 {boundary.timezone})"

        return True, "Within allowed time"

    async def _check_content(self, boundary: ContentBoundary, operation_type: str, context: Dict[str, Any]) -> CheckOutcome:
        if not boundary.content_field:
            return True, "No content field configured"

        content = context.get(boundary.content_field)
        if content is None:
            return True, "No content to check"
        content = str(content)

        found = find_terms(content, boundary.prohibited_terms)
        if found:
            return False, f"Content contains prohibited terms: {', '.join(found)}"

        if boundary.content_moderation:
            result = await self.moderator.moderate(content)
            if not result.approved:
                return False, result.reason or "Content failed moderation"

        return True, "Content approved"

    async def _check_compliance(self, boundary: ComplianceBoundary, operation_type: str, context: Dict[str, Any]) -> CheckOutcome:
        missing = [f for f in boundary.required_fields if context.get(f) in (None, "")]
        if missing:
            return False, f"Missing required fields: {', '.join(missing)}"

        if boundary.required_consent and not context.get("has_consent"):
            return False, "Required consent not provided"

        return True, "Compliant"

    async def _check_ethics(self, boundary: EthicsBoundary, operation_type: str, context: Dict[str, Any]) -> CheckOutcome:
        description = str(context.get("description") or "")
        for guideline in boundary.ethical_guidelines:
            if guideline.trigger.lower() in description.lower():
                return False, f"Ethical guideline triggered: {guideline.description or guideline.trigger}"

        if boundary.perform_ethics_check:
            result = await self.ethics_checker.check(context)
            if not result.approved:
                return False, result.reason or "Ethics check failed"

        return True, "No ethical concerns"
