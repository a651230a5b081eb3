# tests/unit/services/test_boundary_evaluators.py
import pytest
from datetime import datetime, timedelta, timezone

from decision_engine.core.retry import NO_RETRY
from decision_engine.core.timeutils import to_iso
from decision_engine.schemas.boundaries import (
    BudgetBoundary,
    ComplianceBoundary,
    ContentBoundary,
    EnforcementAction,
    EthicalGuideline,
    EthicsBoundary,
    RateBoundary,
    ScopeBoundary,
    TimeBoundary,
    ViolationSeverity,
)
from decision_engine.services.safety.checks import CheckResult, ContentModerator
from decision_engine.services.safety.evaluators import (
    BUDGETS_COLLECTION,
    OPERATION_LOGS_COLLECTION,
    BoundaryEvaluator,
    enforcement_for,
    merge_actions,
)
from tests.fakes import fixed_clock

# الأحد 7 يناير 2024
SUNDAY_NOON = datetime(2024, 1, 7, 12, 0, tzinfo=timezone.utc)


def time_boundary(**kwargs):
    return TimeBoundary(id="b_time", name="Night window", operation_types=["OUTREACH"], **kwargs)


def evaluator_at(store, moment):
    return BoundaryEvaluator(store, clock=fixed_clock(moment), retry_policy=NO_RETRY)


# ============== سلم الإجراءات ==============

def test_enforcement_ladder_is_monotonic():
    """كل درجة تحتوي إجراءات الدرجة التي قبلها"""
    previous = set()
    for severity in ViolationSeverity:
        actions, _ = enforcement_for(severity)
        assert previous <= set(actions)
        previous = set(actions)


def test_only_severe_and_critical_block():
    assert enforcement_for(ViolationSeverity.MODERATE)[1] is False
    assert enforcement_for(ViolationSeverity.SEVERE)[1] is True
    assert enforcement_for(ViolationSeverity.CRITICAL) == (
        [EnforcementAction.LOG, EnforcementAction.NOTIFY, EnforcementAction.BLOCK, EnforcementAction.SHUTDOWN],
        True,
    )


def test_unknown_severity_blocks():
    actions, blocking = enforcement_for("catastrophic")
    assert blocking is True
    assert EnforcementAction.BLOCK in actions


def test_merge_actions_deduplicates_in_ladder_order():
    merged = merge_actions([
        [EnforcementAction.BLOCK, EnforcementAction.LOG],
        [EnforcementAction.LOG, EnforcementAction.NOTIFY],
    ])
    assert merged == [EnforcementAction.LOG, EnforcementAction.NOTIFY, EnforcementAction.BLOCK]


# ============== الوقت ==============

@pytest.mark.asyncio
@pytest.mark.parametrize("hour, allowed", [(23, True), (2, True), (6, False), (12, False), (22, True)])
async def test_wrapping_time_window(store, hour, allowed):
    """نافذة 22 -> 6 تعبر منتصف الليل"""
    boundary = time_boundary(allowed_hours_start=22, allowed_hours_end=6, severity=ViolationSeverity.SEVERE)
    result = await evaluator_at(store, SUNDAY_NOON.replace(hour=hour)).evaluate(boundary, "OUTREACH", {})

    assert result.compliant is allowed
    if not allowed:
        assert result.blocking is True


@pytest.mark.asyncio
async def test_time_window_uses_sunday_as_day_zero(store):
    boundary = time_boundary(allowed_days=[1, 2, 3, 4, 5])
    result = await evaluator_at(store, SUNDAY_NOON).evaluate(boundary, "OUTREACH", {})

    assert result.compliant is False
    assert "day 0" in result.message

    monday = SUNDAY_NOON + timedelta(days=1)
    assert (await evaluator_at(store, monday).evaluate(boundary, "OUTREACH", {})).compliant is True


@pytest.mark.asyncio
async def test_time_window_in_named_timezone(store):
    # 12:00 UTC = 21:00 في طوكيو
    boundary = time_boundary(allowed_hours_start=9, allowed_hours_end=18, timezone="Asia/Tokyo")
    result = await evaluator_at(store, SUNDAY_NOON).evaluate(boundary, "OUTREACH", {})

    assert result.compliant is False
    assert "hour 21" in result.message


# ============== الميزانية ==============

@pytest.mark.asyncio
async def test_budget_with_unknown_id_is_not_compliant(store, evaluator):
    boundary = BudgetBoundary(
        id="b_budget", name="Spend", operation_types=["CAMPAIGN"], budget_id="missing_budget", limit=1000
    )
    result = await evaluator.evaluate(boundary, "CAMPAIGN", {"cost": 10})

    assert result.compliant is False
    assert "not found" in result.message
    assert result.error is False


@pytest.mark.asyncio
async def test_budget_limit_uses_lowest_limit(store, evaluator):
    await store.set(BUDGETS_COLLECTION, "q1", {"current_spend": 400, "limit": 500})
    boundary = BudgetBoundary(id="b_budget", name="Spend", operation_types=["CAMPAIGN"], budget_id="q1", limit=1000)

    within = await evaluator.evaluate(boundary, "CAMPAIGN", {"cost": 100})
    over = await evaluator.evaluate(boundary, "CAMPAIGN", {"cost": 150})

    assert within.compliant is True
    assert over.compliant is False
    assert "exceed budget" in over.message


@pytest.mark.asyncio
async def test_budget_without_reference_is_compliant(evaluator):
    boundary = BudgetBoundary(id="b_budget", name="Spend", operation_types=["CAMPAIGN"], limit=0)
    assert (await evaluator.evaluate(boundary, "CAMPAIGN", {"cost": 99})).compliant is True


# ============== المعدل ==============

@pytest.mark.asyncio
async def test_rate_limit_counts_only_recent_operations_of_same_type(store):
    now = SUNDAY_NOON
    for minutes_ago in (5, 10, 20, 30):
        await store.add(OPERATION_LOGS_COLLECTION, {
            "type": "OUTREACH", "timestamp": to_iso(now - timedelta(minutes=minutes_ago))
        })
    await store.add(OPERATION_LOGS_COLLECTION, {"type": "OUTREACH", "timestamp": to_iso(now - timedelta(hours=3))})
    await store.add(OPERATION_LOGS_COLLECTION, {"type": "OTHER", "timestamp": to_iso(now)})

    boundary = RateBoundary(
        id="b_rate", name="Outreach rate", operation_types=["OUTREACH"], limit=5, time_window_minutes=60
    )
    evaluator = evaluator_at(store, now)

    assert (await evaluator.evaluate(boundary, "OUTREACH", {})).compliant is True

    await store.add(OPERATION_LOGS_COLLECTION, {"type": "OUTREACH", "timestamp": to_iso(now - timedelta(minutes=1))})
    result = await evaluator.evaluate(boundary, "OUTREACH", {})
    assert result.compliant is False
    assert "Rate limit exceeded" in result.message


# ============== النطاق والامتثال ==============

@pytest.mark.asyncio
async def test_scope_rejects_domain_and_action_outside_allow_list(evaluator):
    boundary = ScopeBoundary(
        id="b_scope", name="Scope", operation_types=["OUTREACH"],
        allowed_domains=["email"], allowed_actions=["send"],
    )

    assert (await evaluator.evaluate(boundary, "OUTREACH", {"domain": "email", "action": "send"})).compliant
    assert not (await evaluator.evaluate(boundary, "OUTREACH", {"domain": "sms"})).compliant
    assert not (await evaluator.evaluate(boundary, "OUTREACH", {"action": "call"})).compliant
    # غياب الحقل لا يعتبر انتهاكاً
    assert (await evaluator.evaluate(boundary, "OUTREACH", {})).compliant


@pytest.mark.asyncio
async def test_compliance_requires_fields_and_consent(evaluator):
    boundary = ComplianceBoundary(
        id="b_gdpr", name="GDPR", operation_types=["OUTREACH"],
        required_fields=["contact_email"], required_consent=True,
    )

    missing = await evaluator.evaluate(boundary, "OUTREACH", {"contact_email": ""})
    no_consent = await evaluator.evaluate(boundary, "OUTREACH", {"contact_email": "a@b.co"})
    ok = await evaluator.evaluate(boundary, "OUTREACH", {"contact_email": "a@b.co", "has_consent": True})

    assert "contact_email" in missing.message
    assert no_consent.compliant is False
    assert ok.compliant is True


# ============== المحتوى والأخلاقيات ==============

@pytest.mark.asyncio
async def test_content_prohibited_terms_and_moderation(evaluator):
    boundary = ContentBoundary(
        id="b_content", name="Content", operation_types=["OUTREACH"],
        content_field="message", prohibited_terms=["Risk-Free"], content_moderation=True,
    )

    prohibited = await evaluator.evaluate(boundary, "OUTREACH", {"message": "A risk-free offer"})
    moderated = await evaluator.evaluate(boundary, "OUTREACH", {"message": "Win big with gambling"})
    clean = await evaluator.evaluate(boundary, "OUTREACH", {"message": "Our spring newsletter"})

    assert "Risk-Free" in prohibited.message
    assert moderated.compliant is False
    assert "gambling" in moderated.message
    assert clean.compliant is True


@pytest.mark.asyncio
async def test_content_moderator_is_injectable(store):
    class RejectAll(ContentModerator):
        async def moderate(self, content):
            return CheckResult(False, reason="Rejected by reviewer")

    evaluator = BoundaryEvaluator(store, moderator=RejectAll(), retry_policy=NO_RETRY)
    boundary = ContentBoundary(
        id="b_content", name="Content", operation_types=["OUTREACH"],
        content_field="message", content_moderation=True,
    )
    result = await evaluator.evaluate(boundary, "OUTREACH", {"message": "hello"})

    assert result.message == "Rejected by reviewer"


@pytest.mark.asyncio
async def test_ethics_guidelines_and_vulnerable_groups(evaluator):
    boundary = EthicsBoundary(
        id="b_ethics", name="Ethics", operation_types=["CAMPAIGN"],
        ethical_guidelines=[EthicalGuideline(trigger="payday loan", description="No predatory lending")],
        perform_ethics_check=True,
    )

    guideline = await evaluator.evaluate(boundary, "CAMPAIGN", {"description": "Promote a Payday Loan"})
    vulnerable = await evaluator.evaluate(boundary, "CAMPAIGN", {"target_audience": ["elderly", "retirees"]})
    fine = await evaluator.evaluate(boundary, "CAMPAIGN", {"description": "Product update"})

    assert guideline.message == "Ethical guideline triggered: No predatory lending"
    assert "vulnerable" in vulnerable.message
    assert fine.compliant is True


# ============== الفشل المغلق ==============

@pytest.mark.asyncio
async def test_internal_error_is_blocking_and_escalated(store):
    class BrokenStore(type(store)):
        async def count(self, collection, filters=None):
            raise RuntimeError("connection reset")

    evaluator = BoundaryEvaluator(BrokenStore(), retry_policy=NO_RETRY)
    boundary = RateBoundary(
        id="b_rate", name="Rate", operation_types=["OUTREACH"], limit=5, time_window_minutes=60,
        severity=ViolationSeverity.INFO,
    )
    result = await evaluator.evaluate(boundary, "OUTREACH", {})

    assert result.compliant is False
    assert result.blocking is True
    assert result.error is True
    assert result.severity == ViolationSeverity.SEVERE
    assert EnforcementAction.BLOCK in result.enforcement_actions
