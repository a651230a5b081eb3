# tests/unit/services/test_safety_manager.py
import asyncio
import pytest
from unittest.mock import AsyncMock

from decision_engine.core.errors import NotFoundError, ValidationError
from decision_engine.core.retry import NO_RETRY
from decision_engine.database.memory_store import InMemoryDocumentStore
from decision_engine.schemas.boundaries import EnforcementAction, EvaluationResult, ViolationSeverity
from decision_engine.services.safety.audit_log import ADMIN_AUDIT_COLLECTION, VIOLATIONS_COLLECTION
from decision_engine.services.safety.manager import BOUNDARIES_COLLECTION, SafetyBoundaryManager

RATE_BOUNDARY = {
    "name": "Outreach rate",
    "boundary_type": "rate",
    "operation_types": ["OUTREACH"],
    "severity": "severe",
    "limit": 5,
    "time_window_minutes": 60,
}

CRITICAL_COMPLIANCE = {
    "name": "Consent",
    "boundary_type": "compliance",
    "operation_types": ["OUTREACH"],
    "severity": "critical",
    "required_consent": True,
}


async def wait_for_snapshot(manager, predicate, attempts=50):
    for _ in range(attempts):
        if predicate(manager.snapshot()):
            return True
        await asyncio.sleep(0.01)
    return False


# ============== الفحص ==============

@pytest.mark.asyncio
async def test_no_applicable_boundaries_allows(manager):
    result = await manager.check_boundaries("OUTREACH", {"domain": "email"})

    assert result.allowed is True
    assert result.violations == []


@pytest.mark.asyncio
async def test_sixth_operation_exceeds_rate_boundary(manager):
    await manager.create_boundary(RATE_BOUNDARY, actor_id="admin")

    for _ in range(5):
        assert (await manager.check_boundaries("OUTREACH", {})).allowed is True
        await manager.record_operation("OUTREACH", {})

    result = await manager.check_boundaries("OUTREACH", {})
    assert result.allowed is False
    assert result.violations[0].boundary_type == "rate"
    assert EnforcementAction.BLOCK in result.enforcement_actions


@pytest.mark.asyncio
async def test_critical_violation_blocks_with_shutdown(manager):
    await manager.create_boundary(CRITICAL_COMPLIANCE, actor_id="admin")

    result = await manager.check_boundaries("OUTREACH", {"has_consent": False})

    assert result.allowed is False
    assert {
        EnforcementAction.LOG, EnforcementAction.NOTIFY, EnforcementAction.BLOCK, EnforcementAction.SHUTDOWN
    } <= set(result.enforcement_actions)


@pytest.mark.asyncio
async def test_non_blocking_violation_is_reported_but_allowed(manager):
    await manager.create_boundary({**RATE_BOUNDARY, "severity": "warning", "limit": 0}, actor_id="admin")

    result = await manager.check_boundaries("OUTREACH", {})

    assert result.allowed is True
    assert len(result.violations) == 1
    assert result.enforcement_actions == [EnforcementAction.LOG, EnforcementAction.NOTIFY]


@pytest.mark.asyncio
async def test_inactive_boundary_is_ignored(manager):
    await manager.create_boundary({**CRITICAL_COMPLIANCE, "is_active": False}, actor_id="admin")

    assert (await manager.check_boundaries("OUTREACH", {})).allowed is True


@pytest.mark.asyncio
async def test_evaluator_error_fails_closed(manager):
    await manager.create_boundary({**RATE_BOUNDARY, "severity": "info"}, actor_id="admin")
    manager.evaluator.store = AsyncMock(count=AsyncMock(side_effect=RuntimeError("store offline")))

    result = await manager.check_boundaries("OUTREACH", {})

    assert result.allowed is False
    assert result.violations[0].severity == ViolationSeverity.SEVERE


@pytest.mark.asyncio
async def test_evaluation_timeout_fails_closed(manager):
    await manager.create_boundary(RATE_BOUNDARY, actor_id="admin")

    async def slow_evaluate(boundary, operation_type, context):
        await asyncio.sleep(5)
        return EvaluationResult(compliant=True)

    manager.evaluator.evaluate = slow_evaluate
    manager.evaluation_timeout = 0.05

    result = await manager.check_boundaries("OUTREACH", {})

    assert result.allowed is False
    assert "timed out" in result.violations[0].message


@pytest.mark.asyncio
async def test_unexpected_error_returns_system_violation(manager):
    await manager.create_boundary(CRITICAL_COMPLIANCE, actor_id="admin")
    manager.audit_log.record = AsyncMock(side_effect=RuntimeError("audit store down"))

    result = await manager.check_boundaries("OUTREACH", {"password": "hunter2"})

    assert result.allowed is False
    system = result.violations[-1]
    assert system.boundary_id == "error"
    assert system.boundary_type == "system"
    assert system.severity == ViolationSeverity.SEVERE
    assert system.context == {"password": "[REDACTED]"}


@pytest.mark.asyncio
async def test_uninitialized_manager_fails_closed(store):
    manager = SafetyBoundaryManager(store, retry_policy=NO_RETRY)

    result = await manager.check_boundaries("OUTREACH", {})

    assert result.allowed is False
    assert result.violations[0].boundary_id == "error"


@pytest.mark.asyncio
async def test_violations_are_persisted_sanitized(manager, store):
    await manager.create_boundary(CRITICAL_COMPLIANCE, actor_id="admin")

    await manager.check_boundaries("OUTREACH", {"api_key": "sk-123", "lead": {"ssn": "000-00-0000"}})

    stored = await store.list_all(VIOLATIONS_COLLECTION)
    assert len(stored) == 1
    assert stored[0]["context"] == {"api_key": "[REDACTED]", "lead": {"ssn": "[REDACTED]"}}


# ============== إدارة الحدود ==============

@pytest.mark.asyncio
async def test_create_rate_boundary_without_window_writes_nothing(manager, store):
    store.set = AsyncMock(wraps=store.set)
    invalid = {k: v for k, v in RATE_BOUNDARY.items() if k != "time_window_minutes"}

    with pytest.raises(ValidationError) as exc_info:
        await manager.create_boundary(invalid, actor_id="admin")

    assert "time_window_minutes" in str(exc_info.value)
    store.set.assert_not_called()
    assert await store.list_all(BOUNDARIES_COLLECTION) == []


@pytest.mark.asyncio
async def test_create_rejects_unknown_boundary_type(manager):
    with pytest.raises(ValidationError):
        await manager.create_boundary({**RATE_BOUNDARY, "boundary_type": "mood"}, actor_id="admin")


@pytest.mark.asyncio
async def test_crud_records_admin_actions(manager, store):
    boundary = await manager.create_boundary(RATE_BOUNDARY, actor_id="alice")
    assert boundary.created_by == "alice"
    assert manager.snapshot()[boundary.id].limit == 5

    updated = await manager.update_boundary(boundary.id, {"limit": 10}, actor_id="bob")
    assert updated.limit == 10
    assert updated.updated_by == "bob"
    assert updated.created_by == "alice"

    await manager.delete_boundary(boundary.id, actor_id="carol")
    assert boundary.id not in manager.snapshot()

    entries = await store.list_all(ADMIN_AUDIT_COLLECTION)
    assert sorted((e["action"], e["actor_id"]) for e in entries) == [
        ("create", "alice"), ("delete", "carol"), ("update", "bob")
    ]


@pytest.mark.asyncio
async def test_update_validates_merged_boundary(manager):
    boundary = await manager.create_boundary(RATE_BOUNDARY, actor_id="admin")

    with pytest.raises(ValidationError):
        await manager.update_boundary(boundary.id, {"time_window_minutes": 0}, actor_id="admin")

    assert manager.snapshot()[boundary.id].time_window_minutes == 60


@pytest.mark.asyncio
async def test_unknown_timezone_is_rejected_on_write(manager, store):
    """منطقة زمنية خاطئة ترفض عند الكتابة بدل أن تحجب كل العمليات لاحقاً"""
    office_hours = {
        "name": "Office hours",
        "boundary_type": "time",
        "operation_types": ["OUTREACH"],
        "allowed_hours_start": 9,
        "allowed_hours_end": 18,
        "timezone": "Europe/Pariss",
    }

    with pytest.raises(ValidationError) as exc_info:
        await manager.create_boundary(office_hours, actor_id="admin")
    assert "Unknown timezone" in str(exc_info.value)
    assert await store.list_all(BOUNDARIES_COLLECTION) == []

    boundary = await manager.create_boundary({**office_hours, "timezone": "Europe/Paris"}, actor_id="admin")
    with pytest.raises(ValidationError):
        await manager.update_boundary(boundary.id, {"timezone": "Mars/Olympus"}, actor_id="admin")
    assert manager.snapshot()[boundary.id].timezone == "Europe/Paris"


@pytest.mark.asyncio
async def test_update_and_delete_missing_boundary_raise_not_found(manager):
    with pytest.raises(NotFoundError):
        await manager.update_boundary("nope", {"limit": 1}, actor_id="admin")
    with pytest.raises(NotFoundError):
        await manager.delete_boundary("nope", actor_id="admin")
    with pytest.raises(NotFoundError):
        await manager.get_boundary("nope")


@pytest.mark.asyncio
async def test_list_boundaries_filters_by_operation_type(manager):
    await manager.create_boundary(RATE_BOUNDARY, actor_id="admin")
    await manager.create_boundary({**CRITICAL_COMPLIANCE, "operation_types": ["CAMPAIGN"]}, actor_id="admin")

    assert [b.name for b in manager.list_boundaries()] == ["Consent", "Outreach rate"]
    assert [b.name for b in manager.list_boundaries("CAMPAIGN")] == ["Consent"]


# ============== المزامنة ==============

@pytest.mark.asyncio
async def test_initialize_loads_existing_boundaries(store):
    await store.set(BOUNDARIES_COLLECTION, "b1", RATE_BOUNDARY)
    await store.set(BOUNDARIES_COLLECTION, "broken", {"name": "Broken", "boundary_type": "rate"})

    manager = SafetyBoundaryManager(store, retry_policy=NO_RETRY)
    await manager.initialize()
    await manager.initialize()
    try:
        assert list(manager.snapshot()) == ["b1"]
    finally:
        await manager.close()


@pytest.mark.asyncio
async def test_external_changes_converge_into_snapshot(manager, store):
    """تغييرات من عملية أخرى تصل عبر تدفق التغييرات"""
    await store.set(BOUNDARIES_COLLECTION, "external", CRITICAL_COMPLIANCE)
    assert await wait_for_snapshot(manager, lambda s: "external" in s)

    await store.update(BOUNDARIES_COLLECTION, "external", {"is_active": False})
    assert await wait_for_snapshot(manager, lambda s: s["external"].is_active is False)

    await store.delete(BOUNDARIES_COLLECTION, "external")
    assert await wait_for_snapshot(manager, lambda s: "external" not in s)


@pytest.mark.asyncio
async def test_snapshot_captured_by_check_is_immutable(manager):
    await manager.create_boundary(RATE_BOUNDARY, actor_id="admin")
    before = manager.snapshot()

    await manager.create_boundary(CRITICAL_COMPLIANCE, actor_id="admin")

    assert len(before) == 1
    assert len(manager.snapshot()) == 2
    with pytest.raises(TypeError):
        before["x"] = None


# ============== الانتهاكات والبذور ==============

@pytest.mark.asyncio
async def test_recent_violations_newest_first_with_filters(manager):
    await manager.create_boundary(CRITICAL_COMPLIANCE, actor_id="admin")
    await manager.create_boundary({**RATE_BOUNDARY, "limit": 0, "operation_types": ["CAMPAIGN"]}, actor_id="admin")

    await manager.check_boundaries("OUTREACH", {})
    await asyncio.sleep(0.001)
    await manager.check_boundaries("CAMPAIGN", {})

    recent = await manager.get_recent_violations()
    assert [v.operation_type for v in recent] == ["CAMPAIGN", "OUTREACH"]

    critical = await manager.get_recent_violations(severity=ViolationSeverity.CRITICAL)
    assert [v.boundary_type for v in critical] == ["compliance"]
    assert len(await manager.get_recent_violations(limit=1)) == 1


@pytest.mark.asyncio
async def test_seed_boundaries_skips_existing_names(manager, tmp_path):
    seed = tmp_path / "boundaries.yaml"
    seed.write_text(
        "boundaries:\n"
        "  - name: Outreach rate\n"
        "    boundary_type: rate\n"
        "    operation_types: [OUTREACH]\n"
        "    limit: 5\n"
        "    time_window_minutes: 60\n"
        "  - name: Invalid\n"
        "    boundary_type: rate\n"
        "    operation_types: [OUTREACH]\n",
        encoding="utf-8",
    )

    assert await manager.seed_boundaries(seed) == 1
    assert await manager.seed_boundaries(seed) == 0
    assert [b.created_by for b in manager.list_boundaries()] == ["system"]
