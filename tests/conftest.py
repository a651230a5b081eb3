# tests/conftest.py
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from decision_engine.config import Settings
from decision_engine.core.container import build_services
from decision_engine.main import app
from decision_engine.core.retry import NO_RETRY
from decision_engine.database.memory_store import InMemoryDocumentStore
from decision_engine.schemas.decisions import AgentRecommendation, DecisionRequest
from decision_engine.services.safety.audit_log import ViolationAuditLog
from decision_engine.services.safety.evaluators import BoundaryEvaluator
from decision_engine.services.safety.manager import SafetyBoundaryManager
from tests.fakes import FakeTextGenerator, agent_reply


@pytest.fixture
def store():
    """مخزن مستندات في الذاكرة لكل اختبار"""
    return InMemoryDocumentStore()


@pytest.fixture
def evaluator(store):
    return BoundaryEvaluator(store, retry_policy=NO_RETRY)


@pytest_asyncio.fixture
async def manager(store, evaluator):
    """مدير حدود مهيأ (بدون إعادة محاولة)"""
    boundary_manager = SafetyBoundaryManager(
        store,
        evaluator=evaluator,
        audit_log=ViolationAuditLog(store, max_history=10),
        evaluation_timeout=1.0,
        retry_policy=NO_RETRY,
    )
    await boundary_manager.initialize()
    yield boundary_manager
    await boundary_manager.close()


@pytest.fixture
def lead_request():
    """طلب قرار تأهيل عميل نموذجي"""
    return DecisionRequest(
        decision_type="LEAD_QUALIFICATION",
        context={"lead_id": "lead_42", "industry": "saas", "api_key": "sk-live-123"},
        actions=["qualify_lead", "nurture_lead", "disqualify_lead"],
    )


@pytest.fixture
def ensemble_recommendation():
    return AgentRecommendation(
        action="nurture_lead",
        confidence=0.7,
        reasoning="Engaged lead without budget confirmation",
        alternative_actions=["qualify_lead"],
        source="ensemble",
        collaboration_id="collab_test",
    )


@pytest.fixture
def policy_recommendation():
    return AgentRecommendation(
        action="qualify_lead",
        confidence=0.85,
        reasoning="Highest learned value for 'qualify_lead'",
        alternative_actions=["nurture_lead"],
        source="policy",
    )


@pytest_asyncio.fixture
async def services():
    """حاوية خدمات كاملة بمخزن في الذاكرة ومولد نصوص وهمي"""
    generator = FakeTextGenerator(
        rules=[
            ("Qualification Agent", agent_reply("qualify_lead", 0.9, "Budget confirmed")),
            ("Extract the key factors", '[{"description": "Budget confirmed", "importance": 0.9}]'),
            ("list short factors", '["Single dominant agent"]'),
            ("Generate a clear explanation", "The lead is ready to buy."),
        ],
        default=agent_reply("nurture_lead", 0.6, "Needs more touchpoints"),
    )
    container = build_services(
        Settings(STORE_BACKEND="memory", REDIS_URL=None, RETRY_MAX_ATTEMPTS=1, POLICY_EXPLORATION_RATE=0.0),
        text_generator=generator,
    )
    await container.start()
    yield container
    await container.shutdown()


@pytest_asyncio.fixture
async def api(services):
    """عميل HTTP على التطبيق بدون lifespan (الخدمات محقونة مباشرة)"""
    app.state.services = services
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
    app.state.services = None
