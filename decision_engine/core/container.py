# decision_engine/core/container.py
"""
تجميع الخدمات في حاوية واحدة لكل عملية

تُبنى مرة واحدة عند بدء التطبيق وتحفظ في app.state،
والراوترات تصل إليها عبر dependencies.
"""
import logging
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine

from decision_engine.config import Settings
from decision_engine.core.retry import RetryPolicy
from decision_engine.database.memory_store import InMemoryDocumentStore
from decision_engine.database.redis_client import RedisClient
from decision_engine.database.session import build_engine, build_session_factory, close_db, init_db
from decision_engine.database.sql_store import SqlDocumentStore
from decision_engine.database.store import DocumentStore
from decision_engine.providers.text_generator import HttpTextGenerator, TextGenerator
from decision_engine.services.decisions.arbiter import DecisionArbiter
from decision_engine.services.decisions.ensemble import TextAgentEnsemble
from decision_engine.services.decisions.policy import TabularPolicyEngine
from decision_engine.services.decisions.rewards import get_reward_function
from decision_engine.services.decisions.service import DecisionService
from decision_engine.services.explainability.cache import ExplanationCache
from decision_engine.services.explainability.engine import ExplainabilityEngine
from decision_engine.services.explainability.records import DecisionRecords
from decision_engine.services.safety.audit_log import ViolationAuditLog
from decision_engine.services.safety.evaluators import BoundaryEvaluator
from decision_engine.services.safety.manager import SafetyBoundaryManager

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    store: DocumentStore
    text_generator: TextGenerator
    safety_manager: SafetyBoundaryManager
    explainability: ExplainabilityEngine
    decision_service: DecisionService
    redis_client: Optional[RedisClient] = None
    db_engine: Optional[AsyncEngine] = field(default=None, repr=False)

    async def start(self, seed_file: Optional[str] = None):
        if self.db_engine is not None:
            await init_db(self.db_engine)
            logger.info("✅ Database initialized")

        await self.safety_manager.initialize()
        if seed_file:
            await self.safety_manager.seed_boundaries(seed_file)

    async def shutdown(self):
        await self.safety_manager.close()
        await self.text_generator.close()
        if self.redis_client is not None:
            await self.redis_client.disconnect()
        await self.store.close()
        if self.db_engine is not None:
            await close_db(self.db_engine)
            logger.info("✅ Database connection closed")


def build_services(
    settings: Settings,
    store: Optional[DocumentStore] = None,
    text_generator: Optional[TextGenerator] = None,
) -> ServiceContainer:
    """بناء كل الخدمات من الإعدادات (store و text_generator قابلان للاستبدال في الاختبارات)"""
    retry_policy = RetryPolicy(
        max_attempts=settings.RETRY_MAX_ATTEMPTS,
        base_delay=settings.RETRY_BASE_DELAY,
        max_delay=settings.RETRY_MAX_DELAY,
    )

    db_engine = None
    if store is None:
        if settings.STORE_BACKEND == "memory":
            store = InMemoryDocumentStore()
        elif settings.STORE_BACKEND == "sql":
            db_engine = build_engine(settings.DATABASE_URL, echo=settings.DEBUG)
            store = SqlDocumentStore(build_session_factory(db_engine))
        else:
            raise ValueError(f"Unknown store backend: {settings.STORE_BACKEND}")

    if text_generator is None:
        text_generator = HttpTextGenerator(
            base_url=settings.LLM_API_URL,
            api_key=settings.LLM_API_KEY,
            model=settings.LLM_MODEL,
            timeout=settings.TEXT_GENERATION_TIMEOUT,
        )

    redis_client = RedisClient(settings.REDIS_URL) if settings.REDIS_URL else None

    safety_manager = SafetyBoundaryManager(
        store,
        evaluator=BoundaryEvaluator(store, retry_policy=retry_policy),
        audit_log=ViolationAuditLog(store, max_history=settings.VIOLATION_HISTORY_SIZE),
        evaluation_timeout=settings.BOUNDARY_EVALUATION_TIMEOUT_SECONDS,
        retry_policy=retry_policy,
    )

    policy = TabularPolicyEngine(
        store,
        learning_rate=settings.POLICY_LEARNING_RATE,
        exploration_rate=settings.POLICY_EXPLORATION_RATE,
        retry_policy=retry_policy,
    )
    arbiter = DecisionArbiter(
        TextAgentEnsemble(text_generator, store, retry_policy=retry_policy),
        policy,
        confidence_threshold=settings.POLICY_CONFIDENCE_THRESHOLD,
        recommendation_timeout=settings.RECOMMENDATION_TIMEOUT_SECONDS,
    )

    explainability = ExplainabilityEngine(
        DecisionRecords(store, retry_policy=retry_policy),
        text_generator,
        cache=ExplanationCache(redis_client, ttl_seconds=settings.EXPLANATION_CACHE_TTL),
        retry_policy=retry_policy,
        text_timeout=settings.TEXT_GENERATION_TIMEOUT,
    )

    decision_service = DecisionService(
        store,
        safety_manager,
        arbiter,
        policy,
        explainability=explainability,
        reward_function=get_reward_function(settings.REWARD_TYPE),
    )

    logger.info(f"🧩 Services built (store={type(store).__name__}, reward={settings.REWARD_TYPE})")
    return ServiceContainer(
        store=store,
        text_generator=text_generator,
        safety_manager=safety_manager,
        explainability=explainability,
        decision_service=decision_service,
        redis_client=redis_client,
        db_engine=db_engine,
    )
