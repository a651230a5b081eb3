# decision_engine/services/explainability/cache.py
import logging
from typing import Dict, Optional

from redis.exceptions import RedisError

from decision_engine.database.redis_client import RedisClient
from decision_engine.schemas.explanations import Explanation

logger = logging.getLogger(__name__)

REDIS_KEY_PREFIX = "explanation:"


class ExplanationCache:
    """
    كاش الشروحات

    المستوى الأول في الذاكرة (يعيش طوال عمر العملية)،
    والمستوى الثاني اختياري في Redis بمدة صلاحية.
    """

    def __init__(self, redis_client: Optional[RedisClient] = None, ttl_seconds: int = 0):
        self.redis_client = redis_client
        self.ttl_seconds = ttl_seconds
        self._entries: Dict[str, Explanation] = {}

    @staticmethod
    def make_key(decision_id: str, audience_type: str, include_counterfactuals: bool,
                 detail_level: int, output_format: str) -> str:
        return f"{decision_id}:{audience_type}:{str(include_counterfactuals).lower()}:{detail_level}:{output_format}"

    @property
    def redis_enabled(self) -> bool:
        return self.redis_client is not None and self.ttl_seconds > 0

    async def get(self, key: str) -> Optional[Explanation]:
        cached = self._entries.get(key)
        if cached is not None or not self.redis_enabled:
            return cached

        try:
            data = await self.redis_client.get_cached(REDIS_KEY_PREFIX + key)
        except (RedisError, OSError) as e:
            logger.warning(f"⚠️ Redis explanation cache read failed: {e}")
            return None
        if data is None:
            return None

        explanation = Explanation.model_validate(data)
        # الكتابة بنفس القيمة لنفس المفتاح
        self._entries.setdefault(key, explanation)
        return self._entries[key]

    async def set(self, key: str, explanation: Explanation) -> Explanation:
        """تخزين الشرح؛ إذا سبق تخزين المفتاح تعاد القيمة الأولى"""
        stored = self._entries.setdefault(key, explanation)
        if stored is explanation and self.redis_enabled:
            try:
                await self.redis_client.set_cached(
                    REDIS_KEY_PREFIX + key,
                    explanation.model_dump(mode="json"),
                    expire=self.ttl_seconds,
                )
            except (RedisError, OSError) as e:
                logger.warning(f"⚠️ Redis explanation cache write failed: {e}")
        return stored

    def __len__(self) -> int:
        return len(self._entries)
