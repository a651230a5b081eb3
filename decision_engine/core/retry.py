# decision_engine/core/retry.py
import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

from .errors import AIServiceError, DatabaseError

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_ERRORS: Tuple[Type[BaseException], ...] = (
    DatabaseError,
    AIServiceError,
    asyncio.TimeoutError,
)


@dataclass(frozen=True)
class RetryPolicy:
    """إعدادات إعادة المحاولة مع تراجع أسي"""
    max_attempts: int = 3
    base_delay: float = 0.5
    max_delay: float = 8.0
    jitter: float = 0.2

    def delay_for(self, attempt: int) -> float:
        """التأخير قبل المحاولة التالية (attempt يبدأ من 1)"""
        delay = min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)
        spread = delay * self.jitter
        return max(0.0, delay + random.uniform(-spread, spread))


NO_RETRY = RetryPolicy(max_attempts=1, base_delay=0.0, max_delay=0.0, jitter=0.0)


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    policy: Optional[RetryPolicy] = None,
    retry_on: Tuple[Type[BaseException], ...] = RETRYABLE_ERRORS,
    description: str = "operation",
) -> T:
    """
    تنفيذ عملية غير متزامنة مع إعادة المحاولة

    Args:
        operation: دالة بدون معاملات تعيد coroutine
        policy: سياسة إعادة المحاولة
        retry_on: أنواع الأخطاء القابلة لإعادة المحاولة
        description: وصف العملية للسجلات

    Returns:
        نتيجة أول محاولة ناجحة
    """
    policy = policy or RetryPolicy()
    attempt = 1
    while True:
        try:
            return await operation()
        except retry_on as e:
            if attempt >= policy.max_attempts:
                logger.error(f"❌ {description} failed after {attempt} attempts: {e}")
                raise
            delay = policy.delay_for(attempt)
            logger.warning(
                f"⚠️ {description} failed (attempt {attempt}/{policy.max_attempts}), "
                f"retrying in {delay:.2f}s: {e}"
            )
            await asyncio.sleep(delay)
            attempt += 1
