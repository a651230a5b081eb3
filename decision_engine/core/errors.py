# decision_engine/core/errors.py
"""
تصنيف أخطاء محرك القرارات

كل خطأ يحمل نوعه وسياقاً اختيارياً والاستثناء الأصلي إن وجد،
بحيث يمكن تسجيله بشكل موحد قبل معالجته أو إعادة رفعه.
"""
import asyncio
from enum import Enum
from typing import Any, Dict, Optional


class ErrorType(str, Enum):
    VALIDATION_ERROR = "validation_error"
    NOT_FOUND = "not_found"
    DATABASE_ERROR = "database_error"
    AI_SERVICE_ERROR = "ai_service_error"
    PROCESSING_ERROR = "processing_error"
    UNKNOWN_ERROR = "unknown_error"


class DecisionEngineError(Exception):
    """الخطأ الأساسي لكل أخطاء المحرك"""

    error_type: ErrorType = ErrorType.UNKNOWN_ERROR

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_error: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.message = message
        self.context = context or {}
        self.original_error = original_error

    def to_dict(self) -> Dict[str, Any]:
        data = {"type": self.error_type.value, "message": self.message}
        if self.original_error is not None:
            data["original_error"] = str(self.original_error)
        return data


class ValidationError(DecisionEngineError):
    error_type = ErrorType.VALIDATION_ERROR


class NotFoundError(DecisionEngineError):
    error_type = ErrorType.NOT_FOUND


class DatabaseError(DecisionEngineError):
    error_type = ErrorType.DATABASE_ERROR


class AIServiceError(DecisionEngineError):
    error_type = ErrorType.AI_SERVICE_ERROR


class ProcessingError(DecisionEngineError):
    error_type = ErrorType.PROCESSING_ERROR


class UnknownError(DecisionEngineError):
    error_type = ErrorType.UNKNOWN_ERROR


def wrap_error(
    error: BaseException,
    message: Optional[str] = None,
    context: Optional[Dict[str, Any]] = None,
) -> DecisionEngineError:
    """تحويل أي استثناء إلى أحد أنواع التصنيف"""
    if isinstance(error, DecisionEngineError):
        return error
    if isinstance(error, asyncio.TimeoutError):
        return ProcessingError(message or "Operation timed out", context, error)
    if isinstance(error, (ValueError, TypeError, KeyError)):
        return ProcessingError(message or str(error), context, error)
    return UnknownError(message or str(error), context, error)
