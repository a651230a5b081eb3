# decision_engine/dependencies.py
from fastapi import HTTPException, Request, status

from decision_engine.core.container import ServiceContainer
from decision_engine.core.errors import DecisionEngineError, NotFoundError, ValidationError
from decision_engine.services.decisions.service import DecisionService
from decision_engine.services.explainability.engine import ExplainabilityEngine
from decision_engine.services.safety.manager import SafetyBoundaryManager


# اعتمادات الخدمات (تبنى في lifespan وتحفظ في app.state)
def get_services(request: Request) -> ServiceContainer:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Services are not initialized"
        )
    return services


def get_decision_service(request: Request) -> DecisionService:
    """خدمة القرارات"""
    return get_services(request).decision_service


def get_safety_manager(request: Request) -> SafetyBoundaryManager:
    """مدير حدود الأمان"""
    return get_services(request).safety_manager


def get_explainability(request: Request) -> ExplainabilityEngine:
    """محرك الشرح"""
    return get_services(request).explainability


def http_error(error: DecisionEngineError) -> HTTPException:
    """تحويل أخطاء المحرك إلى HTTPException"""
    if isinstance(error, ValidationError):
        return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=error.message)
    if isinstance(error, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=error.message)
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=error.message)
