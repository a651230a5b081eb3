import logging
import traceback
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from decision_engine.config import settings
from decision_engine.core.container import build_services
from decision_engine.core.logging_config import setup_logging
from decision_engine.core.timeutils import utc_now_iso
from decision_engine.routers.boundaries import router as boundaries_router
from decision_engine.routers.decisions import router as decisions_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # بدء التشغيل
    setup_logging(settings.LOG_DIR, settings.LOG_LEVEL)
    logger.info("🚀 Starting decision engine...")

    services = build_services(settings)
    try:
        await services.start(settings.BOUNDARIES_SEED_FILE)
    except Exception as e:
        logger.error(f"❌ Failed to start services: {e}")
        logger.error(traceback.format_exc())
        await services.shutdown()
        raise
    app.state.services = services
    logger.info(f"✅ Safety boundaries loaded: {len(services.safety_manager.snapshot())}")

    yield

    # إغلاق التشغيل
    logger.info("🔌 Shutting down decision engine...")
    try:
        await services.shutdown()
    except Exception as e:
        logger.error(f"❌ Error during shutdown: {e}")
    app.state.services = None


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    lifespan=lifespan
)


# Middleware لتسجيل كل الطلبات
@app.middleware("http")
async def log_request_response(request: Request, call_next):
    start_time = datetime.now()

    try:
        response = await call_next(request)
        process_time = (datetime.now() - start_time).total_seconds() * 1000
        logger.debug(f"⬅️  {request.method} {request.url.path} -> {response.status_code} ({process_time:.2f}ms)")
        return response

    except Exception as e:
        process_time = (datetime.now() - start_time).total_seconds() * 1000
        logger.error(f"💥 ERROR in {request.method} {request.url}: {str(e)}")
        logger.error(f"   Traceback:\n{traceback.format_exc()}")
        logger.error(f"   Time: {process_time:.2f}ms")

        return JSONResponse(
            status_code=500,
            content={
                "detail": "Internal Server Error",
                "error": str(e),
                "path": str(request.url.path),
                "timestamp": utc_now_iso()
            }
        )


# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(decisions_router, prefix=f"{settings.API_V1_PREFIX}/decisions")
app.include_router(boundaries_router, prefix=f"{settings.API_V1_PREFIX}/boundaries")


@app.get("/")
async def root():
    return {
        "message": "Decision Engine API",
        "version": settings.VERSION,
        "docs": "/docs"
    }


@app.get("/health")
async def health_check(request: Request):
    services = getattr(request.app.state, "services", None)
    return {
        "status": "healthy" if services and services.safety_manager.initialized else "starting",
        "timestamp": utc_now_iso()
    }
