"""
Careline - FastAPI Main Application
"""
import time
import uuid
import logging
from datetime import datetime

from fastapi import FastAPI, Depends, Request
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.orm import Session

from . import __version__
from .db import get_db, check_connection, init_db
from .config import API_HOST, API_PORT
from .logging_config import configure_logging
from .routes.clinical_analysis import router as clinical_analysis_router
from .routes.qof import router as qof_router
from .services.clinical_analysis import get_catalog

# ==================== Logging Setup ====================
configure_logging()
logger = logging.getLogger(__name__)

# ==================== App Initialization ====================
app = FastAPI(
    title="Careline",
    description="Proactive care actions and QOF coverage from patient records and call responses",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc"
)

# ==================== Middleware ====================

@app.middleware("http")
async def log_requests(request: Request, call_next):
    """
    Log every request with a short request id, status code and latency.
    """
    request_id = str(uuid.uuid4())[:8]
    start_time = time.time()

    logger.info(f"➡️ [{request_id}] {request.method} {request.url.path}")

    try:
        response = await call_next(request)

        process_time = (time.time() - start_time) * 1000
        logger.info(
            f"⬅️ [{request_id}] {response.status_code} - {process_time:.2f}ms"
        )
        return response

    except Exception as e:
        process_time = (time.time() - start_time) * 1000
        logger.error(
            f"❌ [{request_id}] FAILED - {process_time:.2f}ms - Error: {str(e)}",
            exc_info=True
        )
        raise

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # In production, specify actual origins
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ==================== Routers ====================
app.include_router(clinical_analysis_router)  # /api/clinical-analysis/*
app.include_router(qof_router)                # /api/qof/*

# ==================== Startup & Health ====================

@app.on_event("startup")
async def startup_event():
    """Initialize database and indicator catalog on startup"""
    logger.info("🚀 Starting Careline API...")

    if not check_connection():
        logger.critical("❌ Database connection failed! Application cannot start.")
        raise RuntimeError("Cannot connect to database")

    try:
        init_db()
        logger.info("✅ Database initialized successfully")
    except Exception as e:
        logger.critical(f"❌ Database initialization failed: {e}")
        raise

    # An invalid catalog is fatal: never serve actions from a partial catalog
    try:
        catalog = get_catalog()
        logger.info(f"✅ Indicator catalog {catalog.version} loaded ({len(catalog)} indicators)")
    except Exception as e:
        logger.critical(f"❌ Indicator catalog failed to load: {e}")
        raise

    logger.info("✅ Careline API ready to accept connections")


@app.get("/")
async def root():
    """Health check and API info"""
    return {
        "service": "Careline",
        "version": __version__,
        "status": "healthy",
        "timestamp": datetime.now().isoformat(),
        "endpoints": {
            "actions": "/api/clinical-analysis/actions",
            "patient_actions": "/api/clinical-analysis/patients/{patient_id}/actions",
            "tasks": "/api/clinical-analysis/tasks",
            "indicators": "/api/qof/indicators",
            "coverage": "/api/qof/coverage",
            "catalog_reload": "/api/qof/catalog/reload"
        }
    }


@app.get("/health")
async def health_check(db: Session = Depends(get_db)):
    """Detailed health check"""
    try:
        db.execute(text("SELECT 1"))
        db_status = "healthy"
    except Exception as e:
        logger.error(f"Health check failed: {e}")
        db_status = f"unhealthy: {str(e)}"

    catalog = get_catalog()
    return {
        "status": "healthy" if db_status == "healthy" else "degraded",
        "database": db_status,
        "catalog_version": catalog.version,
        "indicators": len(catalog),
        "timestamp": datetime.now().isoformat()
    }


# Run with: uvicorn careline.main:app --reload --host 0.0.0.0 --port 8000
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=API_HOST, port=API_PORT)
