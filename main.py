"""
Sihat TCM - AI-assisted Traditional Chinese Medicine diagnosis

Backend for the patient diagnosis wizard:
- Tongue, face, body and voice analysis with model fallback
- Streaming inquiry chat, final diagnosis and report chat
- Diagnosis history for patients and guests, autosaved drafts
- Admin console, system health and alerting
"""
import time
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from sihat.config import settings
from sihat.database import init_db
from sihat.api import auth, analysis, consultation, sessions, patient, notifications, safety, admin, health
from sihat.services.alert_manager import alert_manager

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    description="""
    Backend API for the Sihat TCM diagnosis wizard:

    * **Analysis** - Tongue, face and body photos, voice recordings, photo quality
    * **Consultation** - Inquiry chat, inquiry summary, final report, report chat
    * **Sessions** - Saved diagnoses, guest sessions, autosaved drafts
    * **Patient** - History, trends, medicines and medical reports
    * **Safety** - Emergency screening and herb-drug interactions
    * **Admin** - Prompts, settings, logs, alerts, system health
    """,
    version=settings.VERSION,
    docs_url="/api/docs",
    redoc_url="/api/redoc"
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Model-Used"],
)

# Include API routers
app.include_router(auth.router)
app.include_router(analysis.router)
app.include_router(consultation.router)
app.include_router(sessions.router)
app.include_router(patient.router)
app.include_router(notifications.router)
app.include_router(safety.router)
app.include_router(admin.router)
app.include_router(health.router)


@app.middleware("http")
async def record_response_time(request: Request, call_next):
    """Feed API response times and server error rate to the alert rules"""
    tracked = request.url.path.startswith("/api/") and request.url.path != "/api/health"
    start = time.monotonic()
    try:
        response = await call_next(request)
    except Exception:
        if tracked:
            alert_manager.record_ratio("error_rate", True)
        raise
    if tracked:
        alert_manager.record_metric("api_response_time", (time.monotonic() - start) * 1000)
        alert_manager.record_ratio("error_rate", response.status_code >= 500)
    return response


@app.on_event("startup")
async def startup_event():
    """Initialize database on startup"""
    logger.info(f"Starting {settings.APP_NAME} {settings.VERSION} ({settings.ENVIRONMENT})...")
    init_db()
    logger.info("Database initialized")
    logger.info("API documentation available at /api/docs")


@app.get("/")
async def root():
    return {"name": settings.APP_NAME, "version": settings.VERSION, "docs": "/api/docs"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level="info"
    )
