"""
Health Check API Route
"""
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from sihat.database.connection import get_db
from sihat.services.health_service import health_service


router = APIRouter(prefix="/api", tags=["Health"])


@router.get("/health")
async def health_check(db: Session = Depends(get_db)):
    """Database, AI key and memory checks; 503 when unhealthy"""
    report = health_service.run_checks(db)
    status_code = 503 if report["status"] == "unhealthy" else 200
    return JSONResponse(status_code=status_code, content=report)
