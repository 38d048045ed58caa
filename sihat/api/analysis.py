"""
Analysis API Routes
Tongue/face/body photo analysis, voice analysis and photo quality checks
"""
import logging
from typing import Optional, Literal
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from pydantic import BaseModel

from sihat.database.connection import get_db
from sihat.services.gemini_service import apply_admin_api_key, decode_data_url
from sihat.services.image_analysis_service import image_analysis_service
from sihat.services.audio_analysis_service import audio_analysis_service
from sihat.services.image_quality_service import image_quality_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Analysis"], dependencies=[Depends(apply_admin_api_key)])


# ==================== Pydantic Models ====================

class ImageAnalysisRequest(BaseModel):
    image: str
    type: Literal["tongue", "face", "body", "other"] = "tongue"
    symptoms: Optional[str] = None
    mainComplaint: Optional[str] = None
    model: Optional[str] = None


class AudioAnalysisRequest(BaseModel):
    audio: Optional[str] = None


class ImageQualityRequest(BaseModel):
    image: str
    mode: Literal["tongue", "face", "body"] = "face"


# ==================== Routes ====================

@router.post("/analyze-image")
async def analyze_image(body: ImageAnalysisRequest, db: Session = Depends(get_db)):
    """
    Inspect a patient photo for TCM signs.
    Always answers 200; failures are reported in the `status` field.
    """
    return image_analysis_service.analyze(
        db,
        body.image,
        image_type=body.type,
        symptoms=body.symptoms,
        main_complaint=body.mainComplaint,
        model=body.model
    )


@router.post("/analyze-audio")
async def analyze_audio(body: AudioAnalysisRequest, db: Session = Depends(get_db)):
    """Listening diagnosis on a voice recording"""
    return audio_analysis_service.analyze(db, body.audio)


@router.post("/image-quality")
async def image_quality(body: ImageQualityRequest):
    """Score blur, lighting, framing and resolution before a photo is submitted"""
    try:
        image_bytes, _ = decode_data_url(body.image, "image/jpeg")
        result = image_quality_service.assess(image_bytes, body.mode)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return result.to_dict()
