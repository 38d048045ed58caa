"""
Medical Safety API Routes
Emergency screening, herb-drug interactions and recommendation validation
"""
from typing import Optional, List, Dict, Any, Union
from fastapi import APIRouter
from pydantic import BaseModel, Field

from sihat.services.medical_safety_service import medical_safety_service


router = APIRouter(prefix="/api/safety", tags=["Medical Safety"])


class EmergencyCheckRequest(BaseModel):
    symptoms: Union[str, List[str]]


class InteractionCheckRequest(BaseModel):
    herbs: List[str]
    medications: List[str]


class RecommendationValidationRequest(BaseModel):
    recommendations: Dict[str, List[str]]
    medical_history: Optional[Dict[str, Any]] = None
    age: Optional[int] = Field(None, ge=0, le=150)
    symptoms: Optional[str] = None


@router.post("/emergency")
async def check_emergency(body: EmergencyCheckRequest):
    return medical_safety_service.check_emergency(body.symptoms)


@router.post("/interactions")
async def check_interactions(body: InteractionCheckRequest):
    interactions = medical_safety_service.check_interactions(body.herbs, body.medications)
    return {"interactions": interactions, "count": len(interactions)}


@router.post("/validate")
async def validate_recommendations(body: RecommendationValidationRequest):
    """Screen treatment recommendations against the patient's history"""
    result = medical_safety_service.validate_recommendations(
        body.recommendations,
        medical_history=body.medical_history,
        age=body.age,
        symptoms=body.symptoms
    )
    return result.to_dict()
