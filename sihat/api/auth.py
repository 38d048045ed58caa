"""
Auth API Routes
Account registration, login and profile
"""
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session
from pydantic import BaseModel, EmailStr, Field

from sihat.database.connection import get_db
from sihat.database.models import User
from sihat.services.alert_manager import alert_manager
from sihat.services.auth_service import auth_service, get_current_user, audit_service


router = APIRouter(prefix="/api/auth", tags=["Auth"])

PROFILE_FIELDS = ("full_name", "age", "gender", "height", "weight", "medical_history", "preferred_language")


# ==================== Pydantic Models ====================

class RegisterRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=6)
    full_name: Optional[str] = None


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class LoginResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: dict


class ProfileUpdate(BaseModel):
    full_name: Optional[str] = None
    age: Optional[int] = Field(None, ge=0, le=150)
    gender: Optional[str] = None
    height: Optional[float] = Field(None, gt=0)
    weight: Optional[float] = Field(None, gt=0)
    medical_history: Optional[str] = None
    preferred_language: Optional[str] = Field(None, pattern="^(en|zh|ms)$")


def user_to_dict(user: User) -> dict:
    data = {
        "id": user.id,
        "email": user.email,
        "role": user.role.value,
        "is_active": user.is_active,
        "last_login": user.last_login.isoformat() if user.last_login else None,
        "created_at": user.created_at.isoformat() if user.created_at else None,
    }
    data.update({name: getattr(user, name) for name in PROFILE_FIELDS})
    return data


# ==================== Routes ====================

@router.post("/register", response_model=LoginResponse, status_code=201)
async def register(
    request: Request,
    body: RegisterRequest,
    db: Session = Depends(get_db)
):
    """Create a patient account and log it in"""
    try:
        user = auth_service.register_user(db, body.email, body.password, body.full_name)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    audit_service.log(
        db=db,
        action="register",
        resource_type="user",
        resource_id=user.id,
        description=f"Account created for {user.email}",
        user=user,
        request=request
    )
    return {
        "access_token": auth_service.create_user_token(user),
        "token_type": "bearer",
        "user": user_to_dict(user)
    }


@router.post("/login", response_model=LoginResponse)
async def login(
    request: Request,
    body: LoginRequest,
    db: Session = Depends(get_db)
):
    """Login with email and password; returns a JWT for subsequent requests"""
    user = auth_service.authenticate_user(db, body.email, body.password)

    if not user:
        audit_service.log(
            db=db,
            action="login_failed",
            resource_type="auth",
            description=f"Failed login attempt for {body.email}",
            request=request,
            success=False
        )
        alert_manager.record_event("failed_login_attempts")
        raise HTTPException(status_code=401, detail="Invalid email or password")

    audit_service.log(
        db=db,
        action="login",
        resource_type="auth",
        description=f"User {user.email} logged in",
        user=user,
        request=request
    )
    return {
        "access_token": auth_service.create_user_token(user),
        "token_type": "bearer",
        "user": user_to_dict(user)
    }


@router.get("/me")
async def get_me(current_user: User = Depends(get_current_user)):
    return user_to_dict(current_user)


@router.put("/me")
async def update_me(
    body: ProfileUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Update the profile fields used to pre-fill the diagnosis wizard"""
    updates = body.model_dump(exclude_unset=True)
    for name, value in updates.items():
        setattr(current_user, name, value)
    db.commit()
    db.refresh(current_user)
    return user_to_dict(current_user)
