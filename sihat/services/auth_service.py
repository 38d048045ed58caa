"""
Authentication Service
Bearer-token accounts for patients, doctors and admins, plus the audit trail
"""
import secrets
import logging
from datetime import datetime, timedelta
from typing import Optional, Dict, Any
import bcrypt
from jose import JWTError, jwt
from fastapi import HTTPException, status, Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from sihat.config import settings
from sihat.database.connection import get_db
from sihat.database.models import User, UserRole, AuditLog

logger = logging.getLogger(__name__)

# Tokens signed with a random key do not survive a restart
SIGNING_KEY = settings.JWT_SECRET_KEY or secrets.token_urlsafe(32)
TOKEN_ALGORITHM = "HS256"

ADMIN_ROLES = (UserRole.ADMIN, UserRole.DEVELOPER)

bearer_scheme = HTTPBearer(auto_error=False)


def normalize_email(email: str) -> str:
    return email.strip().lower()


def unauthorized() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )


class AuthService:
    """Password hashing, token issue/validation and account lookup"""

    # ==================== Passwords ====================

    def hash_password(self, password: str) -> str:
        return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")

    def verify_password(self, plain_password: str, hashed_password: str) -> bool:
        """False for a wrong password or a hash bcrypt cannot read"""
        try:
            return bcrypt.checkpw(plain_password.encode("utf-8"), hashed_password.encode("utf-8"))
        except ValueError:
            return False

    # ==================== Tokens ====================

    def create_access_token(self, claims: dict, expires_delta: timedelta = None) -> str:
        lifetime = expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
        payload = dict(claims, exp=datetime.utcnow() + lifetime)
        return jwt.encode(payload, SIGNING_KEY, algorithm=TOKEN_ALGORITHM)

    def create_user_token(self, user: User) -> str:
        return self.create_access_token({"sub": str(user.id), "role": user.role.value})

    def decode_token(self, token: str) -> Optional[Dict[str, Any]]:
        """Claims of a valid, unexpired token, else None"""
        try:
            return jwt.decode(token, SIGNING_KEY, algorithms=[TOKEN_ALGORITHM])
        except JWTError:
            return None

    def user_from_token(self, db: Session, token: str) -> Optional[User]:
        """Active user named by the token's `sub` claim"""
        claims = self.decode_token(token)
        if not claims or claims.get("sub") is None:
            return None
        try:
            user_id = int(claims["sub"])
        except (TypeError, ValueError):
            return None
        user = db.query(User).filter(User.id == user_id).first()
        if user is None or not user.is_active:
            return None
        return user

    # ==================== Accounts ====================

    def register_user(
        self,
        db: Session,
        email: str,
        password: str,
        full_name: str = None,
        role: UserRole = UserRole.PATIENT
    ) -> User:
        """Create an account; raises ValueError if the email is taken"""
        email = normalize_email(email)
        if db.query(User.id).filter(User.email == email).first():
            raise ValueError("An account with this email already exists")

        user = User(
            email=email,
            password_hash=self.hash_password(password),
            full_name=full_name,
            role=role,
            is_active=True
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        logger.info(f"Registered user {user.id} ({role.value})")
        return user

    def authenticate_user(self, db: Session, email: str, password: str) -> Optional[User]:
        """The matching active user, with last_login stamped; None otherwise"""
        user = db.query(User).filter(User.email == normalize_email(email)).first()
        if user is None or not user.is_active or not self.verify_password(password, user.password_hash):
            logger.info(f"Failed login for {normalize_email(email)}")
            return None

        user.last_login = datetime.utcnow()
        db.commit()
        return user

    # ==================== Dependencies ====================

    def get_current_user(
        self,
        request: Request,
        credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
        db: Session = Depends(get_db)
    ) -> User:
        """User for the bearer token; 401 when missing or invalid"""
        user = self.user_from_token(db, credentials.credentials) if credentials else None
        if user is None:
            raise unauthorized()
        request.state.user = user
        return user

    def require_roles(self, *allowed_roles: UserRole):
        """Dependency factory; 403 unless the caller has one of the roles"""
        def role_checker(current_user: User = Depends(get_current_user)):
            if current_user.role not in allowed_roles:
                raise HTTPException(
                    status_code=status.HTTP_403_FORBIDDEN,
                    detail=f"Access denied. Required roles: {[r.value for r in allowed_roles]}"
                )
            return current_user
        return role_checker


auth_service = AuthService()


def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
    db: Session = Depends(get_db)
) -> User:
    return auth_service.get_current_user(request, credentials, db)


def get_optional_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
    db: Session = Depends(get_db)
) -> Optional[User]:
    """Like get_current_user, but guests (no or bad token) get None"""
    if not credentials:
        return None
    user = auth_service.user_from_token(db, credentials.credentials)
    if user is not None:
        request.state.user = user
    return user


def require_admin(current_user: User = Depends(get_current_user)) -> User:
    if current_user.role not in ADMIN_ROLES:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return current_user


class AuditService:
    """Writes audit_logs rows for logins, deletions and admin changes"""

    @staticmethod
    def log(
        db: Session,
        action: str,
        resource_type: str,
        resource_id: str = None,
        description: str = None,
        new_values: dict = None,
        user: User = None,
        request: Request = None,
        success: bool = True
    ) -> AuditLog:
        client_host = request.client.host if request is not None and request.client else None
        agent = request.headers.get("user-agent", "")[:500] if request is not None else None

        entry = AuditLog(
            user_id=user.id if user else None,
            user_email=user.email if user else "system",
            user_role=user.role.value if user else "system",
            ip_address=client_host,
            user_agent=agent,
            action=action,
            resource_type=resource_type,
            resource_id=None if resource_id is None else str(resource_id),
            description=description,
            new_values=new_values,
            success=success
        )
        db.add(entry)
        db.commit()
        return entry


audit_service = AuditService()
