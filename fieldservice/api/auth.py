import logging
from datetime import timedelta

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from fieldservice.config import settings
from fieldservice.database import get_db
from fieldservice.models import User
from fieldservice.schemas import UserCreate, UserLogin, Token, User as UserSchema
from fieldservice.services.auth import create_user, authenticate_user, get_user_by_email
from fieldservice.services.dashboard import Dashboard, get_dashboard
from fieldservice.services.sync import SessionInfo
from fieldservice.utils.rate_limiter import limiter, RateLimits
from fieldservice.utils.security import create_access_token, verify_token, validate_password_complexity

logger = logging.getLogger(__name__)

router = APIRouter()
security = HTTPBearer()


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db)
) -> User:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    email = verify_token(credentials.credentials)
    if email is None:
        raise credentials_exception

    user = get_user_by_email(db, email=email)
    if user is None or not user.is_active:
        raise credentials_exception
    return user


def session_for(user: User) -> SessionInfo:
    return SessionInfo(user_id=user.id, email=user.email, name=user.name, role=user.role)


def get_ready_dashboard(current_user: User = Depends(get_current_user)) -> Dashboard:
    """
    Dashboard whose collections are loaded. The first authenticated request
    after a restart starts the session; 503 while the initial load runs.
    """
    dashboard = get_dashboard()
    dashboard.ensure_session(session_for(current_user))
    dashboard.require_ready()
    return dashboard


@router.post("/signup", response_model=UserSchema)
@limiter.limit(RateLimits.REGISTER)
def signup(request: Request, user: UserCreate, db: Session = Depends(get_db)):
    if not validate_password_complexity(user.password):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Password must be at least 8 characters long and contain an uppercase letter and a symbol"
        )
    return create_user(db=db, user=user)


@router.post("/login", response_model=Token)
@limiter.limit(RateLimits.LOGIN)
def login(request: Request, user_credentials: UserLogin, db: Session = Depends(get_db)):
    user = authenticate_user(db, user_credentials.email, user_credentials.password)
    if not user:
        logger.warning(f"Failed login for {user_credentials.email}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )
    access_token_expires = timedelta(minutes=settings.access_token_expire_minutes)
    access_token = create_access_token(data={"sub": user.email}, expires_delta=access_token_expires)

    # Session ready: load the dashboard collections
    get_dashboard().ensure_session(session_for(user))

    return {
        "access_token": access_token,
        "token_type": "bearer",
        "expires_in": int(access_token_expires.total_seconds()),
        "user": {
            "id": user.id,
            "email": user.email,
            "name": user.name,
            "role": user.role,
            "is_active": user.is_active,
        },
    }


@router.post("/logout")
def logout(current_user: User = Depends(get_current_user)):
    get_dashboard().end_session(current_user.id)
    return {"success": True, "message": "Logged out"}


@router.get("/me", response_model=UserSchema)
def read_users_me(current_user: User = Depends(get_current_user)):
    return current_user
