import logging

from fastapi import APIRouter, Depends, HTTPException, status

from app.core.security import create_access_token, get_current_user_id, get_password_hash, verify_password
from app.db import dynamo
from app.models.user import AuthResponse, UserCreate, UserInDB, UserLogin, UserPublic

router = APIRouter()
logger = logging.getLogger(__name__)


def _auth_response(user: dict) -> AuthResponse:
    access_token = create_access_token(data={"sub": user["user_id"]})
    return AuthResponse(
        access_token=access_token,
        user=UserPublic(
            user_id=user["user_id"],
            email=user["email"],
            created_at=user.get("created_at", ""),
        ),
    )


@router.post("/signup", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
def signup(user: UserCreate):
    email = user.email.lower()

    existing = dynamo.get_user_by_email(email)
    if existing:
        logger.warning(f"Signup rejected, email already registered: {email}")
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="user with this email already exists")

    user_db = UserInDB(
        email=email,
        password_hash=get_password_hash(user.password),
    )
    dynamo.put_user(user_db.model_dump())
    logger.info(f"Registered user {user_db.user_id}")

    return _auth_response(user_db.model_dump())


@router.post("/login", response_model=AuthResponse)
def login(login_data: UserLogin):
    email = login_data.email.lower()
    user = dynamo.get_user_by_email(email)

    if not user or not verify_password(login_data.password, user.get("password_hash", "")):
        logger.warning(f"Failed login for email: {email}")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid email or password")

    logger.info(f"Login successful for user: {user['user_id']}")
    return _auth_response(user)


@router.get("/me", response_model=UserPublic)
def get_current_user(user_id: str = Depends(get_current_user_id)):
    """Get current user profile"""
    user = dynamo.get_user_by_id(user_id)
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="user not found")

    return UserPublic(
        user_id=user["user_id"],
        email=user["email"],
        created_at=user.get("created_at", ""),
    )
