"""
Account endpoints for XenBox owners.

Registration grants the default storage allowance; login issues the bearer
JWT that every /xenbox owner route expects.
"""
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.config import settings
from app.database import get_db
from app.logging_config import setup_logging
from app.models.user import User
from app.schemas.auth import TokenResponse, UserLoginRequest, UserRegisterRequest, UserResponse
from app.schemas.common import APIResponse
from app.services.auth import hash_password, verify_password
from app.services.jwt import create_access_token

# tags為標籤，用於 API 文件分組，在 Swagger自動文件頁面會顯示為「auth」區塊
router = APIRouter(prefix="/auth", tags=["auth"])

logger = setup_logging()


def _auth_error(status_code: int, error: str, message: str) -> HTTPException:
    return HTTPException(
        status_code=status_code,
        detail={"success": False, "error": error, "message": message},
    )


def _find_by_email(db: Session, email: str) -> User | None:
    return db.execute(select(User).where(User.email == email)).scalar_one_or_none()


@router.post(
    "/register",
    response_model=APIResponse[UserResponse],
    status_code=status.HTTP_201_CREATED,
)
def register(request: UserRegisterRequest, db: Session = Depends(get_db)):
    """Create an owner account with the configured default quota."""
    email = request.email.lower()
    email_taken = _auth_error(status.HTTP_400_BAD_REQUEST, "Bad Request", "Email already exists")

    if _find_by_email(db, email) is not None:
        raise email_taken

    owner = User(
        email=email,
        hashed_password=hash_password(request.password),
        space_allowed=settings.default_space_allowed_bytes,
    )
    db.add(owner)
    try:
        db.commit()
    except IntegrityError:
        # Concurrent registration with the same email
        db.rollback()
        raise email_taken

    # id / created_at 由資料庫產生，需 refresh 後才有值
    db.refresh(owner)
    logger.info(f"Registered owner {owner.id} with {owner.space_allowed} bytes allowed")

    # model_validate只返回UserResponse定義的欄位，不會洩漏hashed_password
    return APIResponse(success=True, data=UserResponse.model_validate(owner))


@router.post("/login", response_model=APIResponse[TokenResponse])
def login(request: UserLoginRequest, db: Session = Depends(get_db)):
    """Exchange email and password for an access token."""
    owner = _find_by_email(db, request.email.lower())

    # Unknown email and wrong password answer the same way
    if owner is None or not verify_password(request.password, owner.hashed_password):
        raise _auth_error(status.HTTP_401_UNAUTHORIZED, "Unauthorized", "Invalid credentials")

    if not owner.is_active:
        raise _auth_error(status.HTTP_403_FORBIDDEN, "Forbidden", "User is inactive")

    return APIResponse(success=True, data=TokenResponse(access_token=create_access_token(owner.id)))
