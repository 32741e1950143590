from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from app.core.security import create_access_token
from app.core.settings import settings
from app.db.session import get_db
from app.deps import get_caller, get_current_user
from app.models.user import User
from app.schemas.auth import (
    ChangePasswordRequest,
    ChangePasswordResponse,
    LoginRequest,
    PatientRegisterRequest,
    Token,
)
from app.schemas.patient import PatientOut
from app.services.authorization import Caller
from app.services.users import authenticate, change_password, register_patient

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/login", response_model=Token)
def login(payload: LoginRequest, db: Session = Depends(get_db)):
    user = authenticate(db, payload.email, payload.password)
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account disabled")
    token = create_access_token(
        subject=str(user.id),
        secret=settings.secret_key,
        alg=settings.jwt_alg,
        expires_minutes=settings.access_token_expire_minutes,
        extra={"role": user.role.value, "email": user.email},
    )
    return Token(access_token=token, must_change_password=user.must_change_password)


@router.post("/register", response_model=PatientOut, status_code=status.HTTP_201_CREATED)
def register(payload: PatientRegisterRequest, db: Session = Depends(get_db)):
    return register_patient(
        db,
        email=payload.email,
        password=payload.password,
        full_name=payload.full_name,
        date_of_birth=payload.date_of_birth,
        gender=payload.gender,
        phone=payload.phone,
    )


@router.post("/change-password", response_model=ChangePasswordResponse)
def change_own_password(
    payload: ChangePasswordRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    caller: Caller = Depends(get_caller),
):
    change_password(
        db,
        actor=caller,
        user=user,
        new_password=payload.new_password,
        old_password=payload.old_password,
    )
    return ChangePasswordResponse(message="Password updated.")
