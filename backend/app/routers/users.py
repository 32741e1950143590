from fastapi import APIRouter, Depends, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.ids import UserId
from app.db.session import get_db
from app.deps import get_caller, require_admin
from app.models.user import Role, User
from app.schemas.doctor import DoctorOut
from app.schemas.patient import PatientCreate, PatientOut
from app.schemas.user import DoctorUserCreate, UserCreate, UserOut
from app.services.authorization import Caller
from app.services.errors import UserNotFound
from app.services.users import (
    create_staff_user,
    deactivate_user,
    get_user_by_id,
    register_doctor,
    register_patient,
)

router = APIRouter(prefix="/users", tags=["users"], dependencies=[Depends(require_admin)])


@router.get("", response_model=list[UserOut])
def list_users(db: Session = Depends(get_db)):
    return list(db.scalars(select(User).order_by(User.id)))


@router.post("", response_model=UserOut, status_code=status.HTTP_201_CREATED)
def add_user(
    payload: UserCreate,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
):
    return create_staff_user(
        db,
        actor=caller,
        email=payload.email,
        password=payload.temp_password,
        full_name=payload.full_name,
        role=payload.role,
    )


@router.post("/doctors", response_model=DoctorOut, status_code=status.HTTP_201_CREATED)
def add_doctor(
    payload: DoctorUserCreate,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
):
    return register_doctor(
        db,
        actor=caller,
        email=payload.email,
        password=payload.temp_password,
        full_name=payload.full_name,
        specialization=payload.specialization,
        license_number=payload.license_number,
        bio=payload.bio,
    )


@router.post("/patients", response_model=PatientOut, status_code=status.HTTP_201_CREATED)
def add_patient(
    payload: PatientCreate,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
):
    return register_patient(
        db,
        actor=caller,
        email=payload.email,
        password=payload.temp_password,
        full_name=payload.full_name,
        **payload.model_dump(exclude={"email", "temp_password", "full_name"}),
    )


@router.get("/roles", response_model=list[str])
def list_roles():
    return [role.value for role in Role]


@router.get("/{user_id}", response_model=UserOut)
def get_user(
    user_id: int,
    db: Session = Depends(get_db),
):
    user = get_user_by_id(db, UserId(user_id))
    if not user:
        raise UserNotFound(user_id)
    return user


@router.post("/{user_id}/deactivate", response_model=UserOut)
def deactivate(
    user_id: int,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
):
    return deactivate_user(db, actor=caller, user_id=UserId(user_id))
