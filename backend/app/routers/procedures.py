from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from app.core.ids import ProcedureId
from app.db.session import get_db
from app.deps import get_caller
from app.schemas.clinical import ProcedureOut, ProcedureUpdate
from app.services.authorization import Caller
from app.services.visits import read_procedure, remove_procedure, update_procedure

router = APIRouter(prefix="/procedures", tags=["procedures"])


@router.get("/{procedure_id}", response_model=ProcedureOut)
def get_one(
    procedure_id: int,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
):
    return read_procedure(db, caller, ProcedureId(procedure_id))


@router.patch("/{procedure_id}", response_model=ProcedureOut)
def update(
    procedure_id: int,
    payload: ProcedureUpdate,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
):
    return update_procedure(
        db, caller, ProcedureId(procedure_id), payload.model_dump(exclude_unset=True)
    )


@router.delete("/{procedure_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete(
    procedure_id: int,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
):
    remove_procedure(db, caller, ProcedureId(procedure_id))
