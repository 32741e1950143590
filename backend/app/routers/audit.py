from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.deps import require_admin
from app.schemas.audit_log import AuditLogOut
from app.services.audit import audit_entries

router = APIRouter(prefix="/audit", tags=["audit"], dependencies=[Depends(require_admin)])

# entity histories exposed under /audit/<plural>/<id>
ENTITY_PATHS = {"appointments": "appointment", "visits": "visit", "invoices": "invoice"}


@router.get("", response_model=list[AuditLogOut])
def search(
    db: Session = Depends(get_db),
    entity_type: str | None = Query(default=None),
    entity_id: str | None = Query(default=None),
    action: str | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
):
    return audit_entries(
        db,
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        limit=limit,
        offset=offset,
    )


@router.get("/{entity}/{entity_id}", response_model=list[AuditLogOut])
def history(
    entity: str,
    entity_id: int,
    db: Session = Depends(get_db),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
):
    entity_type = ENTITY_PATHS.get(entity)
    if entity_type is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not found")
    return audit_entries(
        db, entity_type=entity_type, entity_id=entity_id, limit=limit, offset=offset
    )
