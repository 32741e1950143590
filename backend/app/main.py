import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.settings import settings, validate_settings
from app.db.session import SessionLocal, engine
from app.models import Base
from app.routers.appointments import router as appointments_router
from app.routers.audit import router as audit_router
from app.routers.auth import router as auth_router
from app.routers.doctors import router as doctors_router
from app.routers.invoices import router as invoices_router
from app.routers.medical_records import router as medical_records_router
from app.routers.patients import router as patients_router
from app.routers.procedures import router as procedures_router
from app.routers.reports import router as reports_router
from app.routers.users import router as users_router
from app.routers.visits import router as visits_router
from app.services.errors import (
    AccessDenied,
    DomainError,
    InvalidTransition,
    InvariantViolation,
    NotFoundError,
    PersistenceFailure,
)
from app.services.events import EventBus, VisitCompleted
from app.services.invoices import make_invoice_drafter
from app.services.users import seed_initial_admin

app = FastAPI(title="Clinic PMS API", version="0.1.0")
app.state.event_bus = EventBus()
logger = logging.getLogger("clinic_pms.startup")
error_logger = logging.getLogger("clinic_pms.errors")

DOMAIN_ERROR_STATUS: list[tuple[type[DomainError], int]] = [
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (InvalidTransition, status.HTTP_409_CONFLICT),
    (AccessDenied, status.HTTP_403_FORBIDDEN),
    (InvariantViolation, status.HTTP_400_BAD_REQUEST),
    (PersistenceFailure, status.HTTP_503_SERVICE_UNAVAILABLE),
]


def status_for(exc: DomainError) -> int:
    for error_type, status_code in DOMAIN_ERROR_STATUS:
        if isinstance(exc, error_type):
            return status_code
    return status.HTTP_400_BAD_REQUEST


@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError):
    status_code = status_for(exc)
    if status_code >= 500:
        error_logger.warning(
            "%s on %s %s: %s", exc.code, request.method, request.url.path, exc.message
        )
    return JSONResponse(status_code=status_code, content={"detail": exc.message, "code": exc.code})


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError):
    request_id = request.headers.get("x-request-id")
    error_logger.exception("Database error", extra={"request_id": request_id})
    payload = {"detail": "Temporary failure, please try again", "code": PersistenceFailure.code}
    if request_id:
        payload["request_id"] = request_id
    return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content=payload)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    request_id = request.headers.get("x-request-id")
    error_logger.exception("Unhandled server error", extra={"request_id": request_id})
    payload = {"detail": "Internal server error"}
    if request_id:
        payload["request_id"] = request_id
    return JSONResponse(status_code=500, content=payload)


@app.on_event("startup")
def startup():
    validate_settings(settings)
    Base.metadata.create_all(bind=engine)

    admin_email = str(settings.admin_email)
    admin_password = settings.admin_password.strip()
    db: Session = SessionLocal()
    try:
        created = seed_initial_admin(db, email=admin_email, password=admin_password)
        if created:
            logger.info("Initial admin created for %s (must change password on first login).", admin_email)
        else:
            logger.info("Initial admin not created (users already exist).")
    finally:
        db.close()

    if settings.auto_draft_invoices:
        app.state.event_bus.subscribe(VisitCompleted, make_invoice_drafter(SessionLocal))
        logger.info("Draft invoices will be created for completed visits.")


@app.get("/health")
def health():
    return {"status": "ok"}


app.include_router(auth_router)
app.include_router(users_router)
app.include_router(patients_router)
app.include_router(doctors_router)
app.include_router(appointments_router)
app.include_router(visits_router)
app.include_router(procedures_router)
app.include_router(medical_records_router)
app.include_router(invoices_router)
app.include_router(reports_router)
app.include_router(audit_router)
