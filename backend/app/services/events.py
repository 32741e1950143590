from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

from app.core.ids import DoctorId, InvoiceId, PatientId, PaymentId, UserId, VisitId
from app.models.base import utcnow
from app.services.money import Money

logger = logging.getLogger("clinic_pms.events")


@dataclass(frozen=True)
class VisitCompleted:
    visit_id: VisitId
    patient_id: PatientId
    doctor_id: DoctorId
    total_cost: Money
    completed_by: UserId
    occurred_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class PaymentRecorded:
    invoice_id: InvoiceId
    payment_id: PaymentId
    patient_id: PatientId
    amount: Money
    recorded_by: UserId
    occurred_at: datetime = field(default_factory=utcnow)


Handler = Callable[[object], None]


class EventBus:
    """In-process publish/subscribe keyed by event class.

    Delivery is synchronous and best effort: nothing is queued or persisted,
    and a failing handler is logged without affecting the publisher or the
    other handlers.
    """

    def __init__(self) -> None:
        self._handlers: dict[type, list[Handler]] = defaultdict(list)

    def subscribe(self, event_type: type, handler: Handler) -> None:
        if handler not in self._handlers[event_type]:
            self._handlers[event_type].append(handler)

    def unsubscribe(self, event_type: type, handler: Handler) -> None:
        handlers = self._handlers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)

    def publish(self, event: object) -> None:
        for handler in list(self._handlers.get(type(event), [])):
            try:
                handler(event)
            except Exception:
                logger.exception(
                    "Event handler %r failed for %s", handler, type(event).__name__
                )
