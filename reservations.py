"""Reservation engine.

Ties a book's ``disponibilidad`` flag to the reservation lifecycle:

    Open (devuelto=false) --end_reservation--> Returned (devuelto=true)

Claiming a book is a single conditional update on the book document
(enabled AND available -> unavailable), so two concurrent reservations of
the same book cannot both succeed.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from database import BOOKS, RESERVATIONS, USERS, Store, parse_id
from errors import AlreadyReturned, BookUnavailable, NotFound, ValidationFailed
from schemas import Reservation as ReservationSchema

logger = logging.getLogger(__name__)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC so they compare with aware ones."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class ReservationEngine:
    def __init__(self, store: Store):
        self.store = store

    def create_reservation(
        self,
        requester_id: Any,
        book_id: Any,
        fecha_entrega: Optional[datetime],
        fecha_reserva: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        if fecha_entrega is None:
            raise ValidationFailed("fechaEntrega: requerida")
        usuario = parse_id(requester_id, "usuario")
        libro = parse_id(book_id, "libro")
        start = as_utc(fecha_reserva) if fecha_reserva else datetime.now(timezone.utc)
        due = as_utc(fecha_entrega)
        if due <= start:
            raise ValidationFailed("fechaEntrega debe ser posterior a fechaReserva")

        claimed = self.store.update_where(
            BOOKS,
            {"_id": libro, "habilitado": True, "disponibilidad": True},
            {"disponibilidad": False},
        )
        if claimed is None:
            logger.info("Reservation rejected: book %s not reservable", libro)
            raise BookUnavailable()

        reservation = ReservationSchema(usuario=usuario, libro=libro, fecha_reserva=start, fecha_entrega=due)
        try:
            doc = self.store.insert(RESERVATIONS, reservation)
        except Exception:
            self._release(libro)
            raise
        logger.info("Reservation %s opened: user %s, book %s", doc["_id"], usuario, libro)
        return doc

    def read_reservation(self, reservation_id: Any) -> Dict[str, Any]:
        doc = self.store.find_by_id(RESERVATIONS, reservation_id, active_only=False)
        if not doc:
            raise NotFound("Reserva no encontrada")
        return doc

    def end_reservation(self, reservation_id: Any) -> Dict[str, Any]:
        rid = parse_id(reservation_id, "reserva")
        doc = self.store.update_where(RESERVATIONS, {"_id": rid, "devuelto": {"$ne": True}}, {"devuelto": True})
        if doc is None:
            # distinguish a missing reservation from one already closed
            self.read_reservation(rid)
            raise AlreadyReturned()
        try:
            self._release(doc["libro"])
        except Exception:
            # reopen so the return can be retried
            self.store.update_where(RESERVATIONS, {"_id": rid}, {"devuelto": False})
            raise
        logger.info("Reservation %s returned, book %s available", rid, doc["libro"])
        return doc

    def list_reservations_by_book(self, book_id: Any) -> List[Dict[str, Any]]:
        docs = self.store.find(RESERVATIONS, {"libro": parse_id(book_id, "libro")}, active_only=False, sort="fechaReserva")
        return self.store.populate(docs, "usuario", USERS, ["nombre", "correo"])

    def list_reservations_by_user(self, user_id: Any) -> List[Dict[str, Any]]:
        docs = self.store.find(RESERVATIONS, {"usuario": parse_id(user_id, "usuario")}, active_only=False, sort="fechaReserva")
        return self.store.populate(docs, "libro", BOOKS, ["titulo", "autor"])

    def _release(self, book_id) -> None:
        self.store.update_where(BOOKS, {"_id": book_id}, {"disponibilidad": True})
