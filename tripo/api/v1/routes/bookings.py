from typing import Literal, Optional
from fastapi import APIRouter, Depends, Header, Query
from sqlalchemy.orm import Session
from tripo.db.session import get_db
from tripo.api.deps import get_current_principal, get_coordinator
from tripo.core.security import Principal
from tripo.schemas.booking import BookingCreate, BookingOut, BookingPage, BookingReason, BookingStatusName, BookingTransition, booking_out
from tripo.services.booking_coordinator import BookingCoordinator, get_booking, list_bookings

router = APIRouter(tags=["bookings"])

@router.post("/bookings", response_model=BookingOut)
def create_booking(
    body: BookingCreate,
    idempotency_key: Optional[str] = Header(default=None, alias="Idempotency-Key", max_length=120),
    principal: Principal = Depends(get_current_principal),
    coordinator: BookingCoordinator = Depends(get_coordinator),
):
    booking = coordinator.create_booking(
        body.rideId,
        principal.user_id,
        body.seatsBooked,
        pickup_point=body.pickupPoint,
        dropoff_point=body.dropoffPoint,
        idempotency_key=idempotency_key,
    )
    return booking_out(booking)

@router.get("/bookings", response_model=BookingPage)
def my_bookings(
    role: Literal["passenger", "driver"] = "passenger",
    status: Optional[BookingStatusName] = None,
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    items, total = list_bookings(db, principal.user_id, role=role, status=status, limit=limit, offset=offset)
    return BookingPage(
        items=[booking_out(b) for b in items],
        total=total,
        limit=limit,
        offset=offset,
        hasMore=offset + len(items) < total,
    )

@router.get("/bookings/{booking_id}", response_model=BookingOut)
def read_booking(booking_id: str, db: Session = Depends(get_db), principal: Principal = Depends(get_current_principal)):
    return booking_out(get_booking(db, booking_id, principal.user_id))

@router.post("/bookings/{booking_id}/transition", response_model=BookingOut)
def transition_booking(
    booking_id: str,
    body: BookingTransition,
    principal: Principal = Depends(get_current_principal),
    coordinator: BookingCoordinator = Depends(get_coordinator),
):
    booking = coordinator.transition_booking(booking_id, principal.user_id, body.targetStatus, body.reason)
    return booking_out(booking)

@router.post("/bookings/{booking_id}/approve", response_model=BookingOut)
def approve_booking(booking_id: str, principal: Principal = Depends(get_current_principal), coordinator: BookingCoordinator = Depends(get_coordinator)):
    return booking_out(coordinator.approve_booking(booking_id, principal.user_id))

@router.post("/bookings/{booking_id}/reject", response_model=BookingOut)
def reject_booking(
    booking_id: str,
    body: BookingReason | None = None,
    principal: Principal = Depends(get_current_principal),
    coordinator: BookingCoordinator = Depends(get_coordinator),
):
    return booking_out(coordinator.reject_booking(booking_id, principal.user_id, body.reason if body else None))

@router.post("/bookings/{booking_id}/cancel", response_model=BookingOut)
def cancel_booking(
    booking_id: str,
    body: BookingReason | None = None,
    principal: Principal = Depends(get_current_principal),
    coordinator: BookingCoordinator = Depends(get_coordinator),
):
    return booking_out(coordinator.cancel_booking(booking_id, principal.user_id, body.reason if body else None))

@router.post("/bookings/{booking_id}/complete", response_model=BookingOut)
def complete_booking(booking_id: str, principal: Principal = Depends(get_current_principal), coordinator: BookingCoordinator = Depends(get_coordinator)):
    return booking_out(coordinator.complete_booking(booking_id, principal.user_id))
