from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from tripo.db.session import get_db
from tripo.api.deps import get_current_principal, get_coordinator
from tripo.core.security import Principal
from tripo.schemas.rides import RideCreate, RideOut, RideStatusUpdate, ride_out
from tripo.services.booking_coordinator import BookingCoordinator, get_ride, ride_passengers

router = APIRouter(tags=["rides"])

@router.post("/rides", response_model=RideOut)
def publish_ride(
    body: RideCreate,
    principal: Principal = Depends(get_current_principal),
    coordinator: BookingCoordinator = Depends(get_coordinator),
):
    ride = coordinator.publish_ride(
        principal.user_id,
        departure_at=body.departureAt,
        price_per_seat=body.pricePerSeat,
        total_seats=body.totalSeats,
        origin_label=body.originLabel,
        destination_label=body.destinationLabel,
        origin_address=body.originAddress,
        destination_address=body.destinationAddress,
        arrival_at=body.arrivalAt,
        instant_booking=body.instantBooking,
    )
    return ride_out(ride)

@router.get("/rides/{ride_id}", response_model=RideOut)
def read_ride(ride_id: str, db: Session = Depends(get_db), principal: Principal = Depends(get_current_principal)):
    ride = get_ride(db, ride_id)
    # Seat map is only shown to the driver
    entries = ride_passengers(db, ride.id) if principal.user_id == ride.driver_id else []
    return ride_out(ride, entries)

@router.post("/rides/{ride_id}/status", response_model=RideOut)
def change_ride_status(
    ride_id: str,
    body: RideStatusUpdate,
    principal: Principal = Depends(get_current_principal),
    coordinator: BookingCoordinator = Depends(get_coordinator),
):
    ride = coordinator.transition_ride(ride_id, principal.user_id, body.status)
    return ride_out(ride)
