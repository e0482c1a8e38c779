from datetime import datetime
from pydantic import BaseModel, Field
from typing import List, Literal, Optional

from tripo.core.clock import ensure_utc


def iso_or_none(dt: datetime | None) -> Optional[str]:
    dt = ensure_utc(dt)
    return dt.isoformat() if dt else None


class RideCreate(BaseModel):
    originLabel: str = Field(min_length=1, max_length=200)
    originAddress: str = ""
    destinationLabel: str = Field(min_length=1, max_length=200)
    destinationAddress: str = ""
    # Absolute instant; naive values are read as UTC
    departureAt: datetime
    arrivalAt: Optional[datetime] = None
    pricePerSeat: int = Field(ge=0)
    totalSeats: int = Field(ge=1, le=8)
    instantBooking: bool = False


class RideStatusUpdate(BaseModel):
    status: Literal["in_progress", "completed", "cancelled"]


class SeatEntryOut(BaseModel):
    passengerId: str
    bookingId: Optional[str] = None
    seatsBooked: int
    status: str
    bookedAt: Optional[str] = None
    pickupPoint: str = ""
    dropoffPoint: str = ""


class RideOut(BaseModel):
    id: str
    driverId: str
    originLabel: str
    originAddress: str = ""
    destinationLabel: str
    destinationAddress: str = ""
    departureAt: Optional[str] = None
    arrivalAt: Optional[str] = None
    pricePerSeat: int
    totalSeats: int
    availableSeats: int
    instantBooking: bool
    status: str
    passengers: List[SeatEntryOut] = []


def ride_out(ride, entries=None) -> RideOut:
    return RideOut(
        id=ride.id,
        driverId=ride.driver_id,
        originLabel=ride.origin_label or "",
        originAddress=ride.origin_address or "",
        destinationLabel=ride.destination_label or "",
        destinationAddress=ride.destination_address or "",
        departureAt=iso_or_none(ride.departure_at),
        arrivalAt=iso_or_none(ride.arrival_at),
        pricePerSeat=ride.price_per_seat,
        totalSeats=ride.total_seats,
        availableSeats=ride.available_seats,
        instantBooking=bool(ride.instant_booking),
        status=ride.status,
        passengers=[
            SeatEntryOut(
                passengerId=e.passenger_id,
                bookingId=e.booking_id,
                seatsBooked=e.seats_booked,
                status=e.status,
                bookedAt=iso_or_none(e.booked_at),
                pickupPoint=e.pickup_point or "",
                dropoffPoint=e.dropoff_point or "",
            )
            for e in (entries or [])
        ],
    )
