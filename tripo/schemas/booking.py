from pydantic import BaseModel, Field
from typing import List, Literal, Optional

from tripo.schemas.rides import iso_or_none

BookingStatusName = Literal["requested", "confirmed", "completed", "cancelled_by_driver", "cancelled_by_passenger"]


class BookingCreate(BaseModel):
    rideId: str
    seatsBooked: int = Field(ge=1, le=8)
    pickupPoint: Optional[str] = None
    dropoffPoint: Optional[str] = None


class BookingTransition(BaseModel):
    targetStatus: BookingStatusName
    reason: Optional[str] = Field(default=None, max_length=500)


class BookingReason(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)


class PricingOut(BaseModel):
    pricePerSeat: int
    totalAmount: int
    serviceFee: int
    finalAmount: int
    refundedAmount: int = 0


class BookingOut(BaseModel):
    id: str
    rideId: str
    passengerId: str
    driverId: str
    seatsBooked: int
    pickupPoint: str = ""
    dropoffPoint: str = ""
    pricing: PricingOut
    status: str
    requestedAt: Optional[str] = None
    confirmedAt: Optional[str] = None
    completedAt: Optional[str] = None
    cancelledAt: Optional[str] = None
    cancellationReason: Optional[str] = None


class BookingPage(BaseModel):
    items: List[BookingOut]
    total: int
    limit: int
    offset: int
    hasMore: bool


def booking_out(b) -> BookingOut:
    return BookingOut(
        id=b.id,
        rideId=b.ride_id,
        passengerId=b.passenger_id,
        driverId=b.driver_id,
        seatsBooked=b.seats_booked,
        pickupPoint=b.pickup_point or "",
        dropoffPoint=b.dropoff_point or "",
        pricing=PricingOut(
            pricePerSeat=b.price_per_seat,
            totalAmount=b.total_amount,
            serviceFee=b.service_fee,
            finalAmount=b.final_amount,
            refundedAmount=b.refunded_amount or 0,
        ),
        status=b.status,
        requestedAt=iso_or_none(b.requested_at),
        confirmedAt=iso_or_none(b.confirmed_at),
        completedAt=iso_or_none(b.completed_at),
        cancelledAt=iso_or_none(b.cancelled_at),
        cancellationReason=b.cancellation_reason,
    )
