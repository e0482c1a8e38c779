"""Seat accounting for a single ride.

The ledger works on immutable ``RideInventory`` snapshots and returns a new
snapshot for every operation; persisting the result is the coordinator's job.
Invariants kept by every operation:

    0 <= available_seats <= total_seats
    available_seats + sum(seats of confirmed entries) == total_seats
"""
from dataclasses import dataclass, field, replace
from datetime import datetime
from types import MappingProxyType
from typing import Mapping, Optional

from tripo.core.errors import InsufficientSeats, InventoryInvariantViolation, SeatEntryMissing

ENTRY_REQUESTED = "requested"
ENTRY_CONFIRMED = "confirmed"


@dataclass(frozen=True)
class SeatEntry:
    passenger_id: str
    seats_booked: int
    status: str
    booking_id: Optional[str] = None
    booked_at: Optional[datetime] = None
    pickup_point: str = ""
    dropoff_point: str = ""


@dataclass(frozen=True)
class RideInventory:
    ride_id: str
    total_seats: int
    available_seats: int
    passengers: Mapping[str, SeatEntry] = field(default_factory=dict)

    def __post_init__(self):
        # Freeze the passenger map so snapshots cannot be mutated in place.
        object.__setattr__(self, "passengers", MappingProxyType(dict(self.passengers)))

    def entry(self, passenger_id: str) -> Optional[SeatEntry]:
        return self.passengers.get(passenger_id)


def _with(inv: RideInventory, available_seats: int, passengers: dict) -> RideInventory:
    return replace(inv, available_seats=available_seats, passengers=passengers)


def confirmed_seats(inv: RideInventory) -> int:
    return sum(e.seats_booked for e in inv.passengers.values() if e.status == ENTRY_CONFIRMED)


def check_invariants(inv: RideInventory) -> None:
    if not 0 <= inv.available_seats <= inv.total_seats:
        raise InventoryInvariantViolation(
            f"ride {inv.ride_id}: available_seats={inv.available_seats} outside [0, {inv.total_seats}]"
        )
    held = confirmed_seats(inv)
    if inv.available_seats + held != inv.total_seats:
        raise InventoryInvariantViolation(
            f"ride {inv.ride_id}: available_seats={inv.available_seats} + confirmed={held} != total={inv.total_seats}"
        )


def reserve(
    inv: RideInventory,
    passenger_id: str,
    seats: int,
    auto_confirm: bool,
    *,
    booking_id: Optional[str] = None,
    booked_at: Optional[datetime] = None,
    pickup_point: str = "",
    dropoff_point: str = "",
) -> RideInventory:
    """Insert or overwrite a passenger's entry; consume seats only when auto-confirming."""
    if seats < 1:
        raise InsufficientSeats("seats must be >= 1")

    available = inv.available_seats
    previous = inv.entry(passenger_id)
    if previous is not None and previous.status == ENTRY_CONFIRMED:
        # Overwriting a confirmed claim hands its seats back first.
        available = min(available + previous.seats_booked, inv.total_seats)

    if auto_confirm:
        if seats > available:
            raise InsufficientSeats(
                f"Not enough available seats: requested {seats}, available {available}",
                requested=seats, available=available,
            )
        available -= seats

    passengers = dict(inv.passengers)
    passengers[passenger_id] = SeatEntry(
        passenger_id=passenger_id,
        seats_booked=seats,
        status=ENTRY_CONFIRMED if auto_confirm else ENTRY_REQUESTED,
        booking_id=booking_id,
        booked_at=booked_at,
        pickup_point=pickup_point,
        dropoff_point=dropoff_point,
    )
    return _with(inv, available, passengers)


def promote(inv: RideInventory, passenger_id: str) -> RideInventory:
    """Move a requested entry to confirmed, consuming its seats."""
    current = inv.entry(passenger_id)
    if current is None:
        raise SeatEntryMissing(f"Passenger {passenger_id} has no seat entry on ride {inv.ride_id}")
    if current.status == ENTRY_CONFIRMED:
        return inv

    remaining = inv.available_seats - current.seats_booked
    if remaining < 0:
        raise InsufficientSeats(
            f"Not enough available seats: requested {current.seats_booked}, available {inv.available_seats}",
            requested=current.seats_booked, available=inv.available_seats,
        )

    passengers = dict(inv.passengers)
    passengers[passenger_id] = replace(current, status=ENTRY_CONFIRMED)
    return _with(inv, remaining, passengers)


def release(inv: RideInventory, passenger_id: str, booking_id: Optional[str] = None) -> RideInventory:
    """Drop a passenger's entry, returning confirmed seats to the pool."""
    current = inv.entry(passenger_id)
    if current is None:
        return inv
    if booking_id is not None and current.booking_id is not None and current.booking_id != booking_id:
        # The entry now belongs to a newer booking of the same passenger.
        return inv

    available = inv.available_seats
    if current.status == ENTRY_CONFIRMED:
        available = max(0, min(available + current.seats_booked, inv.total_seats))

    passengers = dict(inv.passengers)
    del passengers[passenger_id]
    return _with(inv, available, passengers)
