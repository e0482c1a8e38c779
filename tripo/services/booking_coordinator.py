"""Atomic seat and booking mutations.

Every write to ``Ride.available_seats``, the ride's seat entries and
``Booking.status`` goes through ``BookingCoordinator``. Each operation reads
the ride and booking rows inside one ``run_in_transaction`` attempt, applies
the pure ledger and state-machine functions, and writes the results back
together. Seat-affecting writes always update the ride row, so its version
column serializes concurrent writers on the same ride.
"""
import logging
import time
import uuid
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.attributes import flag_modified

from tripo.core.clock import ensure_utc, utcnow
from tripo.core.config import settings
from tripo.core.errors import (
    BookingNotFound,
    DuplicateActiveBooking,
    InsufficientSeats,
    InvalidRideTransition,
    RideNotBookable,
    RideNotFound,
    SelfBookingForbidden,
    Unauthorized,
    ValidationFailure,
)
from tripo.db.session import SessionLocal
from tripo.db.transaction import run_in_transaction
from tripo.models.booking import Booking
from tripo.models.ride import Ride
from tripo.models.ride_seat_entry import RideSeatEntry
from tripo.services import inventory_ledger as ledger
from tripo.services.audit_service import log_audit
from tripo.services.booking_state import (
    ACTIVE,
    CANCELLED,
    ROLE_DRIVER,
    BookingState,
    BookingStatus,
    apply_transition,
    initial_state,
    required_role,
)
from tripo.services.pricing import compute_fare, hours_before_departure

logger = logging.getLogger(__name__)

RIDE_PUBLISHED = "published"
RIDE_IN_PROGRESS = "in_progress"
RIDE_COMPLETED = "completed"
RIDE_CANCELLED = "cancelled"

RIDE_TRANSITIONS = {
    RIDE_PUBLISHED: {RIDE_IN_PROGRESS, RIDE_CANCELLED},
    RIDE_IN_PROGRESS: {RIDE_COMPLETED, RIDE_CANCELLED},
    RIDE_COMPLETED: set(),
    RIDE_CANCELLED: set(),
}

RIDE_CANCELLED_REASON = "ride_cancelled"

_ACTIVE_VALUES = [s.value for s in ACTIVE]


def _touch(row, now: datetime) -> None:
    # Force an UPDATE (and with it the version check) even when nothing else changed.
    row.updated_at = now
    flag_modified(row, "updated_at")


def _read_inventory(db: Session, ride: Ride) -> tuple[ledger.RideInventory, dict[str, RideSeatEntry]]:
    rows = {
        r.passenger_id: r
        for r in db.query(RideSeatEntry).filter(RideSeatEntry.ride_id == ride.id).all()
    }
    inv = ledger.RideInventory(
        ride_id=ride.id,
        total_seats=ride.total_seats,
        available_seats=ride.available_seats,
        passengers={
            pid: ledger.SeatEntry(
                passenger_id=pid,
                seats_booked=r.seats_booked,
                status=r.status,
                booking_id=r.booking_id,
                booked_at=r.booked_at,
                pickup_point=r.pickup_point or "",
                dropoff_point=r.dropoff_point or "",
            )
            for pid, r in rows.items()
        },
    )
    return inv, rows


def _write_inventory(
    db: Session,
    ride: Ride,
    before: ledger.RideInventory,
    after: ledger.RideInventory,
    rows: dict[str, RideSeatEntry],
    now: datetime,
) -> None:
    ledger.check_invariants(after)

    for pid, row in rows.items():
        if pid not in after.passengers:
            db.delete(row)

    for pid, entry in after.passengers.items():
        if before.passengers.get(pid) == entry:
            continue
        row = rows.get(pid)
        if row is None:
            row = RideSeatEntry(id=str(uuid.uuid4()), ride_id=ride.id, passenger_id=pid)
            db.add(row)
        row.booking_id = entry.booking_id
        row.seats_booked = entry.seats_booked
        row.status = entry.status
        row.booked_at = entry.booked_at or now
        row.pickup_point = entry.pickup_point
        row.dropoff_point = entry.dropoff_point

    ride.available_seats = after.available_seats
    _touch(ride, now)


def _state_of(booking: Booking) -> BookingState:
    return BookingState(
        status=BookingStatus(booking.status),
        requested_at=booking.requested_at,
        confirmed_at=booking.confirmed_at,
        completed_at=booking.completed_at,
        cancelled_at=booking.cancelled_at,
        cancellation_reason=booking.cancellation_reason,
    )


def _store_state(booking: Booking, state: BookingState, now: datetime) -> None:
    booking.status = state.status.value
    booking.confirmed_at = state.confirmed_at
    booking.completed_at = state.completed_at
    booking.cancelled_at = state.cancelled_at
    booking.cancellation_reason = state.cancellation_reason
    booking.updated_at = now


def _parse_status(value) -> BookingStatus:
    try:
        return BookingStatus(value)
    except ValueError:
        raise ValidationFailure(f"Unknown booking status: {value}")


class BookingCoordinator:
    """Runs ledger and state-machine mutations as single optimistic transactions."""

    def __init__(
        self,
        session_factory: sessionmaker | None = None,
        notifier=None,
        clock: Callable[[], datetime] = utcnow,
        fee_percent: float | None = None,
        max_attempts: int | None = None,
        backoff_seconds: float | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.session_factory = session_factory or SessionLocal
        self.notifier = notifier
        self.clock = clock
        self.fee_percent = settings.SERVICE_FEE_PERCENT if fee_percent is None else fee_percent
        self.max_attempts = max_attempts or settings.TX_MAX_ATTEMPTS
        self.backoff_seconds = settings.TX_BACKOFF_SECONDS if backoff_seconds is None else backoff_seconds
        self.sleep = sleep

    def _run(self, work, label: str):
        return run_in_transaction(
            self.session_factory,
            work,
            max_attempts=self.max_attempts,
            backoff_seconds=self.backoff_seconds,
            sleep=self.sleep,
            label=label,
        )

    def _notify(self, user_id: str, event_type: str, payload: dict) -> None:
        if self.notifier is None:
            return
        try:
            self.notifier.notify(user_id, event_type, payload)
        except Exception:
            logger.exception("Notifier failed for %s to %s", event_type, user_id)

    # ===================== Rides =====================

    def publish_ride(
        self,
        driver_id: str,
        departure_at: datetime,
        price_per_seat: int,
        total_seats: int,
        origin_label: str = "",
        destination_label: str = "",
        origin_address: str = "",
        destination_address: str = "",
        arrival_at: Optional[datetime] = None,
        instant_booking: bool = False,
    ) -> Ride:
        if not 1 <= total_seats <= settings.MAX_SEATS_PER_BOOKING:
            raise ValidationFailure(f"total_seats must be between 1 and {settings.MAX_SEATS_PER_BOOKING}")
        if price_per_seat < 0:
            raise ValidationFailure("price_per_seat must be >= 0")
        departure_at = ensure_utc(departure_at)
        arrival_at = ensure_utc(arrival_at)
        if departure_at <= self.clock():
            raise ValidationFailure("departure_at must be in the future")
        if arrival_at is not None and arrival_at <= departure_at:
            raise ValidationFailure("arrival_at must be after departure_at")

        def work(db: Session) -> Ride:
            now = self.clock()
            ride = Ride(
                id=str(uuid.uuid4()),
                driver_id=driver_id,
                origin_label=origin_label,
                origin_address=origin_address,
                destination_label=destination_label,
                destination_address=destination_address,
                departure_at=departure_at,
                arrival_at=arrival_at,
                price_per_seat=price_per_seat,
                total_seats=total_seats,
                available_seats=total_seats,
                instant_booking=instant_booking,
                status=RIDE_PUBLISHED,
                created_at=now,
                updated_at=now,
            )
            db.add(ride)
            log_audit(db, driver_id, "ride.published", "ride", ride.id, {"total_seats": total_seats})
            return ride

        ride = self._run(work, "publish_ride")
        logger.info("Ride %s published by %s with %d seats", ride.id, driver_id, ride.total_seats)
        return ride

    def transition_ride(self, ride_id: str, actor_id: str, target: str) -> Ride:
        """Move a ride along its lifecycle. Cancelling cancels every active booking on it."""

        def work(db: Session):
            ride = db.get(Ride, ride_id)
            if not ride:
                raise RideNotFound()
            if ride.driver_id != actor_id:
                raise Unauthorized("Only the ride's driver can change its status")
            if target not in RIDE_TRANSITIONS.get(ride.status, set()):
                raise InvalidRideTransition(ride.status, target)

            now = self.clock()
            cancelled: list[Booking] = []
            if target == RIDE_CANCELLED:
                inv, rows = _read_inventory(db, ride)
                after = inv
                active = (
                    db.query(Booking)
                    .filter(Booking.ride_id == ride.id, Booking.status.in_(_ACTIVE_VALUES))
                    .all()
                )
                for booking in active:
                    state = apply_transition(
                        _state_of(booking), BookingStatus.CANCELLED_BY_DRIVER, now, RIDE_CANCELLED_REASON
                    )
                    after = ledger.release(after, booking.passenger_id, booking.id)
                    _store_state(booking, state, now)
                    log_audit(db, actor_id, "booking.cancelled_by_driver", "booking", booking.id,
                              {"reason": RIDE_CANCELLED_REASON})
                    cancelled.append(booking)
                _write_inventory(db, ride, inv, after, rows, now)

            previous = ride.status
            ride.status = target
            _touch(ride, now)
            log_audit(db, actor_id, f"ride.{target}", "ride", ride.id,
                      {"from": previous, "to": target, "cancelled_bookings": len(cancelled)})
            return ride, cancelled

        ride, cancelled = self._run(work, "transition_ride")
        logger.info("Ride %s -> %s (%d bookings cancelled)", ride.id, ride.status, len(cancelled))
        for booking in cancelled:
            self._notify(booking.passenger_id, "booking_cancelled", {
                "bookingId": booking.id, "rideId": ride.id, "reason": RIDE_CANCELLED_REASON,
            })
        return ride

    # ===================== Bookings =====================

    def create_booking(
        self,
        ride_id: str,
        passenger_id: str,
        seats: int,
        pickup_point: Optional[str] = None,
        dropoff_point: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> Booking:
        if isinstance(seats, bool) or not isinstance(seats, int) or not 1 <= seats <= settings.MAX_SEATS_PER_BOOKING:
            raise ValidationFailure(f"seatsBooked must be between 1 and {settings.MAX_SEATS_PER_BOOKING}")

        def work(db: Session):
            if idempotency_key:
                existing = (
                    db.query(Booking)
                    .filter(Booking.passenger_id == passenger_id, Booking.idempotency_key == idempotency_key)
                    .one_or_none()
                )
                if existing:
                    if existing.ride_id != ride_id or existing.seats_booked != seats:
                        raise ValidationFailure(
                            "Idempotency-Key was already used for a different booking request",
                            booking_id=existing.id,
                        )
                    return existing, False

            ride = db.get(Ride, ride_id)
            if not ride:
                raise RideNotFound()
            if ride.driver_id == passenger_id:
                raise SelfBookingForbidden()
            now = self.clock()
            if ride.status != RIDE_PUBLISHED or ensure_utc(ride.departure_at) <= now:
                raise RideNotBookable()
            if seats > ride.available_seats:
                raise InsufficientSeats(
                    f"Not enough available seats: requested {seats}, available {ride.available_seats}",
                    requested=seats, available=ride.available_seats,
                )
            duplicate = (
                db.query(Booking.id)
                .filter(
                    Booking.ride_id == ride.id,
                    Booking.passenger_id == passenger_id,
                    Booking.status.in_(_ACTIVE_VALUES),
                )
                .first()
            )
            if duplicate:
                raise DuplicateActiveBooking()

            fare = compute_fare(ride.price_per_seat, seats, self.fee_percent)
            state = initial_state(ride.instant_booking, now)
            pickup = pickup_point or ride.origin_label
            dropoff = dropoff_point or ride.destination_label
            booking_id = str(uuid.uuid4())

            inv, rows = _read_inventory(db, ride)
            after = ledger.reserve(
                inv, passenger_id, seats, ride.instant_booking,
                booking_id=booking_id, booked_at=now, pickup_point=pickup, dropoff_point=dropoff,
            )
            _write_inventory(db, ride, inv, after, rows, now)

            booking = Booking(
                id=booking_id,
                ride_id=ride.id,
                passenger_id=passenger_id,
                driver_id=ride.driver_id,
                seats_booked=seats,
                pickup_point=pickup,
                dropoff_point=dropoff,
                price_per_seat=ride.price_per_seat,
                total_amount=fare.total_amount,
                service_fee=fare.service_fee,
                final_amount=fare.final_amount,
                refunded_amount=0,
                idempotency_key=idempotency_key,
                updated_at=now,
            )
            _store_state(booking, state, now)
            booking.requested_at = state.requested_at
            db.add(booking)
            log_audit(db, passenger_id, "booking.created", "booking", booking.id, {
                "ride_id": ride.id, "seats": seats, "status": booking.status, "final_amount": fare.final_amount,
            })
            return booking, True

        booking, created = self._run(work, "create_booking")
        if not created:
            logger.info("Idempotent replay of booking %s for %s", booking.id, passenger_id)
            return booking

        logger.info("Booking %s created on ride %s (%s, %d seats)", booking.id, booking.ride_id, booking.status, booking.seats_booked)
        event = "booking_confirmed" if booking.status == BookingStatus.CONFIRMED.value else "booking_requested"
        self._notify(booking.driver_id, event, {
            "bookingId": booking.id, "rideId": booking.ride_id,
            "passengerId": booking.passenger_id, "seatsBooked": booking.seats_booked,
        })
        return booking

    def transition_booking(
        self,
        booking_id: str,
        actor_id: str,
        target_status,
        reason: Optional[str] = None,
    ) -> Booking:
        target = _parse_status(target_status)

        def work(db: Session) -> Booking:
            booking = db.get(Booking, booking_id)
            if not booking:
                raise BookingNotFound()
            ride = db.get(Ride, booking.ride_id)
            if not ride:
                raise RideNotFound()

            if booking.driver_id != ride.driver_id:
                logger.warning(
                    "Booking %s driver_id %s differs from ride driver %s; repairing",
                    booking.id, booking.driver_id, ride.driver_id,
                )
                booking.driver_id = ride.driver_id

            if required_role(target) == ROLE_DRIVER:
                if actor_id != ride.driver_id:
                    raise Unauthorized("Only the ride's driver can perform this action")
            elif actor_id != booking.passenger_id:
                raise Unauthorized("Only the booking's passenger can perform this action")

            now = self.clock()
            previous = booking.status
            state = apply_transition(_state_of(booking), target, now, reason)

            if target == BookingStatus.CONFIRMED or target in CANCELLED:
                inv, rows = _read_inventory(db, ride)
                if target == BookingStatus.CONFIRMED:
                    after = ledger.promote(inv, booking.passenger_id)
                else:
                    after = ledger.release(inv, booking.passenger_id, booking.id)
                _write_inventory(db, ride, inv, after, rows, now)

            if (
                target == BookingStatus.CANCELLED_BY_PASSENGER
                and previous == BookingStatus.CONFIRMED.value
                and hours_before_departure(ride.departure_at, now) < settings.REFUND_PARTIAL_HOURS
            ):
                logger.warning("Late cancellation of booking %s on ride %s", booking.id, ride.id)

            _store_state(booking, state, now)
            log_audit(db, actor_id, f"booking.{target.value}", "booking", booking.id, {
                "from": previous, "to": target.value, "reason": reason,
            })
            return booking

        booking = self._run(work, "transition_booking")
        logger.info("Booking %s -> %s by %s", booking.id, booking.status, actor_id)

        if target == BookingStatus.CANCELLED_BY_PASSENGER:
            recipient, event = booking.driver_id, "booking_cancelled"
        elif target == BookingStatus.CANCELLED_BY_DRIVER:
            recipient, event = booking.passenger_id, "booking_cancelled"
        elif target == BookingStatus.CONFIRMED:
            recipient, event = booking.passenger_id, "booking_confirmed"
        else:
            recipient, event = booking.passenger_id, "booking_completed"
        self._notify(recipient, event, {"bookingId": booking.id, "rideId": booking.ride_id, "reason": reason})
        return booking

    def approve_booking(self, booking_id: str, driver_id: str) -> Booking:
        return self.transition_booking(booking_id, driver_id, BookingStatus.CONFIRMED)

    def reject_booking(self, booking_id: str, driver_id: str, reason: Optional[str] = None) -> Booking:
        return self.transition_booking(booking_id, driver_id, BookingStatus.CANCELLED_BY_DRIVER, reason)

    def cancel_booking(self, booking_id: str, passenger_id: str, reason: Optional[str] = None) -> Booking:
        return self.transition_booking(booking_id, passenger_id, BookingStatus.CANCELLED_BY_PASSENGER, reason)

    def complete_booking(self, booking_id: str, driver_id: str) -> Booking:
        return self.transition_booking(booking_id, driver_id, BookingStatus.COMPLETED)


# ===================== Reads =====================

def get_ride(db: Session, ride_id: str) -> Ride:
    ride = db.get(Ride, ride_id)
    if not ride:
        raise RideNotFound()
    return ride


def ride_passengers(db: Session, ride_id: str) -> list[RideSeatEntry]:
    return (
        db.query(RideSeatEntry)
        .filter(RideSeatEntry.ride_id == ride_id)
        .order_by(RideSeatEntry.booked_at.asc())
        .all()
    )


def get_booking(db: Session, booking_id: str, user_id: str) -> Booking:
    booking = db.get(Booking, booking_id)
    if not booking:
        raise BookingNotFound()
    if user_id not in (booking.passenger_id, booking.driver_id):
        raise Unauthorized("You can only view your own bookings")
    return booking


def list_bookings(
    db: Session,
    user_id: str,
    role: str = "passenger",
    status: Optional[str] = None,
    limit: int = 20,
    offset: int = 0,
) -> tuple[list[Booking], int]:
    q = db.query(Booking)
    if role == "driver":
        q = q.filter(Booking.driver_id == user_id)
    else:
        q = q.filter(Booking.passenger_id == user_id)
    if status:
        q = q.filter(Booking.status == status)
    total = q.count()
    items = q.order_by(Booking.requested_at.desc()).offset(offset).limit(limit).all()
    return items, total
