import os
import tempfile
import unittest
import uuid
from datetime import datetime, timedelta, timezone

from sqlalchemy import event

from tripo.db.base import Base
from tripo.db.session import make_engine, make_session_factory
from tripo.models.booking import Booking
from tripo.models.payment import Payment
from tripo.models.ride import Ride
from tripo.models.ride_seat_entry import RideSeatEntry
from tripo.services.booking_coordinator import BookingCoordinator

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


class FakeNotifier:
    def __init__(self, fail=False):
        self.sent = []
        self.fail = fail

    def notify(self, user_id, event_type, payload=None):
        if self.fail:
            raise RuntimeError("push gateway down")
        self.sent.append((user_id, event_type, payload or {}))


class InterleavedSessions:
    """Session factory that runs `competing` on its own connection just before
    the first `times` sessions commit, so the optimistic version check trips."""

    def __init__(self, factory, competing, times=1):
        self.factory = factory
        self.competing = competing
        self.remaining = times
        self.calls = 0

    def __call__(self):
        db = self.factory()
        if self.remaining > 0:
            self.remaining -= 1
            event.listen(db, "before_commit", self._fire)
        return db

    def _fire(self, session):
        self.calls += 1
        self.competing()


class DatabaseTestCase(unittest.TestCase):
    """Each test gets its own SQLite file, so separate sessions are separate connections."""

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.engine = make_engine(f"sqlite:///{os.path.join(self._tmp.name, 'tripo.db')}")
        Base.metadata.create_all(self.engine)
        self.Session = make_session_factory(self.engine)
        self.notifier = FakeNotifier()
        self.coordinator = self.make_coordinator()

    def tearDown(self):
        self.engine.dispose()
        self._tmp.cleanup()

    def make_coordinator(self, session_factory=None, notifier=None, clock=None, sleep=None):
        return BookingCoordinator(
            session_factory or self.Session,
            notifier or self.notifier,
            clock=clock or (lambda: NOW),
            fee_percent=5,
            max_attempts=3,
            backoff_seconds=0,
            sleep=sleep or (lambda s: None),
        )

    def publish(self, driver_id="driver-1", seats=4, price=500, instant=True, departs_in=timedelta(days=2)):
        return self.coordinator.publish_ride(
            driver_id,
            departure_at=NOW + departs_in,
            price_per_seat=price,
            total_seats=seats,
            origin_label="Bengaluru",
            destination_label="Mysuru",
            instant_booking=instant,
        )

    def reload_ride(self, ride_id):
        with self.Session() as db:
            return db.get(Ride, ride_id)

    def reload_booking(self, booking_id):
        with self.Session() as db:
            return db.get(Booking, booking_id)

    def seat_entries(self, ride_id):
        with self.Session() as db:
            return {e.passenger_id: e for e in db.query(RideSeatEntry).filter(RideSeatEntry.ride_id == ride_id)}

    def booking_count(self, ride_id):
        with self.Session() as db:
            return db.query(Booking).filter(Booking.ride_id == ride_id).count()

    def assert_seat_invariants(self, ride_id):
        ride = self.reload_ride(ride_id)
        confirmed = sum(e.seats_booked for e in self.seat_entries(ride_id).values() if e.status == "confirmed")
        self.assertGreaterEqual(ride.available_seats, 0)
        self.assertLessEqual(ride.available_seats, ride.total_seats)
        self.assertEqual(ride.available_seats + confirmed, ride.total_seats)

    def add_completed_payment(self, booking, amount=None, completed_at=None, status="completed"):
        with self.Session() as db:
            p = Payment(
                id=str(uuid.uuid4()),
                booking_id=booking.id,
                user_id=booking.passenger_id,
                ride_id=booking.ride_id,
                gateway_order_id=f"order-{uuid.uuid4().hex[:8]}",
                gateway_payment_id=f"pay-{uuid.uuid4().hex[:8]}",
                amount=booking.final_amount if amount is None else amount,
                currency="INR",
                status=status,
                refunds=[],
                completed_at=completed_at or NOW,
            )
            db.add(p)
            db.commit()
            return p
