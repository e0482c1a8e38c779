from datetime import timedelta

from tripo.core.errors import (
    BookingNotFound,
    ConcurrencyConflict,
    DuplicateActiveBooking,
    InsufficientSeats,
    InvalidRideTransition,
    InvalidTransition,
    RideNotBookable,
    RideNotFound,
    SelfBookingForbidden,
    Unauthorized,
    ValidationFailure,
)
from tripo.models.booking import Booking
from tripo.services.audit_service import audit_trail
from tripo.services.booking_coordinator import BookingCoordinator, get_booking, list_bookings

from helpers import NOW, DatabaseTestCase, FakeNotifier, InterleavedSessions


class CreateBookingTests(DatabaseTestCase):
    def test_instant_booking_consumes_seats(self):
        ride = self.publish(seats=4, price=500)
        booking = self.coordinator.create_booking(ride.id, "p1", 2)

        self.assertEqual(booking.status, "confirmed")
        self.assertEqual((booking.total_amount, booking.service_fee, booking.final_amount), (1000, 50, 1050))
        self.assertEqual(booking.driver_id, "driver-1")
        self.assertEqual(booking.pickup_point, "Bengaluru")
        self.assertEqual(self.reload_ride(ride.id).available_seats, 2)
        entry = self.seat_entries(ride.id)["p1"]
        self.assertEqual((entry.status, entry.seats_booked, entry.booking_id), ("confirmed", 2, booking.id))
        self.assert_seat_invariants(ride.id)
        self.assertEqual(self.notifier.sent[-1][:2], ("driver-1", "booking_confirmed"))

    def test_request_mode_holds_no_seats(self):
        ride = self.publish(seats=4, instant=False)
        booking = self.coordinator.create_booking(ride.id, "p1", 3, pickup_point="Gate 2")

        self.assertEqual(booking.status, "requested")
        self.assertIsNone(booking.confirmed_at)
        self.assertEqual(booking.pickup_point, "Gate 2")
        self.assertEqual(self.reload_ride(ride.id).available_seats, 4)
        self.assertEqual(self.seat_entries(ride.id)["p1"].status, "requested")
        self.assertEqual(self.notifier.sent[-1][:2], ("driver-1", "booking_requested"))

    def test_sequential_bookings_stop_at_capacity(self):
        ride = self.publish(seats=3)
        self.coordinator.create_booking(ride.id, "p1", 2)
        self.coordinator.create_booking(ride.id, "p2", 1)
        with self.assertRaises(InsufficientSeats):
            self.coordinator.create_booking(ride.id, "p3", 1)
        self.assertEqual(self.reload_ride(ride.id).available_seats, 0)
        self.assertEqual(self.booking_count(ride.id), 2)
        self.assert_seat_invariants(ride.id)

    def test_request_mode_still_checks_current_availability(self):
        ride = self.publish(seats=2, instant=False)
        with self.assertRaises(InsufficientSeats):
            self.coordinator.create_booking(ride.id, "p1", 3)

    def test_invalid_seat_counts_are_rejected_before_any_write(self):
        ride = self.publish()
        for seats in (0, 9, -1, True, "2"):
            with self.subTest(seats=seats):
                with self.assertRaises(ValidationFailure):
                    self.coordinator.create_booking(ride.id, "p1", seats)
        self.assertEqual(self.booking_count(ride.id), 0)

    def test_idempotency_key_reused_for_a_different_request(self):
        ride = self.publish(seats=6)
        other_ride = self.publish(seats=6)
        first = self.coordinator.create_booking(ride.id, "p1", 2, idempotency_key="key-1")

        for ride_id, seats in ((ride.id, 3), (other_ride.id, 2)):
            with self.subTest(ride_id=ride_id, seats=seats):
                with self.assertRaises(ValidationFailure) as ctx:
                    self.coordinator.create_booking(ride_id, "p1", seats, idempotency_key="key-1")
                self.assertEqual(ctx.exception.details, {"booking_id": first.id})
        self.assertEqual(self.reload_ride(ride.id).available_seats, 4)
        self.assertEqual(self.booking_count(other_ride.id), 0)

    def test_rejections_leave_state_untouched(self):
        ride = self.publish()
        with self.assertRaises(RideNotFound):
            self.coordinator.create_booking("missing", "p1", 1)
        with self.assertRaises(SelfBookingForbidden):
            self.coordinator.create_booking(ride.id, "driver-1", 1)

        self.coordinator.create_booking(ride.id, "p1", 1)
        with self.assertRaises(DuplicateActiveBooking):
            self.coordinator.create_booking(ride.id, "p1", 1)
        self.assertEqual(self.reload_ride(ride.id).available_seats, 3)
        self.assertEqual(self.booking_count(ride.id), 1)

    def test_passenger_can_rebook_after_cancelling(self):
        ride = self.publish(seats=4)
        first = self.coordinator.create_booking(ride.id, "p1", 2)
        self.coordinator.cancel_booking(first.id, "p1")
        second = self.coordinator.create_booking(ride.id, "p1", 3)
        self.assertEqual(self.seat_entries(ride.id)["p1"].booking_id, second.id)
        self.assertEqual(self.reload_ride(ride.id).available_seats, 1)
        self.assert_seat_invariants(ride.id)

    def test_departed_or_cancelled_ride_is_not_bookable(self):
        ride = self.publish()
        late = self.make_coordinator(clock=lambda: NOW + timedelta(days=3))
        with self.assertRaises(RideNotBookable):
            late.create_booking(ride.id, "p1", 1)

        self.coordinator.transition_ride(ride.id, "driver-1", "cancelled")
        with self.assertRaises(RideNotBookable):
            self.coordinator.create_booking(ride.id, "p1", 1)

    def test_notifier_failure_does_not_fail_booking(self):
        coordinator = self.make_coordinator(notifier=FakeNotifier(fail=True))
        ride = self.publish()
        booking = coordinator.create_booking(ride.id, "p1", 1)
        self.assertEqual(self.reload_booking(booking.id).status, "confirmed")


class ConcurrentBookingTests(DatabaseTestCase):
    def test_competing_booking_cannot_oversell(self):
        ride = self.publish(seats=4)

        def competing():
            self.coordinator.create_booking(ride.id, "p-b", 3)

        racing = self.make_coordinator(session_factory=InterleavedSessions(self.Session, competing))
        with self.assertRaises(InsufficientSeats):
            racing.create_booking(ride.id, "p-a", 3)

        self.assertEqual(self.booking_count(ride.id), 1)
        self.assertEqual(self.reload_ride(ride.id).available_seats, 1)
        self.assertEqual(set(self.seat_entries(ride.id)), {"p-b"})
        self.assert_seat_invariants(ride.id)

    def test_retry_succeeds_when_seats_remain(self):
        ride = self.publish(seats=4)

        def competing():
            self.coordinator.create_booking(ride.id, "p-b", 1)

        sessions = InterleavedSessions(self.Session, competing)
        racing = self.make_coordinator(session_factory=sessions)
        booking = racing.create_booking(ride.id, "p-a", 2)

        self.assertEqual(sessions.calls, 1)
        self.assertEqual(booking.status, "confirmed")
        self.assertEqual(self.reload_ride(ride.id).available_seats, 1)
        self.assert_seat_invariants(ride.id)

    def test_idempotent_retry_creates_one_booking(self):
        ride = self.publish(seats=6)

        def competing():
            self.coordinator.create_booking(ride.id, "p-b", 1)

        notifier = FakeNotifier()
        racing = self.make_coordinator(session_factory=InterleavedSessions(self.Session, competing), notifier=notifier)
        first = racing.create_booking(ride.id, "p-a", 2, idempotency_key="key-1")
        replay = racing.create_booking(ride.id, "p-a", 2, idempotency_key="key-1")

        self.assertEqual(first.id, replay.id)
        with self.Session() as db:
            self.assertEqual(db.query(Booking).filter(Booking.passenger_id == "p-a").count(), 1)
        self.assertEqual(self.reload_ride(ride.id).available_seats, 3)
        self.assertEqual(notifier.sent[0][:2], ("driver-1", "booking_confirmed"))
        self.assertEqual(len(notifier.sent), 1)

    def test_persistent_conflict_surfaces_as_concurrency_conflict(self):
        ride = self.publish(seats=8)
        counter = iter(range(10))

        def competing():
            self.coordinator.create_booking(ride.id, f"p-x{next(counter)}", 1)

        sleeps = []
        racing = BookingCoordinator(
            InterleavedSessions(self.Session, competing, times=3),
            self.notifier,
            clock=lambda: NOW,
            fee_percent=5,
            max_attempts=3,
            backoff_seconds=0.01,
            sleep=sleeps.append,
        )
        with self.assertRaises(ConcurrencyConflict):
            racing.create_booking(ride.id, "p-a", 1)

        self.assertEqual(sleeps, [0.01, 0.02])
        self.assertEqual(self.booking_count(ride.id), 3)
        self.assertEqual(self.reload_ride(ride.id).available_seats, 5)
        self.assert_seat_invariants(ride.id)


class TransitionTests(DatabaseTestCase):
    def test_driver_approval_consumes_seats(self):
        ride = self.publish(seats=4, instant=False)
        booking = self.coordinator.create_booking(ride.id, "p1", 3)
        approved = self.coordinator.approve_booking(booking.id, "driver-1")

        self.assertEqual(approved.status, "confirmed")
        self.assertEqual(approved.confirmed_at.replace(tzinfo=None), NOW.replace(tzinfo=None))
        self.assertEqual(self.reload_ride(ride.id).available_seats, 1)
        self.assertEqual(self.seat_entries(ride.id)["p1"].status, "confirmed")
        self.assertEqual(self.notifier.sent[-1][:2], ("p1", "booking_confirmed"))
        self.assert_seat_invariants(ride.id)

    def test_each_transition_is_audited(self):
        ride = self.publish(seats=4, instant=False)
        booking = self.coordinator.create_booking(ride.id, "p1", 1)
        self.coordinator.approve_booking(booking.id, "driver-1")
        self.coordinator.cancel_booking(booking.id, "p1", "plans changed")

        with self.Session() as db:
            trail = audit_trail(db, "booking", booking.id)
        self.assertEqual(
            [(a.actor_user_id, a.action) for a in trail],
            [("p1", "booking.created"), ("driver-1", "booking.confirmed"), ("p1", "booking.cancelled_by_passenger")],
        )

    def test_approval_without_room_is_refused(self):
        ride = self.publish(seats=3, instant=False)
        first = self.coordinator.create_booking(ride.id, "p1", 2)
        second = self.coordinator.create_booking(ride.id, "p2", 2)
        self.coordinator.approve_booking(first.id, "driver-1")
        with self.assertRaises(InsufficientSeats):
            self.coordinator.approve_booking(second.id, "driver-1")
        self.assertEqual(self.reload_booking(second.id).status, "requested")
        self.assert_seat_invariants(ride.id)

    def test_cancellation_releases_seats(self):
        ride = self.publish(seats=4)
        booking = self.coordinator.create_booking(ride.id, "p1", 2)
        cancelled = self.coordinator.cancel_booking(booking.id, "p1", "plans changed")

        self.assertEqual(cancelled.status, "cancelled_by_passenger")
        self.assertEqual(cancelled.cancellation_reason, "plans changed")
        self.assertEqual(self.reload_ride(ride.id).available_seats, 4)
        self.assertEqual(self.seat_entries(ride.id), {})
        self.assertEqual(self.notifier.sent[-1][:2], ("driver-1", "booking_cancelled"))

    def test_driver_rejects_request(self):
        ride = self.publish(seats=4, instant=False)
        booking = self.coordinator.create_booking(ride.id, "p1", 2)
        rejected = self.coordinator.reject_booking(booking.id, "driver-1", "full car")
        self.assertEqual(rejected.status, "cancelled_by_driver")
        self.assertEqual(self.reload_ride(ride.id).available_seats, 4)
        self.assertEqual(self.notifier.sent[-1][:2], ("p1", "booking_cancelled"))

    def test_completion_keeps_seat_claim(self):
        ride = self.publish(seats=4)
        booking = self.coordinator.create_booking(ride.id, "p1", 2)
        completed = self.coordinator.complete_booking(booking.id, "driver-1")
        self.assertEqual(completed.status, "completed")
        self.assertEqual(self.reload_ride(ride.id).available_seats, 2)
        self.assert_seat_invariants(ride.id)

    def test_invalid_transition_leaves_state_unchanged(self):
        ride = self.publish(seats=4)
        booking = self.coordinator.create_booking(ride.id, "p1", 2)
        self.coordinator.complete_booking(booking.id, "driver-1")
        before = self.reload_booking(booking.id)

        with self.assertRaises(InvalidTransition) as ctx:
            self.coordinator.cancel_booking(booking.id, "p1")
        self.assertEqual((ctx.exception.from_status, ctx.exception.to_status), ("completed", "cancelled_by_passenger"))

        after = self.reload_booking(booking.id)
        self.assertEqual((after.status, after.version), (before.status, before.version))
        self.assertEqual(self.reload_ride(ride.id).available_seats, 2)

    def test_unknown_status_is_a_validation_error(self):
        ride = self.publish()
        booking = self.coordinator.create_booking(ride.id, "p1", 1)
        with self.assertRaises(ValidationFailure):
            self.coordinator.transition_booking(booking.id, "driver-1", "teleported")

    def test_only_the_right_party_may_transition(self):
        ride = self.publish(seats=4, instant=False)
        booking = self.coordinator.create_booking(ride.id, "p1", 1)
        with self.assertRaises(Unauthorized):
            self.coordinator.approve_booking(booking.id, "p1")
        with self.assertRaises(Unauthorized):
            self.coordinator.cancel_booking(booking.id, "driver-1")
        with self.assertRaises(Unauthorized):
            self.coordinator.cancel_booking(booking.id, "stranger")
        with self.assertRaises(BookingNotFound):
            self.coordinator.approve_booking("missing", "driver-1")
        self.assertEqual(self.reload_booking(booking.id).status, "requested")

    def test_stale_driver_copy_is_repaired_and_ride_driver_decides(self):
        ride = self.publish(seats=4, instant=False)
        booking = self.coordinator.create_booking(ride.id, "p1", 1)
        with self.Session() as db:
            db.get(Booking, booking.id).driver_id = "old-driver"
            db.commit()

        with self.assertRaises(Unauthorized):
            self.coordinator.approve_booking(booking.id, "old-driver")
        approved = self.coordinator.approve_booking(booking.id, "driver-1")
        self.assertEqual(approved.driver_id, "driver-1")
        self.assertEqual(self.reload_booking(booking.id).driver_id, "driver-1")

    def test_approve_racing_passenger_cancel(self):
        ride = self.publish(seats=4, instant=False)
        booking = self.coordinator.create_booking(ride.id, "p1", 2)

        def competing():
            self.coordinator.cancel_booking(booking.id, "p1")

        racing = self.make_coordinator(session_factory=InterleavedSessions(self.Session, competing))
        with self.assertRaises(InvalidTransition):
            racing.approve_booking(booking.id, "driver-1")

        self.assertEqual(self.reload_booking(booking.id).status, "cancelled_by_passenger")
        self.assertEqual(self.reload_ride(ride.id).available_seats, 4)
        self.assert_seat_invariants(ride.id)


class RideLifecycleTests(DatabaseTestCase):
    def test_publish_validates_input(self):
        with self.assertRaises(ValidationFailure):
            self.publish(seats=0)
        with self.assertRaises(ValidationFailure):
            self.publish(price=-1)
        with self.assertRaises(ValidationFailure):
            self.publish(departs_in=timedelta(hours=-1))

    def test_ride_cancellation_cascades_to_active_bookings(self):
        ride = self.publish(seats=4)
        b1 = self.coordinator.create_booking(ride.id, "p1", 2)
        b2 = self.coordinator.create_booking(ride.id, "p2", 1)
        self.coordinator.complete_booking(b2.id, "driver-1")
        self.notifier.sent.clear()

        cancelled = self.coordinator.transition_ride(ride.id, "driver-1", "cancelled")

        self.assertEqual(cancelled.status, "cancelled")
        first = self.reload_booking(b1.id)
        self.assertEqual((first.status, first.cancellation_reason), ("cancelled_by_driver", "ride_cancelled"))
        self.assertEqual(self.reload_booking(b2.id).status, "completed")
        self.assertEqual(self.reload_ride(ride.id).available_seats, 3)
        self.assert_seat_invariants(ride.id)
        self.assertEqual([n[:2] for n in self.notifier.sent], [("p1", "booking_cancelled")])

    def test_ride_cancellation_frees_the_whole_ride(self):
        ride = self.publish(seats=4, instant=False)
        requested = self.coordinator.create_booking(ride.id, "p1", 1)
        confirmed = self.coordinator.create_booking(ride.id, "p2", 3)
        self.coordinator.approve_booking(confirmed.id, "driver-1")

        self.coordinator.transition_ride(ride.id, "driver-1", "cancelled")

        self.assertEqual(self.reload_ride(ride.id).available_seats, 4)
        self.assertEqual(self.seat_entries(ride.id), {})
        for booking_id in (requested.id, confirmed.id):
            self.assertEqual(self.reload_booking(booking_id).status, "cancelled_by_driver")

    def test_ride_status_rules(self):
        ride = self.publish()
        with self.assertRaises(Unauthorized):
            self.coordinator.transition_ride(ride.id, "p1", "in_progress")
        with self.assertRaises(InvalidRideTransition):
            self.coordinator.transition_ride(ride.id, "driver-1", "completed")
        self.coordinator.transition_ride(ride.id, "driver-1", "in_progress")
        done = self.coordinator.transition_ride(ride.id, "driver-1", "completed")
        self.assertEqual(done.status, "completed")
        with self.assertRaises(InvalidRideTransition):
            self.coordinator.transition_ride(ride.id, "driver-1", "cancelled")


class ReadTests(DatabaseTestCase):
    def test_booking_visible_to_its_parties_only(self):
        ride = self.publish()
        booking = self.coordinator.create_booking(ride.id, "p1", 1)
        with self.Session() as db:
            self.assertEqual(get_booking(db, booking.id, "p1").id, booking.id)
            self.assertEqual(get_booking(db, booking.id, "driver-1").id, booking.id)
            with self.assertRaises(Unauthorized):
                get_booking(db, booking.id, "stranger")

    def test_list_bookings_by_role_and_status(self):
        ride = self.publish(seats=4)
        self.coordinator.create_booking(ride.id, "p1", 1)
        b2 = self.coordinator.create_booking(ride.id, "p2", 1)
        self.coordinator.cancel_booking(b2.id, "p2")
        with self.Session() as db:
            items, total = list_bookings(db, "driver-1", role="driver")
            self.assertEqual(total, 2)
            items, total = list_bookings(db, "driver-1", role="driver", status="confirmed")
            self.assertEqual([b.passenger_id for b in items], ["p1"])
            items, total = list_bookings(db, "p2")
            self.assertEqual((total, items[0].status), (1, "cancelled_by_passenger"))
