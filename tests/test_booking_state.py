import unittest
from datetime import datetime, timedelta, timezone

from tripo.core.errors import InvalidTransition
from tripo.services.booking_state import (
    TRANSITIONS,
    BookingState,
    BookingStatus,
    apply_transition,
    initial_state,
    is_active,
    is_terminal,
    required_role,
)

T0 = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)
T1 = T0 + timedelta(minutes=5)


class BookingStateTests(unittest.TestCase):
    def test_initial_state_follows_booking_policy(self):
        self.assertEqual(initial_state(False, T0).status, BookingStatus.REQUESTED)
        instant = initial_state(True, T0)
        self.assertEqual(instant.status, BookingStatus.CONFIRMED)
        self.assertEqual(instant.confirmed_at, T0)

    def test_each_transition_sets_one_timestamp(self):
        state = initial_state(False, T0)
        confirmed = apply_transition(state, BookingStatus.CONFIRMED, T1)
        self.assertEqual(confirmed.confirmed_at, T1)
        self.assertIsNone(confirmed.completed_at)
        self.assertIsNone(confirmed.cancelled_at)
        completed = apply_transition(confirmed, "completed", T1)
        self.assertEqual(completed.completed_at, T1)
        self.assertEqual(state.status, BookingStatus.REQUESTED)

    def test_cancellation_records_reason(self):
        state = apply_transition(initial_state(False, T0), BookingStatus.CANCELLED_BY_DRIVER, T1, "car broke down")
        self.assertEqual(state.cancellation_reason, "car broke down")
        self.assertEqual(state.cancelled_at, T1)
        no_reason = apply_transition(initial_state(True, T0), BookingStatus.CANCELLED_BY_PASSENGER, T1)
        self.assertIsNone(no_reason.cancellation_reason)

    def test_every_edge_outside_the_table_is_rejected(self):
        for source in BookingStatus:
            state = BookingState(status=source, requested_at=T0)
            for target in BookingStatus:
                with self.subTest(source=source, target=target):
                    if target in TRANSITIONS[source]:
                        apply_transition(state, target, T1)
                    else:
                        with self.assertRaises(InvalidTransition) as ctx:
                            apply_transition(state, target, T1)
                        self.assertEqual(ctx.exception.from_status, source.value)
                        self.assertEqual(ctx.exception.to_status, target.value)

    def test_roles_and_classification(self):
        self.assertEqual(required_role(BookingStatus.CONFIRMED), "driver")
        self.assertEqual(required_role(BookingStatus.COMPLETED), "driver")
        self.assertEqual(required_role(BookingStatus.CANCELLED_BY_DRIVER), "driver")
        self.assertEqual(required_role(BookingStatus.CANCELLED_BY_PASSENGER), "passenger")
        self.assertTrue(is_active("requested"))
        self.assertTrue(is_active("confirmed"))
        self.assertTrue(is_terminal("completed"))
        self.assertFalse(is_terminal("confirmed"))
