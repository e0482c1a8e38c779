import math
import unittest
from datetime import datetime, timedelta, timezone

from tripo.core.errors import InvalidAmount
from tripo.services.pricing import (
    compute_fare,
    compute_refund,
    hours_before_departure,
    payout_processing_fee,
    platform_fee,
)


class FareTests(unittest.TestCase):
    def test_fare_for_two_seats_with_five_percent_fee(self):
        fare = compute_fare(500, 2, 5)
        self.assertEqual((fare.total_amount, fare.service_fee, fare.final_amount), (1000, 50, 1050))

    def test_service_fee_rounds_half_up(self):
        # 5% of 130 = 6.5 -> 7, 5% of 110 = 5.5 -> 6
        self.assertEqual(compute_fare(130, 1, 5).service_fee, 7)
        self.assertEqual(compute_fare(110, 1, 5).service_fee, 6)

    def test_free_ride_has_no_fee(self):
        fare = compute_fare(0, 3, 5)
        self.assertEqual(fare.final_amount, 0)

    def test_invalid_inputs_raise(self):
        for args in [(-1, 1, 5), (math.nan, 1, 5), (math.inf, 1, 5), (100, 0, 5), (100, 1, -5), ("100", 1, 5)]:
            with self.subTest(args=args):
                with self.assertRaises(InvalidAmount):
                    compute_fare(*args)


class RefundTests(unittest.TestCase):
    def test_refund_tiers(self):
        full = compute_refund(1000, 25)
        self.assertEqual((full.refund_amount, full.refund_type, full.refund_percentage), (1000, "full", 100))
        partial = compute_refund(1000, 5)
        self.assertEqual((partial.refund_amount, partial.refund_type), (500, "partial"))
        none = compute_refund(1000, 1)
        self.assertEqual((none.refund_amount, none.refund_type), (0, "none"))

    def test_boundaries_belong_to_upper_tier(self):
        self.assertEqual(compute_refund(1000, 24).refund_type, "full")
        self.assertEqual(compute_refund(1000, 2).refund_type, "partial")
        self.assertEqual(compute_refund(1000, 1.999).refund_type, "none")

    def test_departed_ride_gets_nothing(self):
        self.assertEqual(compute_refund(1000, -3).refund_amount, 0)

    def test_partial_refund_rounds_half_up(self):
        self.assertEqual(compute_refund(1051, 10).refund_amount, 526)

    def test_custom_tiers(self):
        quote = compute_refund(1000, 10, full_refund_hours=48, partial_refund_hours=6, partial_refund_percent=25)
        self.assertEqual((quote.refund_amount, quote.refund_percentage), (250, 25))

    def test_invalid_refund_inputs(self):
        with self.assertRaises(InvalidAmount):
            compute_refund(-10, 30)
        with self.assertRaises(InvalidAmount):
            compute_refund(1000, math.nan)


class FeeTests(unittest.TestCase):
    def test_platform_fee_is_ten_percent(self):
        self.assertEqual(platform_fee(1050), 105)
        self.assertEqual(platform_fee(15), 2)

    def test_payout_fee_has_minimum(self):
        self.assertEqual(payout_processing_fee(100), 5)
        self.assertEqual(payout_processing_fee(1000), 20)

    def test_hours_before_departure_uses_absolute_instants(self):
        now = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)
        ist = timezone(timedelta(hours=5, minutes=30))
        departure = datetime(2026, 3, 10, 23, 30, tzinfo=ist)  # 18:00 UTC
        self.assertAlmostEqual(hours_before_departure(departure, now), 6.0)
        # Naive values are read as UTC
        self.assertAlmostEqual(hours_before_departure(datetime(2026, 3, 11, 12, 0), now), 24.0)
