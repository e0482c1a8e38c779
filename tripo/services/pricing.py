"""Fare, fee and refund calculations.

Pure functions over whole currency units. Rounding is half-up (0.5 rounds
away from zero for the non-negative amounts handled here), never banker's
rounding.
"""
import math
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP

from tripo.core.clock import ensure_utc
from tripo.core.errors import InvalidAmount

PLATFORM_FEE_PERCENT = 10
PAYOUT_FEE_PERCENT = 2
PAYOUT_MIN_FEE = 5

FULL_REFUND_HOURS = 24
PARTIAL_REFUND_HOURS = 2
PARTIAL_REFUND_PERCENT = 50


@dataclass(frozen=True)
class Fare:
    total_amount: int
    service_fee: int
    final_amount: int


@dataclass(frozen=True)
class RefundQuote:
    refund_amount: int
    refund_percentage: int
    refund_type: str  # full, partial, none


def _check_amount(value, name: str = "amount") -> None:
    if isinstance(value, bool) or not isinstance(value, (int, float, Decimal)):
        raise InvalidAmount(f"{name} must be a number")
    if isinstance(value, float) and not math.isfinite(value):
        raise InvalidAmount(f"{name} must be finite")
    if isinstance(value, Decimal) and not value.is_finite():
        raise InvalidAmount(f"{name} must be finite")
    if value < 0:
        raise InvalidAmount(f"{name} must be >= 0")


def round_amount(value) -> int:
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def percent_of(amount, percent) -> int:
    return round_amount(Decimal(str(amount)) * Decimal(str(percent)) / Decimal("100"))


def compute_fare(price_per_seat, seats_booked: int, fee_percent) -> Fare:
    _check_amount(price_per_seat, "price_per_seat")
    _check_amount(fee_percent, "fee_percent")
    if isinstance(seats_booked, bool) or not isinstance(seats_booked, int) or seats_booked < 1:
        raise InvalidAmount("seats_booked must be a positive integer")

    total = round_amount(Decimal(str(price_per_seat)) * seats_booked)
    fee = percent_of(total, fee_percent)
    return Fare(total_amount=total, service_fee=fee, final_amount=total + fee)


def compute_refund(
    amount,
    hours_before_departure: float,
    *,
    full_refund_hours: float = FULL_REFUND_HOURS,
    partial_refund_hours: float = PARTIAL_REFUND_HOURS,
    partial_refund_percent: int = PARTIAL_REFUND_PERCENT,
) -> RefundQuote:
    _check_amount(amount)
    if hours_before_departure is None or (
        isinstance(hours_before_departure, float) and math.isnan(hours_before_departure)
    ):
        raise InvalidAmount("hours_before_departure must be a number")

    if hours_before_departure >= full_refund_hours:
        return RefundQuote(refund_amount=round_amount(amount), refund_percentage=100, refund_type="full")
    if hours_before_departure >= partial_refund_hours:
        return RefundQuote(
            refund_amount=percent_of(amount, partial_refund_percent),
            refund_percentage=partial_refund_percent,
            refund_type="partial",
        )
    return RefundQuote(refund_amount=0, refund_percentage=0, refund_type="none")


def platform_fee(amount, percent=PLATFORM_FEE_PERCENT) -> int:
    _check_amount(amount)
    return percent_of(amount, percent)


def payout_processing_fee(amount, percent=PAYOUT_FEE_PERCENT, minimum_fee: int = PAYOUT_MIN_FEE) -> int:
    _check_amount(amount)
    return max(percent_of(amount, percent), minimum_fee)


def hours_before_departure(departure_at: datetime, now: datetime) -> float:
    return (ensure_utc(departure_at) - ensure_utc(now)).total_seconds() / 3600.0
