"""Provider earnings, balance and payouts.

Derived from completed payments; the provider of a payment is always the
driver of the booking's ride, never the booking's denormalized copy. Nothing
here writes to rides or bookings.
"""
import logging
import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from tripo.core.clock import ensure_utc
from tripo.core.config import settings
from tripo.core.errors import (
    BelowMinimumPayout,
    ConcurrencyConflict,
    InsufficientBalance,
    InvalidAmount,
    InvalidPayoutStatus,
    PayoutNotFound,
    Unauthorized,
)
from tripo.db.transaction import run_in_transaction
from tripo.models.booking import Booking
from tripo.models.payment import Payment
from tripo.models.payout import Payout
from tripo.models.payout_account import PayoutAccount
from tripo.models.ride import Ride
from tripo.services.audit_service import log_audit
from tripo.services.pricing import payout_processing_fee, platform_fee, round_amount

logger = logging.getLogger(__name__)

IN_FLIGHT_PAYOUT_STATUSES = ("pending", "processing")
CLAIMED_PAYOUT_STATUSES = ("pending", "processing", "completed")
PAYOUT_METHODS = ("bank_transfer", "upi", "wallet")


@dataclass(frozen=True)
class EarningEntry:
    payment_id: str
    booking_id: str
    ride_id: str
    gross_amount: int
    platform_fee: int
    net_earning: int
    seats_booked: int
    currency: str
    paid_at: datetime | None


@dataclass(frozen=True)
class EarningsSummary:
    total_earnings: int
    total_platform_fees: int
    gross_earnings: int
    total_rides: int
    total_passengers: int
    average_earning_per_ride: int


@dataclass(frozen=True)
class EarningsReport:
    provider_id: str
    start: datetime | None
    end: datetime | None
    summary: EarningsSummary
    breakdown: list[EarningEntry] = field(default_factory=list)


@dataclass(frozen=True)
class Balance:
    total_earnings: int
    paid_out: int
    pending_payouts: int
    available_balance: int
    currency: str


def provider_earnings(db: Session, provider_id: str, start: datetime | None = None, end: datetime | None = None) -> EarningsReport:
    q = (
        db.query(Payment, Booking)
        .join(Booking, Booking.id == Payment.booking_id)
        .join(Ride, Ride.id == Booking.ride_id)
        .filter(Payment.status == "completed", Ride.driver_id == provider_id)
    )
    if start is not None:
        q = q.filter(Payment.completed_at >= ensure_utc(start))
    if end is not None:
        q = q.filter(Payment.completed_at <= ensure_utc(end))

    breakdown = []
    for payment, booking in q.order_by(Payment.completed_at.asc(), Payment.id.asc()).all():
        fee = platform_fee(payment.amount, settings.PLATFORM_FEE_PERCENT)
        breakdown.append(EarningEntry(
            payment_id=payment.id,
            booking_id=payment.booking_id,
            ride_id=booking.ride_id,
            gross_amount=payment.amount,
            platform_fee=fee,
            net_earning=payment.amount - fee,
            seats_booked=booking.seats_booked,
            currency=payment.currency,
            paid_at=ensure_utc(payment.completed_at),
        ))

    total = sum(e.net_earning for e in breakdown)
    fees = sum(e.platform_fee for e in breakdown)
    rides = len(breakdown)
    summary = EarningsSummary(
        total_earnings=total,
        total_platform_fees=fees,
        gross_earnings=total + fees,
        total_rides=rides,
        total_passengers=sum(e.seats_booked for e in breakdown),
        average_earning_per_ride=round_amount(total / rides) if rides else 0,
    )
    return EarningsReport(provider_id=provider_id, start=start, end=end, summary=summary, breakdown=breakdown)


def _payouts(db: Session, provider_id: str, statuses=None) -> list[Payout]:
    q = db.query(Payout).filter(Payout.provider_id == provider_id)
    if statuses:
        q = q.filter(Payout.status.in_(statuses))
    return q.order_by(Payout.requested_at.asc()).all()


def available_balance(db: Session, provider_id: str) -> Balance:
    """Net earnings not yet paid out, minus payouts still in flight. Never negative."""
    earnings = provider_earnings(db, provider_id)
    paid_out, pending = 0, 0
    for p in _payouts(db, provider_id, CLAIMED_PAYOUT_STATUSES):
        if p.status in IN_FLIGHT_PAYOUT_STATUSES:
            pending += p.amount
        else:
            paid_out += p.amount
    total = earnings.summary.total_earnings
    return Balance(
        total_earnings=total,
        paid_out=paid_out,
        pending_payouts=pending,
        available_balance=max(0, total - paid_out - pending),
        currency=settings.CURRENCY,
    )


def _bump_payout_account(db: Session, provider_id: str) -> PayoutAccount:
    # Two requests for the same provider both write this row, so the loser
    # fails its flush (stale version or duplicate insert) and re-reads the balance.
    account = db.get(PayoutAccount, provider_id)
    if account is None:
        account = PayoutAccount(provider_id=provider_id, payout_count=0)
        db.add(account)
    account.payout_count += 1
    account.updated_at = datetime.now(timezone.utc)
    return account


def request_payout(db: Session, provider_id: str, amount: int, method: str, bank_details: dict | None = None) -> Payout:
    """Reserve part of the available balance for a payout.

    Runs under ``run_in_transaction`` against the caller's session, which is
    closed between attempts; the returned payout is re-read into it.
    """
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise InvalidAmount("amount must be a positive whole number")

    def work(s: Session) -> str:
        _bump_payout_account(s, provider_id)
        balance = available_balance(s, provider_id)
        if amount > balance.available_balance:
            raise InsufficientBalance(
                f"Insufficient balance. Available: {balance.available_balance}, Requested: {amount}",
                available=balance.available_balance, requested=amount,
            )
        if amount < settings.MINIMUM_PAYOUT:
            raise BelowMinimumPayout(f"Minimum payout amount is {settings.MINIMUM_PAYOUT}", minimum=settings.MINIMUM_PAYOUT)

        # Oldest earnings not yet claimed by another payout, enough to cover the requested share.
        claimed = set()
        for p in _payouts(s, provider_id, CLAIMED_PAYOUT_STATUSES):
            claimed.update(p.transaction_ids or [])
        unpaid = [e for e in provider_earnings(s, provider_id).breakdown if e.payment_id not in claimed]
        unpaid_total = sum(e.net_earning for e in unpaid)
        count = min(len(unpaid), math.ceil(len(unpaid) * amount / unpaid_total)) if unpaid_total > 0 else 0

        fee = payout_processing_fee(amount, settings.PAYOUT_FEE_PERCENT, settings.PAYOUT_MIN_FEE)
        payout = Payout(
            id=str(uuid.uuid4()),
            provider_id=provider_id,
            amount=amount,
            currency=settings.CURRENCY,
            status="pending",
            payout_method=method,
            bank_details=bank_details or {},
            transaction_ids=[e.payment_id for e in unpaid[:count]],
            platform_fee=fee,
            net_amount=amount - fee,
        )
        s.add(payout)
        log_audit(s, provider_id, "payout.requested", "payout", payout.id, {
            "amount": amount, "net_amount": amount - fee, "available_balance": balance.available_balance,
        })
        return payout.id

    payout_id = run_in_transaction(
        lambda: db,
        work,
        max_attempts=settings.TX_MAX_ATTEMPTS,
        backoff_seconds=settings.TX_BACKOFF_SECONDS,
        label="request_payout",
    )
    payout = get_payout(db, payout_id)
    logger.info("Payout %s requested by %s: amount=%d net=%d method=%s", payout.id, provider_id, amount, payout.net_amount, method)
    return payout


def get_payout(db: Session, payout_id: str, provider_id: str | None = None) -> Payout:
    payout = db.get(Payout, payout_id)
    if not payout:
        raise PayoutNotFound()
    if provider_id is not None and payout.provider_id != provider_id:
        raise Unauthorized("You can only view your own payouts")
    return payout


def list_payouts(db: Session, provider_id: str, status: str | None = None, limit: int = 20, offset: int = 0) -> tuple[list[Payout], int]:
    q = db.query(Payout).filter(Payout.provider_id == provider_id)
    if status:
        q = q.filter(Payout.status == status)
    total = q.count()
    return q.order_by(Payout.requested_at.desc()).offset(offset).limit(limit).all(), total


def _move(db: Session, payout: Payout, expected: str, target: str, actor_id: str, details: dict | None = None) -> Payout:
    if payout.status != expected:
        raise InvalidPayoutStatus(
            f"Payout is {payout.status}, expected {expected}", status=payout.status,
        )
    previous = payout.status
    payout.status = target
    payout.updated_at = datetime.now(timezone.utc)
    log_audit(db, actor_id, f"payout.{target}", "payout", payout.id, {"from": previous, **(details or {})})
    try:
        db.commit()
    except StaleDataError as e:
        db.rollback()
        raise ConcurrencyConflict("Payout was modified concurrently") from e
    db.refresh(payout)
    return payout


def start_payout_processing(db: Session, payout_id: str, operator_id: str) -> Payout:
    payout = get_payout(db, payout_id)
    payout.processed_by = operator_id
    payout.processed_at = datetime.now(timezone.utc)
    payout = _move(db, payout, "pending", "processing", operator_id)
    logger.info("Payout %s processing by %s", payout.id, operator_id)
    return payout


def complete_payout(db: Session, payout_id: str, operator_id: str) -> Payout:
    payout = get_payout(db, payout_id)
    payout.completed_at = datetime.now(timezone.utc)
    payout = _move(db, payout, "processing", "completed", operator_id)
    logger.info("Payout %s completed", payout.id)
    return payout


def fail_payout(db: Session, payout_id: str, operator_id: str, reason: str) -> Payout:
    # Failed payouts are not retried; the provider requests a new one.
    payout = get_payout(db, payout_id)
    payout.failure_reason = reason
    payout = _move(db, payout, "processing", "failed", operator_id, {"reason": reason})
    logger.warning("Payout %s failed: %s", payout.id, reason)
    return payout


def cancel_payout(db: Session, payout_id: str, provider_id: str) -> Payout:
    payout = get_payout(db, payout_id, provider_id)
    payout = _move(db, payout, "pending", "cancelled", provider_id)
    logger.info("Payout %s cancelled by provider", payout.id)
    return payout


def transaction_history(db: Session, provider_id: str, limit: int = 50, offset: int = 0) -> dict:
    """Earnings and payouts merged, newest first."""
    items = []
    for e in provider_earnings(db, provider_id).breakdown:
        items.append({
            "id": e.payment_id,
            "type": "earning",
            "amount": e.net_earning,
            "grossAmount": e.gross_amount,
            "platformFee": e.platform_fee,
            "currency": e.currency,
            "status": "completed",
            "description": f"Ride earnings - Booking {e.booking_id}",
            "date": e.paid_at,
            "metadata": {"bookingId": e.booking_id, "rideId": e.ride_id, "paymentId": e.payment_id},
        })
    for p in _payouts(db, provider_id):
        items.append({
            "id": p.id,
            "type": "payout",
            "amount": -p.amount,
            "netAmount": -p.net_amount,
            "platformFee": p.platform_fee,
            "currency": p.currency,
            "status": p.status,
            "description": f"Payout to {p.payout_method}",
            "date": ensure_utc(p.requested_at),
            "metadata": {"payoutId": p.id, "payoutMethod": p.payout_method, "transactionIds": p.transaction_ids or []},
        })

    epoch = datetime.min.replace(tzinfo=timezone.utc)
    items.sort(key=lambda t: t["date"] or epoch, reverse=True)
    return {
        "transactions": items[offset:offset + limit],
        "pagination": {
            "total": len(items),
            "limit": limit,
            "offset": offset,
            "hasMore": offset + limit < len(items),
        },
    }
