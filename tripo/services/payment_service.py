import logging
import uuid
from datetime import datetime, timezone

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from tripo.core.config import settings
from tripo.core.errors import (
    BookingNotFound,
    ConcurrencyConflict,
    GatewayFailure,
    InvalidBookingStatus,
    InvalidPaymentStatus,
    NoRefundEligible,
    PaymentAlreadyCompleted,
    PaymentNotFound,
    RideNotFound,
    Unauthorized,
)
from tripo.models.booking import Booking
from tripo.models.payment import Payment
from tripo.models.ride import Ride
from tripo.services.audit_service import log_audit
from tripo.services.booking_state import BookingStatus, is_active
from tripo.services.gateway_client import GatewayClient, GatewayError, GatewayResult, normalize_status
from tripo.services.pricing import compute_refund, hours_before_departure

logger = logging.getLogger(__name__)

# A payment is refunded at most once; "refunding" marks a refund in flight.
REFUNDABLE_STATUS = "completed"
REFUNDING_STATUS = "refunding"
SETTLED_STATUSES = ("completed", "refunding", "refunded", "partially_refunded")


def _completed_payment(db: Session, booking_id: str, exclude_id: str | None = None) -> Payment | None:
    q = db.query(Payment).filter(Payment.booking_id == booking_id, Payment.status.in_(SETTLED_STATUSES))
    if exclude_id:
        q = q.filter(Payment.id != exclude_id)
    return q.first()


def get_payment(db: Session, payment_id: str, user_id: str | None = None) -> Payment:
    payment = db.get(Payment, payment_id)
    if not payment:
        raise PaymentNotFound()
    if user_id is not None and payment.user_id != user_id:
        raise Unauthorized("You can only view your own payments")
    return payment


def payment_history(db: Session, user_id: str, limit: int = 20, offset: int = 0) -> tuple[list[Payment], int]:
    q = db.query(Payment).filter(Payment.user_id == user_id)
    total = q.count()
    return q.order_by(Payment.created_at.desc()).offset(offset).limit(limit).all(), total


def initiate_payment(
    db: Session,
    client: GatewayClient,
    booking_id: str,
    user_id: str,
    payment_method: str = "card",
    gateway: str = "cybersource",
) -> tuple[Payment, GatewayResult]:
    """Open a gateway order for a confirmed booking's final amount and record a pending payment."""
    booking = db.get(Booking, booking_id)
    if not booking:
        raise BookingNotFound()
    if booking.passenger_id != user_id:
        raise Unauthorized("You can only pay for your own bookings")
    if booking.status != BookingStatus.CONFIRMED.value:
        raise InvalidBookingStatus("Booking must be confirmed before payment", status=booking.status)
    if _completed_payment(db, booking.id):
        raise PaymentAlreadyCompleted()

    payment = Payment(
        id=str(uuid.uuid4()),
        booking_id=booking.id,
        user_id=user_id,
        ride_id=booking.ride_id,
        gateway=gateway,
        payment_method=payment_method,
        amount=booking.final_amount,
        currency=settings.CURRENCY,
        status="pending",
        refunds=[],
    )
    try:
        order = client.create_order(client_ref=payment.id, amount=payment.amount, currency=payment.currency)
    except GatewayError as e:
        logger.exception("Gateway order failed for booking %s", booking.id)
        log_audit(db, user_id, "payment.order_failed", "booking", booking.id, {"error": str(e)})
        db.commit()
        raise GatewayFailure(str(e))

    payment.gateway_order_id = order.id
    db.add(payment)
    log_audit(db, user_id, "payment.initiated", "payment", payment.id, {"booking_id": booking.id, "amount": payment.amount})
    db.commit()
    db.refresh(payment)
    logger.info("Payment %s initiated for booking %s (%d %s)", payment.id, booking.id, payment.amount, payment.currency)
    return payment, order


def _apply_outcome(db: Session, payment: Payment, outcome: str, gateway_payment_id: str, actor: str, details: dict) -> None:
    now = datetime.now(timezone.utc)
    if gateway_payment_id:
        payment.gateway_payment_id = gateway_payment_id
    payment.updated_at = now
    if outcome == "completed":
        if _completed_payment(db, payment.booking_id, exclude_id=payment.id):
            raise PaymentAlreadyCompleted()
        payment.status = "completed"
        payment.completed_at = now
    elif outcome == "failed":
        payment.status = "failed"
    log_audit(db, actor, f"payment.{payment.status}", "payment", payment.id, details)


def _commit_outcome(db: Session, payment: Payment) -> None:
    try:
        db.commit()
    except IntegrityError as e:
        # Lost the race on the one-completed-payment-per-booking index
        db.rollback()
        raise PaymentAlreadyCompleted() from e
    except StaleDataError as e:
        db.rollback()
        raise ConcurrencyConflict("Payment was modified concurrently") from e
    db.refresh(payment)


def verify_payment(db: Session, client: GatewayClient, payment_id: str, user_id: str, gateway_payment_id: str) -> Payment:
    payment = get_payment(db, payment_id, user_id)
    if payment.status in SETTLED_STATUSES:
        return payment
    if payment.status != "pending":
        raise InvalidPaymentStatus(f"Payment is {payment.status}", status=payment.status)

    try:
        result = client.get_payment(gateway_payment_id)
    except GatewayError as e:
        logger.exception("Gateway lookup failed for payment %s", payment.id)
        raise GatewayFailure(str(e))

    outcome = result.outcome
    if outcome == "completed" and result.amount is not None and result.amount != payment.amount:
        logger.warning("Payment %s amount mismatch: expected %d, gateway %d", payment.id, payment.amount, result.amount)
        outcome = "failed"

    _apply_outcome(db, payment, outcome, result.id or gateway_payment_id, user_id, {"gateway_status": result.status})
    _commit_outcome(db, payment)
    logger.info("Payment %s verified: %s", payment.id, payment.status)
    return payment


def handle_gateway_webhook(db: Session, payload: dict) -> dict:
    """Apply an asynchronous gateway status update, matched on the order id. Safe to replay."""
    cri = payload.get("clientReferenceInformation") or {}
    order_id = cri.get("code") or payload.get("orderId") or payload.get("order_id")
    gateway_payment_id = str(payload.get("id") or (payload.get("transactionInformation") or {}).get("id") or "")
    status = str(payload.get("status") or payload.get("eventType") or payload.get("event_type") or "").upper()

    if not order_id:
        return {"ok": True, "matched": False}
    payment = db.query(Payment).filter(Payment.gateway_order_id == str(order_id)).first()
    if not payment:
        logger.warning("Webhook for unknown order %s", order_id)
        return {"ok": True, "matched": False}

    if payment.status != "pending":
        return {"ok": True, "matched": True, "status": payment.status}

    outcome = normalize_status(status)
    if outcome == "pending":
        return {"ok": True, "matched": True, "status": payment.status}

    try:
        _apply_outcome(db, payment, outcome, gateway_payment_id, "gateway", {"event": status})
        _commit_outcome(db, payment)
    except PaymentAlreadyCompleted:
        db.rollback()
        logger.warning("Webhook completed payment %s but booking %s is already paid", payment.id, payment.booking_id)
        return {"ok": True, "matched": True, "status": "duplicate"}
    return {"ok": True, "matched": True, "status": payment.status}


def _claim_for_refund(db: Session, payment: Payment, now: datetime) -> None:
    """Move completed -> refunding with a conditional UPDATE; only one refund can hold the claim."""
    claimed = (
        db.query(Payment)
        .filter(Payment.id == payment.id, Payment.status == REFUNDABLE_STATUS)
        .update(
            {Payment.status: REFUNDING_STATUS, Payment.version: Payment.version + 1, Payment.updated_at: now},
            synchronize_session=False,
        )
    )
    db.commit()
    if not claimed:
        raise ConcurrencyConflict("Payment is already being refunded")
    db.refresh(payment)


def _release_refund_claim(db: Session, payment: Payment, now: datetime) -> None:
    db.query(Payment).filter(Payment.id == payment.id, Payment.status == REFUNDING_STATUS).update(
        {Payment.status: REFUNDABLE_STATUS, Payment.version: Payment.version + 1, Payment.updated_at: now},
        synchronize_session=False,
    )


def refund_payment(
    db: Session,
    client: GatewayClient,
    coordinator,
    payment_id: str,
    user_id: str,
    reason: str | None = None,
    now: datetime | None = None,
) -> Payment:
    """Refund per the cancellation policy; an active booking is cancelled (and its seats released) first."""
    now = now or datetime.now(timezone.utc)
    payment = get_payment(db, payment_id)
    booking = db.get(Booking, payment.booking_id)
    if not booking:
        raise BookingNotFound()
    ride = db.get(Ride, booking.ride_id)
    if not ride:
        raise RideNotFound()

    is_driver = user_id == ride.driver_id
    if user_id != booking.passenger_id and not is_driver:
        raise Unauthorized("Only the passenger or the ride's driver can refund this payment")
    if payment.status != REFUNDABLE_STATUS:
        raise InvalidPaymentStatus(f"Payment is {payment.status}", status=payment.status)
    if booking.status == BookingStatus.COMPLETED.value:
        raise InvalidBookingStatus("Completed bookings cannot be refunded", status=booking.status)

    quote = compute_refund(
        payment.amount,
        hours_before_departure(ride.departure_at, now),
        full_refund_hours=settings.REFUND_FULL_HOURS,
        partial_refund_hours=settings.REFUND_PARTIAL_HOURS,
        partial_refund_percent=settings.REFUND_PARTIAL_PERCENT,
    )
    amount = quote.refund_amount
    if amount <= 0:
        raise NoRefundEligible(refund_type=quote.refund_type)

    _claim_for_refund(db, payment, now)
    try:
        if is_active(booking.status):
            if is_driver:
                coordinator.reject_booking(booking.id, user_id, reason or "refund")
            else:
                coordinator.cancel_booking(booking.id, user_id, reason or "refund")
            db.refresh(booking)

        result = client.refund(
            gateway_payment_id=payment.gateway_payment_id or payment.gateway_order_id,
            client_ref=f"refund-{payment.id}",
            amount=amount,
            currency=payment.currency,
        )
    except GatewayError as e:
        # The cancellation above stays committed; the refund can be retried.
        logger.exception("Gateway refund failed for payment %s", payment.id)
        _release_refund_claim(db, payment, now)
        log_audit(db, user_id, "payment.refund_failed", "payment", payment.id, {"error": str(e), "amount": amount})
        db.commit()
        raise GatewayFailure(str(e))
    except Exception:
        _release_refund_claim(db, payment, now)
        db.commit()
        raise

    payment.refunds = [*(payment.refunds or []), {
        "id": result.id,
        "amount": amount,
        "reason": reason,
        "status": result.status,
        "refundType": quote.refund_type,
        "refundPercentage": quote.refund_percentage,
        "requestedBy": user_id,
        "createdAt": now.isoformat(),
    }]
    payment.status = "refunded" if amount >= payment.amount else "partially_refunded"
    payment.updated_at = now

    # Plain UPDATE so refund bookkeeping never conflicts with a concurrent status change.
    db.query(Booking).filter(Booking.id == booking.id).update(
        {Booking.refunded_amount: amount, Booking.version: Booking.version + 1},
        synchronize_session="fetch",
    )
    log_audit(db, user_id, "payment.refunded", "payment", payment.id, {"amount": amount, "refund_type": quote.refund_type})
    db.commit()
    db.refresh(payment)
    logger.info("Payment %s refunded %d (%s)", payment.id, amount, payment.status)
    return payment
