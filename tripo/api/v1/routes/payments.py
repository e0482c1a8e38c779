import json
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.orm import Session

from tripo.db.session import get_db
from tripo.api.deps import get_coordinator, get_current_principal, get_gateway_client
from tripo.core.config import settings
from tripo.core.errors import ValidationFailure
from tripo.core.security import Principal
from tripo.schemas.payments import (
    PaymentInitiateOut,
    PaymentInitiateRequest,
    PaymentOut,
    PaymentPage,
    PaymentRefundRequest,
    PaymentVerifyRequest,
    payment_out,
)
from tripo.services import payment_service
from tripo.services.booking_coordinator import BookingCoordinator
from tripo.services.gateway_client import GatewayClient, verify_webhook_signature

router = APIRouter(tags=["payments"])


@router.post("/payments/initiate", response_model=PaymentInitiateOut)
def initiate_payment(
    body: PaymentInitiateRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    client: GatewayClient = Depends(get_gateway_client),
):
    payment, order = payment_service.initiate_payment(
        db, client, body.bookingId, principal.user_id, payment_method=body.paymentMethod, gateway=body.gateway,
    )
    capture_context = None
    if not order.raw.get("sandbox"):
        capture_context = order.raw.get("captureContext") or order.raw
    return PaymentInitiateOut(payment=payment_out(payment), orderId=order.id, captureContext=capture_context)


@router.post("/payments/verify", response_model=PaymentOut)
def verify_payment(
    body: PaymentVerifyRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    client: GatewayClient = Depends(get_gateway_client),
):
    payment = payment_service.verify_payment(db, client, body.paymentId, principal.user_id, body.gatewayPaymentId)
    return payment_out(payment)


@router.post("/payments/refund", response_model=PaymentOut)
def refund_payment(
    body: PaymentRefundRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    client: GatewayClient = Depends(get_gateway_client),
    coordinator: BookingCoordinator = Depends(get_coordinator),
):
    payment = payment_service.refund_payment(db, client, coordinator, body.paymentId, principal.user_id, reason=body.reason)
    return payment_out(payment)


@router.get("/payments/history", response_model=PaymentPage)
def payment_history(
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    items, total = payment_service.payment_history(db, principal.user_id, limit=limit, offset=offset)
    return PaymentPage(
        items=[payment_out(p) for p in items],
        total=total,
        limit=limit,
        offset=offset,
        hasMore=offset + len(items) < total,
    )


@router.get("/payments/{payment_id}", response_model=PaymentOut)
def read_payment(payment_id: str, db: Session = Depends(get_db), principal: Principal = Depends(get_current_principal)):
    return payment_out(payment_service.get_payment(db, payment_id, principal.user_id))


@router.post("/webhooks/payments")
async def payment_webhook(req: Request, db: Session = Depends(get_db)):
    body = await req.body()
    if settings.GATEWAY_WEBHOOK_VERIFY:
        path = (settings.GATEWAY_WEBHOOK_PATH or req.url.path).strip() or req.url.path
        if not verify_webhook_signature(dict(req.headers), body, method=req.method, path=path):
            raise HTTPException(status_code=401, detail="Invalid webhook signature")
    try:
        payload = json.loads(body.decode("utf-8") or "{}")
    except ValueError:
        raise ValidationFailure("Webhook body is not valid JSON")
    if not isinstance(payload, dict):
        raise ValidationFailure("Webhook body must be a JSON object")
    return payment_service.handle_gateway_webhook(db, payload)
