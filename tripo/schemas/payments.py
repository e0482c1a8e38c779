from pydantic import BaseModel, Field
from typing import Any, List, Optional

from tripo.schemas.rides import iso_or_none


class PaymentInitiateRequest(BaseModel):
    bookingId: str
    paymentMethod: str = "card"
    gateway: str = "cybersource"


class PaymentVerifyRequest(BaseModel):
    paymentId: str
    gatewayPaymentId: str = Field(min_length=1)


class PaymentRefundRequest(BaseModel):
    paymentId: str
    reason: Optional[str] = Field(default=None, max_length=500)


class PaymentOut(BaseModel):
    id: str
    bookingId: str
    rideId: str
    userId: str
    gateway: str
    gatewayOrderId: str = ""
    gatewayPaymentId: str = ""
    paymentMethod: str = ""
    amount: int
    currency: str
    status: str
    refunds: List[dict] = []
    createdAt: Optional[str] = None
    completedAt: Optional[str] = None


class PaymentInitiateOut(BaseModel):
    payment: PaymentOut
    orderId: str
    # Hosted checkout session for the browser (null in sandbox mode)
    captureContext: Optional[Any] = None


class PaymentPage(BaseModel):
    items: List[PaymentOut]
    total: int
    limit: int
    offset: int
    hasMore: bool


def payment_out(p) -> PaymentOut:
    return PaymentOut(
        id=p.id,
        bookingId=p.booking_id,
        rideId=p.ride_id,
        userId=p.user_id,
        gateway=p.gateway or "",
        gatewayOrderId=p.gateway_order_id or "",
        gatewayPaymentId=p.gateway_payment_id or "",
        paymentMethod=p.payment_method or "",
        amount=p.amount,
        currency=p.currency,
        status=p.status,
        refunds=list(p.refunds or []),
        createdAt=iso_or_none(p.created_at),
        completedAt=iso_or_none(p.completed_at),
    )
