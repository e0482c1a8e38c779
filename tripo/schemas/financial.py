import json

from pydantic import BaseModel, Field
from typing import List, Literal, Optional

from tripo.schemas.rides import iso_or_none


class EarningOut(BaseModel):
    paymentId: str
    bookingId: str
    rideId: str
    grossAmount: int
    platformFee: int
    netEarning: int
    currency: str
    paidAt: Optional[str] = None


class EarningsSummaryOut(BaseModel):
    totalEarnings: int
    totalPlatformFees: int
    grossEarnings: int
    totalRides: int
    totalPassengers: int
    averageEarningPerRide: int


class EarningsOut(BaseModel):
    providerId: str
    startDate: Optional[str] = None
    endDate: Optional[str] = None
    summary: EarningsSummaryOut
    breakdown: List[EarningOut]


class BalanceOut(BaseModel):
    totalEarnings: int
    paidOut: int
    pendingPayouts: int
    availableBalance: int
    currency: str


class PayoutRequest(BaseModel):
    amount: int = Field(gt=0)
    payoutMethod: Literal["bank_transfer", "upi", "wallet"]
    bankDetails: dict = Field(default_factory=dict)


class PayoutFailRequest(BaseModel):
    reason: str = Field(min_length=1, max_length=500)


class PayoutOut(BaseModel):
    id: str
    providerId: str
    amount: int
    currency: str
    status: str
    payoutMethod: str
    transactionIds: List[str] = []
    platformFee: int
    netAmount: int
    requestedAt: Optional[str] = None
    processedAt: Optional[str] = None
    completedAt: Optional[str] = None
    failureReason: Optional[str] = None
    processedBy: Optional[str] = None


class PayoutPage(BaseModel):
    items: List[PayoutOut]
    total: int
    limit: int
    offset: int
    hasMore: bool


def earnings_out(report) -> EarningsOut:
    s = report.summary
    return EarningsOut(
        providerId=report.provider_id,
        startDate=iso_or_none(report.start),
        endDate=iso_or_none(report.end),
        summary=EarningsSummaryOut(
            totalEarnings=s.total_earnings,
            totalPlatformFees=s.total_platform_fees,
            grossEarnings=s.gross_earnings,
            totalRides=s.total_rides,
            totalPassengers=s.total_passengers,
            averageEarningPerRide=s.average_earning_per_ride,
        ),
        breakdown=[
            EarningOut(
                paymentId=e.payment_id,
                bookingId=e.booking_id,
                rideId=e.ride_id,
                grossAmount=e.gross_amount,
                platformFee=e.platform_fee,
                netEarning=e.net_earning,
                currency=e.currency,
                paidAt=iso_or_none(e.paid_at),
            )
            for e in report.breakdown
        ],
    )


def balance_out(b) -> BalanceOut:
    return BalanceOut(
        totalEarnings=b.total_earnings,
        paidOut=b.paid_out,
        pendingPayouts=b.pending_payouts,
        availableBalance=b.available_balance,
        currency=b.currency,
    )


def payout_out(p) -> PayoutOut:
    return PayoutOut(
        id=p.id,
        providerId=p.provider_id,
        amount=p.amount,
        currency=p.currency,
        status=p.status,
        payoutMethod=p.payout_method,
        transactionIds=list(p.transaction_ids or []),
        platformFee=p.platform_fee,
        netAmount=p.net_amount,
        requestedAt=iso_or_none(p.requested_at),
        processedAt=iso_or_none(p.processed_at),
        completedAt=iso_or_none(p.completed_at),
        failureReason=p.failure_reason,
        processedBy=p.processed_by,
    )


class AuditEntryOut(BaseModel):
    id: str
    actorUserId: str
    action: str
    details: dict
    createdAt: Optional[str] = None


def audit_entry_out(a) -> AuditEntryOut:
    return AuditEntryOut(
        id=a.id,
        actorUserId=a.actor_user_id,
        action=a.action,
        details=json.loads(a.details_json or "{}"),
        createdAt=iso_or_none(a.created_at),
    )
